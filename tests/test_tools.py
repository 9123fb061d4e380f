"""
Tests for the export verifier and management CLI.
"""

import json

import pytest

from tools import manage
from tools.verify import ExportVerifier, VerificationResult, build_export, main as verify_main

from factories import build_chain


@pytest.fixture
def export():
    return json.loads(json.dumps(build_export(build_chain(4), exported_at="2025-01-15T12:00:00Z")))


class TestExportVerifier:

    def test_verified(self, export):
        report = ExportVerifier(export).verify()
        assert report.result == VerificationResult.VERIFIED
        assert report.exit_code == 0
        assert report.entry_count == 4
        assert report.details["ballots"] == 3
        assert not report.warnings

    def test_tampered_ballot(self, export):
        export["entries"][2]["payload"]["candidate"] = "B"
        report = ExportVerifier(export).verify()
        assert report.result == VerificationResult.TAMPERED
        assert report.exit_code == 1
        assert report.details["failure"]["reason"] == "HASH_MISMATCH"
        assert report.details["failure"]["offending_index"] == 2

    def test_dropped_entry(self, export):
        del export["entries"][1]
        report = ExportVerifier(export).verify()
        assert report.result == VerificationResult.TAMPERED
        assert report.details["failure"]["reason"] == "BROKEN_LINKAGE"
        # Declared count no longer matches
        assert report.warnings

    def test_invalid_format(self):
        assert ExportVerifier([]).verify().result == VerificationResult.INVALID_FORMAT
        assert ExportVerifier({"entries": [{"payload": {}}]}).verify().exit_code == 3

    def test_cli(self, export, tmp_path, capsys):
        path = tmp_path / "export.json"
        path.write_text(json.dumps(export))

        assert verify_main([str(path), "--json"]) == 0
        assert json.loads(capsys.readouterr().out)["result"] == "VERIFIED"

    def test_cli_missing_file(self, tmp_path):
        assert verify_main([str(tmp_path / "missing.json")]) == 3


class TestManage:

    @pytest.fixture(autouse=True)
    def memory_store(self, monkeypatch):
        monkeypatch.setenv("ENTRYSTORE_DRIVER", "memory")
        monkeypatch.delenv("VOTECHAIN_IDENTITY_URL", raising=False)
        monkeypatch.delenv("VOTECHAIN_IDENTITIES_FILE", raising=False)

    def test_verify_chain_on_empty_store(self, capsys):
        assert manage.main(["verify-chain"]) == 0
        assert "[OK]" in capsys.readouterr().out

    def test_tally_unknown_vote(self, capsys):
        assert manage.main(["tally", "v1"]) == 1
        assert "No such vote" in capsys.readouterr().out

    def test_export_entries(self, tmp_path):
        output = tmp_path / "out.json"
        assert manage.main(["export-entries", "-o", str(output)]) == 0
        data = json.loads(output.read_text())
        assert data["entries"] == []
        assert ExportVerifier(data).verify().result == VerificationResult.VERIFIED

    def test_init_db_requires_database(self, monkeypatch, capsys):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("DATABASE_HOST", raising=False)
        assert manage.main(["init-db"]) == 1

    def test_no_command(self):
        assert manage.main([]) == 1
