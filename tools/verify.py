#!/usr/bin/env python3
"""
VoteChain Export Verifier

Verifies an exported chain offline.
No server or database connection required - verification is by hash.

Usage:
    python -m tools.verify ledger_export.json
    python -m tools.verify ledger_export.json --verbose
    python -m tools.verify ledger_export.json --json

Exit codes:
    0 - VERIFIED: All checks passed
    1 - TAMPERED: Hash, linkage or ordering mismatch
    3 - INVALID_FORMAT: Export structure invalid
"""

import argparse
import json
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from votechain.core import ChainValidator, Hasher
from votechain.schemas import EntryType, LedgerEntry


EXPORT_FORMAT_VERSION = 1


# ============================================================
# Result Types
# ============================================================

class VerificationResult(Enum):
    VERIFIED = "VERIFIED"
    TAMPERED = "TAMPERED"
    INVALID_FORMAT = "INVALID_FORMAT"


@dataclass
class VerificationReport:
    result: VerificationResult
    entry_count: int
    checks_passed: list[str] = field(default_factory=list)
    checks_failed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return {
            VerificationResult.VERIFIED: 0,
            VerificationResult.TAMPERED: 1,
            VerificationResult.INVALID_FORMAT: 3,
        }[self.result]


# ============================================================
# Export Format
# ============================================================

def build_export(entries: list[LedgerEntry], exported_at: Optional[str] = None) -> dict:
    """Build the export document for ``entries`` (already in sequence order)."""
    return {
        "_meta": {
            "format_version": EXPORT_FORMAT_VERSION,
            "canon_version": Hasher.SERIALIZATION_VERSION,
            "exported_at": exported_at,
            "entry_count": len(entries),
            "tail_hash": entries[-1].entry_hash if entries else None,
        },
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }


# ============================================================
# Export Verifier
# ============================================================

class ExportVerifier:
    """Verifies an exported chain document."""

    def __init__(self, export: Any, verbose: bool = False):
        self.export = export
        self.verbose = verbose
        self.checks_passed: list[str] = []
        self.checks_failed: list[str] = []
        self.warnings: list[str] = []
        self.details: dict[str, Any] = {}
        self.entries: list[LedgerEntry] = []

    def log(self, msg: str):
        if self.verbose:
            print(f"  {msg}")

    def verify(self) -> VerificationReport:
        """Run all verification checks."""

        # 1. Check export structure and parse entries
        if not self._check_structure():
            return self._report(VerificationResult.INVALID_FORMAT)

        # 2. Check meta information
        self._check_meta()

        # 3. Verify hashes, ordering and linkage
        if not self._verify_chain():
            return self._report(VerificationResult.TAMPERED)

        self._summarize()
        return self._report(VerificationResult.VERIFIED)

    def _check_structure(self) -> bool:
        """Verify export has required structure."""
        self.log("Checking export structure...")

        if not isinstance(self.export, dict):
            self.checks_failed.append("Export must be a JSON object")
            return False

        if not isinstance(self.export.get("entries"), list):
            self.checks_failed.append("'entries' must be a list")
            return False

        for i, raw in enumerate(self.export["entries"]):
            try:
                self.entries.append(LedgerEntry.model_validate(raw))
            except ValidationError as e:
                self.checks_failed.append(f"Entry {i}: invalid structure ({e.error_count()} errors)")
                return False

        self.checks_passed.append(f"Export structure valid ({len(self.entries)} entries)")
        return True

    def _check_meta(self):
        """Compare declared metadata with the entries."""
        meta = self.export.get("_meta") or {}
        if not meta:
            self.warnings.append("No _meta section")
            return

        self.details["exported_at"] = meta.get("exported_at")

        canon_version = meta.get("canon_version")
        if canon_version is not None and canon_version != Hasher.SERIALIZATION_VERSION:
            self.warnings.append(
                f"Export uses canon version {canon_version}, "
                f"verifier uses {Hasher.SERIALIZATION_VERSION}"
            )

        declared = meta.get("entry_count")
        if declared is not None and declared != len(self.entries):
            self.warnings.append(
                f"_meta.entry_count is {declared} but {len(self.entries)} entries present"
            )

        tail_hash = meta.get("tail_hash")
        if tail_hash and self.entries and tail_hash != self.entries[-1].entry_hash:
            self.warnings.append("_meta.tail_hash does not match the last entry")

    def _verify_chain(self) -> bool:
        self.log("Verifying hashes and linkage...")
        result = ChainValidator.validate(self.entries)
        if not result.valid:
            self.checks_failed.append(result.message)
            self.details["failure"] = result.to_dict()
            return False

        self.checks_passed.append(f"All {len(self.entries)} hashes verified")
        self.checks_passed.append("Chain linkage verified from genesis")
        return True

    def _summarize(self):
        definitions = sum(1 for e in self.entries if e.entry_type == EntryType.VOTE_DEFINITION)
        self.details["vote_definitions"] = definitions
        self.details["ballots"] = len(self.entries) - definitions
        if self.entries:
            self.details["tail_hash"] = self.entries[-1].entry_hash

    def _report(self, result: VerificationResult) -> VerificationReport:
        """Generate verification report."""
        return VerificationReport(
            result=result,
            entry_count=len(self.entries),
            checks_passed=self.checks_passed,
            checks_failed=self.checks_failed,
            warnings=self.warnings,
            details=self.details,
        )


# ============================================================
# CLI
# ============================================================

def print_report(report: VerificationReport, json_output: bool = False):
    """Print verification report."""

    if json_output:
        output = {
            "result": report.result.value,
            "entry_count": report.entry_count,
            "checks_passed": report.checks_passed,
            "checks_failed": report.checks_failed,
            "warnings": report.warnings,
            "details": report.details,
        }
        print(json.dumps(output, indent=2))
        return

    banners = {
        VerificationResult.VERIFIED: "[VERIFIED] - All checks passed",
        VerificationResult.TAMPERED: "[TAMPERED] - Hash or linkage mismatch detected",
        VerificationResult.INVALID_FORMAT: "[INVALID_FORMAT] - Export structure invalid",
    }
    print("\n" + "=" * 60)
    print(f"  {banners[report.result]}")
    print("=" * 60)

    print(f"\nEntries: {report.entry_count}")

    if report.checks_passed:
        print("\nPassed:")
        for check in report.checks_passed:
            print(f"  + {check}")

    if report.checks_failed:
        print("\nFailed:")
        for check in report.checks_failed:
            print(f"  - {check}")

    if report.warnings:
        print("\nWarnings:")
        for warning in report.warnings:
            print(f"  ! {warning}")

    print()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Verify an exported VoteChain ledger",
        epilog="Exit codes: 0=VERIFIED, 1=TAMPERED, 3=INVALID_FORMAT"
    )
    parser.add_argument("export", type=str, help="Path to the export JSON file")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed verification progress"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON"
    )
    args = parser.parse_args(argv)

    try:
        export = json.loads(Path(args.export).read_text(encoding="utf-8"))
    except FileNotFoundError:
        print(f"ERROR: File not found: {args.export}")
        return 3
    except json.JSONDecodeError as e:
        print(f"ERROR: Invalid JSON: {e}")
        return 3

    report = ExportVerifier(export, verbose=args.verbose).verify()
    print_report(report, json_output=args.json)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
