"""
Tests for structured logging, metrics and health reporting.
"""

import json
import logging

import pytest

from votechain.db.store import InMemoryEntryStore
from votechain.observability import (
    ContextLogger,
    MetricsCollector,
    StructuredFormatter,
    TextFormatter,
    check_health,
    get_logger,
    request_id_var,
    setup_logging,
)


def capture(logger: ContextLogger, formatter: logging.Formatter, *args, **kwargs) -> str:
    records = []

    class Collect(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = Collect()
    logger.logger.addHandler(handler)
    logger.logger.setLevel(logging.DEBUG)
    try:
        logger.info(*args, **kwargs)
    finally:
        logger.logger.removeHandler(handler)
    return formatter.format(records[0])


class TestLogging:

    def test_keywords_become_json_fields(self):
        line = json.loads(capture(get_logger("votechain.test"), StructuredFormatter(), "Ballot cast", vote_id="v1", sequence=3))
        assert line["message"] == "Ballot cast"
        assert line["logger"] == "votechain.test"
        assert line["level"] == "INFO"
        assert (line["vote_id"], line["sequence"]) == ("v1", 3)
        assert "request_id" not in line

    def test_request_id_and_unserializable_fields(self):
        token = request_id_var.set("req-1")
        try:
            line = json.loads(capture(get_logger("votechain.test"), StructuredFormatter(), "x", store=object()))
        finally:
            request_id_var.reset(token)
        assert line["request_id"] == "req-1"
        assert isinstance(line["store"], str)

    def test_text_format(self):
        text = capture(get_logger("votechain.test"), TextFormatter(), "Vote created", vote_id="v1")
        assert "INFO" in text
        assert text.endswith("Vote created vote_id=v1")

    @pytest.mark.parametrize("fmt,formatter", [("json", StructuredFormatter), ("text", TextFormatter)])
    def test_setup_logging(self, monkeypatch, fmt, formatter):
        root = logging.getLogger()
        saved = (root.handlers[:], root.level)
        monkeypatch.setenv("VOTECHAIN_LOG_FORMAT", fmt)
        monkeypatch.setenv("VOTECHAIN_LOG_LEVEL", "warning")
        try:
            setup_logging()
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, formatter)
            assert root.level == logging.WARNING
        finally:
            root.handlers, level = saved
            root.setLevel(level)


class TestMetricsCollector:

    def test_summary(self):
        metrics = MetricsCollector()
        assert metrics.get_summary()["append_latency_p50_ms"] is None

        for latency in (1.0, 2.0, 3.0, 4.0):
            metrics.record_append(latency)
        metrics.record_conflict()
        metrics.record_request(5.0, success=False)

        summary = metrics.get_summary()
        assert summary["entries_appended"] == 4
        assert summary["append_conflicts"] == 1
        assert summary["requests_failed"] == 1
        assert summary["append_latency_p50_ms"] == 3.0
        assert summary["append_latency_p99_ms"] == 4.0

    def test_samples_are_bounded(self):
        metrics = MetricsCollector()
        for i in range(1500):
            metrics.record_request(float(i), success=True)
        assert len(metrics.request_latencies_ms) == 1000
        assert metrics.requests_total == 1500


class TestCheckHealth:

    def test_healthy(self, ledger):
        ledger.create_vote("v1", "admin1", "Budget", "Pick one", ["A", "B"])
        status = check_health(ledger=ledger, entry_store=ledger.store)
        assert status.healthy
        assert status.checks["entry_store"]["entry_count"] == 1
        assert status.checks["chain_integrity"]["valid"] is True

    def test_tampered_chain_is_unhealthy(self, ledger, store):
        ledger.create_vote("v1", "admin1", "Budget", "Pick one", ["A", "B"])
        store._entries[0] = store._entries[0].model_copy(update={"previous_hash": "f" * 64})
        status = check_health(ledger=ledger, entry_store=store)
        assert not status.healthy
        assert status.checks["chain_integrity"]["status"] == "unhealthy"

    def test_store_failure_is_unhealthy(self):
        class BrokenStore(InMemoryEntryStore):
            def get_tail(self):
                raise RuntimeError("disk gone")

        status = check_health(entry_store=BrokenStore())
        assert not status.healthy
        assert status.checks["entry_store"]["error"] == "disk gone"
