"""Unit tests for correlation ids and logger naming."""

import logging

from stacker_kb.logging_config import (
    CorrelationIdFilter,
    correlation_scope,
    get_correlation_id,
    get_logger,
)


def _record() -> logging.LogRecord:
    return logging.LogRecord("stacker_kb.test", logging.INFO, __file__, 1, "msg", None, None)


class TestCorrelationScope:
    """Test binding correlation ids for a query or run."""

    def test_generates_id_and_resets_after_scope(self):
        assert get_correlation_id() == ""
        with correlation_scope() as cid:
            assert cid
            assert get_correlation_id() == cid
        assert get_correlation_id() == ""

    def test_uses_given_id(self):
        with correlation_scope("abc-123") as cid:
            assert cid == "abc-123"
            assert get_correlation_id() == "abc-123"

    def test_nested_scopes_restore_outer_id(self):
        with correlation_scope("outer"):
            with correlation_scope("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"

    def test_filter_stamps_records(self):
        log_filter = CorrelationIdFilter()

        record = _record()
        assert log_filter.filter(record)
        assert record.correlation_id == "-"

        with correlation_scope("run-1"):
            record = _record()
            log_filter.filter(record)
        assert record.correlation_id == "run-1"


class TestGetLogger:
    """Test module logger naming."""

    def test_prefixes_foreign_names(self):
        assert get_logger("thing").name == "stacker_kb.thing"

    def test_keeps_package_names(self):
        assert get_logger("stacker_kb.rag.indexer").name == "stacker_kb.rag.indexer"
