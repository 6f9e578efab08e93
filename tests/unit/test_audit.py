"""Unit tests for the query audit log."""

import json

import pytest

from stacker_kb.errors import PersistenceError
from stacker_kb.rag.audit import AuditLog, AuditRecord


def _record(**overrides):
    values = dict(
        correlation_id="c-1",
        question="Is auth on?",
        actor="dev",
        stores_searched=["docs"],
        result_count=1,
        top_score=0.92,
        model="llama3",
        duration_ms=12,
        answer_length=30,
    )
    values.update(overrides)
    return AuditRecord(**values)


class TestAuditLog:
    """Test append-only NDJSON audit records."""

    def test_appends_one_camel_case_line_per_record(self, tmp_path):
        log = AuditLog(tmp_path / "audit" / "queries.ndjson")
        log.append(_record())
        log.append(_record(correlation_id="c-2", top_score=None, result_count=0, error="boom"))

        lines = log.path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["correlationId"] == "c-1"
        assert first["storesSearched"] == ["docs"]
        assert first["topScore"] == 0.92
        second = json.loads(lines[1])
        assert second["topScore"] is None
        assert second["error"] == "boom"

    def test_read_all(self, tmp_path):
        log = AuditLog(tmp_path / "queries.ndjson")
        assert log.read_all() == []
        log.append(_record())
        records = log.read_all()
        assert len(records) == 1
        assert records[0].question == "Is auth on?"
        assert records[0].timestamp

    def test_unwritable_path_raises_persistence_error(self, tmp_path):
        log = AuditLog(tmp_path)
        with pytest.raises(PersistenceError):
            log.append(_record())

    def test_records_are_immutable(self):
        record = _record()
        with pytest.raises(Exception):
            record.question = "changed"
