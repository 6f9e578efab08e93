"""Append-only audit log of RAG queries (newline-delimited JSON)."""

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..errors import PersistenceError
from ..logging_config import get_logger

logger = get_logger(__name__)


class AuditRecord(BaseModel):
    """One query, as it happened. Written once, never changed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    correlation_id: str
    question: str
    actor: str
    stores_searched: list[str]
    result_count: int
    top_score: Optional[float] = None
    model: str
    duration_ms: int
    answer_length: int
    error: Optional[str] = None


class AuditLog:
    """Appends audit records to a fixed NDJSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        """Append one record as a single JSON line.

        Raises:
            PersistenceError: If the log file cannot be written.
        """
        line = record.model_dump_json(by_alias=True) + "\n"
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                raise PersistenceError(f"Could not append to audit log {self.path}: {e}") from e
        logger.debug("Audit record written to %s", self.path)

    def read_all(self) -> list[AuditRecord]:
        """Read every record (oldest first). Missing log → empty list."""
        if not self.path.exists():
            return []
        records = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    records.append(AuditRecord.model_validate_json(line))
        return records
