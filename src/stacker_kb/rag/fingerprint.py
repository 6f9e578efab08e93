"""Content fingerprints and the reuse/re-embed decision for incremental runs.

The fingerprint covers a whole source unit, not individual chunks: any
change anywhere in a file re-embeds every chunk of that file.
"""

import hashlib
from collections import defaultdict
from enum import Enum
from typing import Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from .vectorstore import ChunkRecord


def fingerprint(content: str) -> str:
    """Return the SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class Decision(str, Enum):
    """What to do with one source unit in an incremental run."""
    REUSE = "reuse"
    REEMBED = "reembed"


class ChangeDetector:
    """Decides reuse vs re-embed against the previous store snapshot.

    Built once per run from the prior snapshot's records and only read
    afterwards, so it is safe to share between worker threads.
    """

    def __init__(self, previous_records: Iterable["ChunkRecord"] = (), force: bool = False) -> None:
        self.force = force
        self._hashes: dict[str, str] = {}
        self._records: dict[str, list["ChunkRecord"]] = defaultdict(list)
        for record in previous_records:
            self._hashes[record.file_path] = record.content_hash
            self._records[record.file_path].append(record)
        for records in self._records.values():
            records.sort(key=lambda r: r.chunk_index)

    @property
    def previous_hashes(self) -> dict[str, str]:
        """Mapping of source path to content hash from the previous snapshot."""
        return dict(self._hashes)

    def decide(self, source_path: str, content_hash: str) -> Decision:
        """Decide whether a unit's prior records can be carried forward."""
        if self.force:
            return Decision.REEMBED
        if self._hashes.get(source_path) == content_hash:
            return Decision.REUSE
        return Decision.REEMBED

    def prior_records(self, source_path: str) -> list["ChunkRecord"]:
        """Prior records for a unit in chunk order (empty if none)."""
        return list(self._records.get(source_path, ()))
