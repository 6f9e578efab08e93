"""Persisted embedding stores.

A store is one JSON document holding every chunk record of a collection
together with the embedding model identity that produced the vectors.
Each store is written to two places: a local cache directory and a
backup directory meant to be tracked in version control.
"""

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ..config import StorageConfig
from ..errors import ConfigurationError, PersistenceError
from ..logging_config import get_logger

logger = get_logger(__name__)

_STORE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Chunk metadata (one variant per collection kind)
# =============================================================================

class CodeMetadata(_CamelModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["code"] = "code"
    language: Optional[str] = None
    file_mtime: Optional[float] = None


class DocMetadata(_CamelModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["doc"] = "doc"
    doc_type: Optional[str] = None
    section_header: Optional[str] = None
    file_mtime: Optional[float] = None


class LogMetadata(_CamelModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["log"] = "log"
    log_levels: list[str] = Field(default_factory=list)
    first_timestamp: Optional[str] = None
    last_timestamp: Optional[str] = None
    file_mtime: Optional[float] = None


class PipelineMetadata(_CamelModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["pipeline"] = "pipeline"
    pipeline: Optional[str] = None
    run_id: Optional[str] = None
    result: Optional[str] = None
    branch: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class GenericMetadata(_CamelModel):
    """Metadata without a known ``kind``, e.g. from stores written by other tools."""

    model_config = ConfigDict(extra="allow")

    kind: Optional[str] = None


_METADATA_KINDS = ("code", "doc", "log", "pipeline")


def _metadata_kind(value) -> str:
    if isinstance(value, dict):
        kind = value.get("kind")
    else:
        kind = getattr(value, "kind", None)
    return kind if kind in _METADATA_KINDS else "generic"


ChunkMetadata = Annotated[
    Union[
        Annotated[CodeMetadata, Tag("code")],
        Annotated[DocMetadata, Tag("doc")],
        Annotated[LogMetadata, Tag("log")],
        Annotated[PipelineMetadata, Tag("pipeline")],
        Annotated[GenericMetadata, Tag("generic")],
    ],
    Discriminator(_metadata_kind),
]


# =============================================================================
# Records and stores
# =============================================================================

def make_record_id(source_path: str, chunk_index: int) -> str:
    return f"{source_path}#{chunk_index}"


class ChunkRecord(_CamelModel):
    """The atomic retrievable unit.

    ``content_hash`` fingerprints the whole source unit, so all chunks of one
    unit share it.
    """

    id: str
    file_path: str
    chunk_index: int
    content: str
    content_hash: str
    embedding: list[float]
    metadata: ChunkMetadata


class EmbeddingStore(_CamelModel):
    """A named snapshot of chunk records sharing one embedding model."""

    store_name: str
    created_at: str
    entry_count: int
    model_name: str
    dimensions: int
    entries: list[ChunkRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_entry_count(self) -> "EmbeddingStore":
        if self.entry_count != len(self.entries):
            raise ValueError(
                f"entryCount is {self.entry_count} but the store holds {len(self.entries)} entries"
            )
        return self

    @classmethod
    def build(
        cls,
        store_name: str,
        entries: list[ChunkRecord],
        model_name: str,
        dimensions: int,
    ) -> "EmbeddingStore":
        return cls(
            store_name=store_name,
            created_at=datetime.now(timezone.utc).isoformat(),
            entry_count=len(entries),
            model_name=model_name,
            dimensions=dimensions,
            entries=entries,
        )

    def mismatched_entries(self) -> list[ChunkRecord]:
        """Entries whose vector length differs from the store's dimensions."""
        return [e for e in self.entries if len(e.embedding) != self.dimensions]

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


# =============================================================================
# Persistence
# =============================================================================

def validate_store_name(store_name: str) -> str:
    if not _STORE_NAME_PATTERN.match(store_name or ""):
        raise ConfigurationError(f"Invalid store name {store_name!r}")
    return store_name


class StoreRepository:
    """Reads and writes stores in the local cache and backup locations.

    Each store has a single writer (its indexer). Readers never see a
    half-written file because writes go through a temp file and a rename.
    """

    def __init__(self, cache_dir: str | Path, backup_dir: str | Path) -> None:
        self.cache_dir = Path(cache_dir)
        self.backup_dir = Path(backup_dir)

    @classmethod
    def from_config(cls, storage: StorageConfig) -> "StoreRepository":
        return cls(storage.cache_dir, storage.backup_dir)

    def paths(self, store_name: str) -> tuple[Path, Path]:
        """Return (local cache path, backup path) for a store."""
        validate_store_name(store_name)
        filename = f"{store_name}.json"
        return self.cache_dir / filename, self.backup_dir / filename

    def _read(self, path: Path) -> Optional[EmbeddingStore]:
        """Read one store file. None if missing; PersistenceError if corrupt."""
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
            return EmbeddingStore.model_validate_json(raw)
        except (OSError, ValidationError, ValueError) as e:
            raise PersistenceError(f"Store file {path} is unreadable or corrupt: {e}") from e

    def load(self, store_name: str) -> Optional[EmbeddingStore]:
        """Load a store, preferring the local cache over the backup.

        Returns:
            The store, or None if neither location has it.

        Raises:
            PersistenceError: If every existing copy is corrupt.
        """
        local_path, backup_path = self.paths(store_name)

        store = None
        local_error = None
        try:
            store = self._read(local_path)
        except PersistenceError as e:
            local_error = e
            logger.warning("%s; trying backup copy", e)

        if store is None:
            store = self._read(backup_path)
            if store is None and local_error is not None:
                raise local_error
            if store is not None:
                logger.info("Loaded store %r from backup %s", store_name, backup_path)

        if store is None:
            return None

        mismatched = store.mismatched_entries()
        if mismatched:
            logger.warning(
                "Store %r has %s entries whose vectors are not %s-dimensional; they will be skipped in search",
                store_name, len(mismatched), store.dimensions,
            )
        return store

    def exists(self, store_name: str) -> bool:
        local_path, backup_path = self.paths(store_name)
        return local_path.exists() or backup_path.exists()

    def list_stores(self) -> list[str]:
        """Names of stores present in either location, sorted."""
        names = set()
        for directory in (self.cache_dir, self.backup_dir):
            if directory.is_dir():
                for path in directory.glob("*.json"):
                    if _STORE_NAME_PATTERN.match(path.stem):
                        names.add(path.stem)
        return sorted(names)

    def _existing_identity(self, path: Path) -> Optional[tuple[str, int]]:
        try:
            store = self._read(path)
        except PersistenceError as e:
            logger.warning("Ignoring corrupt snapshot during save: %s", e)
            return None
        if store is None:
            return None
        return store.model_name, store.dimensions

    def save(
        self,
        store_name: str,
        entries: list[ChunkRecord],
        model_name: str,
        dimensions: int,
    ) -> EmbeddingStore:
        """Write a full snapshot to both the local cache and the backup.

        Raises:
            ConfigurationError: If an entry's vector length differs from
                ``dimensions``, or the existing local and backup snapshots
                disagree on model identity. Nothing is written in either case.
            PersistenceError: If a location cannot be written.
        """
        local_path, backup_path = self.paths(store_name)

        for entry in entries:
            if len(entry.embedding) != dimensions:
                raise ConfigurationError(
                    f"Entry {entry.id} has {len(entry.embedding)} dimensions, "
                    f"store {store_name!r} expects {dimensions}"
                )

        local_identity = self._existing_identity(local_path)
        backup_identity = self._existing_identity(backup_path)
        if local_identity and backup_identity and local_identity != backup_identity:
            raise ConfigurationError(
                f"Store {store_name!r} snapshots disagree on model identity: "
                f"local={local_identity[0]}/{local_identity[1]}d, "
                f"backup={backup_identity[0]}/{backup_identity[1]}d"
            )

        store = EmbeddingStore.build(store_name, entries, model_name, dimensions)
        payload = store.to_json()
        for path in (local_path, backup_path):
            _write_atomic(path, payload)

        logger.info(
            "Saved store %r: %s entries (%s, %sd) to %s and %s",
            store_name, store.entry_count, model_name, dimensions, local_path, backup_path,
        )
        return store

    def stats(self, store_name: str) -> dict:
        """Summary statistics for one store."""
        store = self.load(store_name)
        if store is None:
            return {
                "store_name": store_name,
                "total_chunks": 0,
                "total_sources": 0,
                "model_name": None,
                "dimensions": None,
                "created_at": None,
            }
        return {
            "store_name": store_name,
            "total_chunks": store.entry_count,
            "total_sources": len({e.file_path for e in store.entries}),
            "model_name": store.model_name,
            "dimensions": store.dimensions,
            "created_at": store.created_at,
        }


def _write_atomic(path: Path, payload: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise PersistenceError(f"Could not write store file {path}: {e}") from e

