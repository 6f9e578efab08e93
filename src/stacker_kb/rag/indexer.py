"""Index runs: locate, fingerprint, chunk, embed and save one collection's store."""

import contextvars
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from ..config import CollectionConfig, KnowledgeBaseConfig
from ..errors import ContentError, PersistenceError, RunError
from ..logging_config import correlation_scope, get_logger
from .chunker import TextChunk, chunk_sections, chunk_text, validate_chunking
from .embedder import EmbeddingClient, EmbeddingFailure, sanitize_text
from .fingerprint import ChangeDetector, Decision, fingerprint
from .locator import ContentLocator, SourceDocument, SourceUnit
from .vectorstore import ChunkRecord, EmbeddingStore, StoreRepository, make_record_id

logger = get_logger(__name__)

REUSED = "reused"
EMBEDDED = "embedded"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class IndexRunSummary:
    """Counts and errors for one collection's index run."""

    collection: str
    discovered: int = 0
    reused: int = 0
    embedded: int = 0
    skipped: int = 0
    failed: int = 0
    chunks_embedded: int = 0
    chunks_reused: int = 0
    embed_calls: int = 0
    errors: list[RunError] = field(default_factory=list)
    duration_s: float = 0.0
    saved: bool = False

    @property
    def processed(self) -> int:
        return self.reused + self.embedded

    @property
    def has_embed_failures(self) -> bool:
        return any(e.stage == "embed" for e in self.errors)

    def to_dict(self) -> dict:
        return {
            "collection": self.collection,
            "discovered": self.discovered,
            "reused": self.reused,
            "embedded": self.embedded,
            "skipped": self.skipped,
            "failed": self.failed,
            "chunks_embedded": self.chunks_embedded,
            "chunks_reused": self.chunks_reused,
            "embed_calls": self.embed_calls,
            "errors": [e.to_dict() for e in self.errors],
            "duration_s": self.duration_s,
            "saved": self.saved,
        }


@dataclass
class _UnitOutcome:
    """Fully resolved result of processing one source unit."""

    unit: SourceUnit
    status: str
    source_path: Optional[str] = None
    records: list[ChunkRecord] = field(default_factory=list)
    chunks_embedded: int = 0
    error: Optional[RunError] = None


class Indexer:
    """Builds and incrementally updates collection stores.

    Args:
        config: Application configuration
        embedder: Embedding client; its model name is recorded in every store
        repository: Where stores are loaded from and saved to
        base_dir: Directory collection roots are relative to
        now: Clock for retention cutoffs (injectable for tests)
    """

    def __init__(
        self,
        config: KnowledgeBaseConfig,
        embedder: EmbeddingClient,
        repository: StoreRepository,
        base_dir: Union[str, Path] = ".",
        now: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.embedder = embedder
        self.repository = repository
        self.base_dir = Path(base_dir)
        self._now = now

    def run(
        self,
        collection: Union[CollectionConfig, str],
        force: bool = False,
        workers: Optional[int] = None,
    ) -> IndexRunSummary:
        """Index one collection and save its store.

        Args:
            collection: Collection config, or the name of a configured one
            force: Re-embed every unit regardless of its fingerprint
            workers: Units processed in parallel (default from config)

        Returns:
            IndexRunSummary for the run

        Raises:
            ConfigurationError: Invalid chunk sizing, unknown collection, or a
                model identity conflict while saving.
            PersistenceError: If the store cannot be written.
        """
        if isinstance(collection, str):
            collection = self.config.collection(collection)
        chunking = self.config.chunking
        validate_chunking(chunking.max_chunk_size, chunking.overlap)
        workers = workers or self.config.indexing.workers

        with correlation_scope():
            return self._run(collection, force, workers, trust_previous=True)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def _load_previous(self, store_name: str) -> Optional[EmbeddingStore]:
        try:
            return self.repository.load(store_name)
        except PersistenceError as e:
            logger.warning("%s; rebuilding store %r from scratch", e, store_name)
            return None

    def _compatible(self, previous: EmbeddingStore) -> bool:
        if previous.model_name != self.embedder.model_name:
            logger.warning(
                "Store %r was built with %s, now embedding with %s; rebuilding",
                previous.store_name, previous.model_name, self.embedder.model_name,
            )
            return False
        if self.embedder.dimensions is not None and previous.dimensions != self.embedder.dimensions:
            logger.warning(
                "Store %r holds %s-dimensional vectors, model now returns %s; rebuilding",
                previous.store_name, previous.dimensions, self.embedder.dimensions,
            )
            return False
        return True

    def _run(
        self,
        collection: CollectionConfig,
        force: bool,
        workers: int,
        trust_previous: bool,
    ) -> IndexRunSummary:
        start = time.time()
        store_name = collection.name
        summary = IndexRunSummary(collection=store_name)
        calls_before = self.embedder.calls

        logger.info("Indexing collection %r (%s, force=%s)", store_name, collection.kind, force)

        locator = ContentLocator(collection, base_dir=self.base_dir, now=self._now)
        units = locator.locate()
        summary.discovered = len(units)
        if not units:
            logger.warning("Collection %r yielded no source units; store left unchanged", store_name)
            summary.duration_s = time.time() - start
            return summary

        previous = self._load_previous(store_name) if trust_previous else None
        if previous is not None and not self._compatible(previous):
            previous = None
            force = True
        detector = ChangeDetector(previous.entries if previous else (), force=force)

        outcomes = self._process_all(locator, units, detector, workers)

        if trust_previous and previous is not None and self._dimensions_changed(previous):
            logger.warning(
                "Embedding dimensions changed from %s to %s; re-embedding every unit of %r",
                previous.dimensions, self.embedder.dimensions, store_name,
            )
            return self._run(collection, True, workers, trust_previous=False)

        entries = self._reduce(outcomes, summary)
        summary.embed_calls = self.embedder.calls - calls_before

        dimensions = self.embedder.dimensions or (previous.dimensions if previous else 0)
        if not entries and not dimensions:
            logger.warning("Collection %r produced no records; store not written", store_name)
            summary.duration_s = time.time() - start
            return summary

        self.repository.save(store_name, entries, self.embedder.model_name, dimensions)
        summary.saved = True
        summary.duration_s = time.time() - start

        logger.info(
            "Index run for %r: %s units (%s reused, %s embedded, %s skipped, %s failed), "
            "%s chunks embedded, %s reused in %.1fs",
            store_name, summary.discovered, summary.reused, summary.embedded,
            summary.skipped, summary.failed, summary.chunks_embedded, summary.chunks_reused,
            summary.duration_s,
        )
        return summary

    def _dimensions_changed(self, previous: EmbeddingStore) -> bool:
        return self.embedder.dimensions is not None and self.embedder.dimensions != previous.dimensions

    def _process_all(
        self,
        locator: ContentLocator,
        units: list[SourceUnit],
        detector: ChangeDetector,
        workers: int,
    ) -> list[_UnitOutcome]:
        """Process every unit; outcomes come back in discovery order."""
        if workers <= 1 or len(units) == 1:
            outcomes = []
            for i, unit in enumerate(units, 1):
                outcomes.append(self._process(locator, unit, detector))
                if len(units) <= 10 or i % 10 == 0:
                    logger.info("Processed %s/%s units...", i, len(units))
            return outcomes

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="indexer") as pool:
            # Each task runs in a copy of this context so log lines keep the run's correlation id
            futures = [
                pool.submit(contextvars.copy_context().run, self._process, locator, unit, detector)
                for unit in units
            ]
            return [future.result() for future in futures]

    def _reduce(self, outcomes: list[_UnitOutcome], summary: IndexRunSummary) -> list[ChunkRecord]:
        """Assemble the snapshot from resolved outcomes (single-threaded)."""
        entries: list[ChunkRecord] = []
        seen_paths: set[str] = set()

        for outcome in outcomes:
            if outcome.source_path is not None and outcome.status in (REUSED, EMBEDDED, FAILED):
                if outcome.source_path in seen_paths:
                    summary.skipped += 1
                    summary.errors.append(RunError.from_exception(
                        outcome.unit.rel_path,
                        "read",
                        ContentError(f"Duplicate source path {outcome.source_path}"),
                    ))
                    continue
                seen_paths.add(outcome.source_path)

            if outcome.error is not None:
                summary.errors.append(outcome.error)

            if outcome.status == REUSED:
                summary.reused += 1
                summary.chunks_reused += len(outcome.records)
            elif outcome.status == EMBEDDED:
                summary.embedded += 1
                summary.chunks_embedded += outcome.chunks_embedded
            elif outcome.status == FAILED:
                summary.failed += 1
            else:
                summary.skipped += 1

            entries.extend(outcome.records)

        return entries

    # -------------------------------------------------------------------------
    # One unit
    # -------------------------------------------------------------------------

    def _chunk(self, document: SourceDocument) -> list[TextChunk]:
        chunking = self.config.chunking
        if document.metadata.kind == "doc":
            return chunk_sections(document.text, chunking.max_chunk_size, chunking.overlap)
        return chunk_text(document.text, chunking.max_chunk_size, chunking.overlap)

    def _process(self, locator: ContentLocator, unit: SourceUnit, detector: ChangeDetector) -> _UnitOutcome:
        """Resolve one unit to its final record set. Never raises for unit-level errors."""
        try:
            document = locator.read(unit)
        except ContentError as e:
            logger.warning("Skipping %s: %s", unit.rel_path, e)
            return _UnitOutcome(unit, SKIPPED, error=RunError.from_exception(unit.rel_path, "read", e))

        source_path = document.source_path
        content_hash = fingerprint(document.text)

        if detector.decide(source_path, content_hash) == Decision.REUSE:
            return _UnitOutcome(unit, REUSED, source_path, detector.prior_records(source_path))

        chunks = self._chunk(document)
        records: list[ChunkRecord] = []
        for chunk in chunks:
            content = sanitize_text(chunk.text)
            if not content:
                continue
            vector = self.embedder.embed(content)
            if isinstance(vector, EmbeddingFailure):
                prior = detector.prior_records(source_path)
                logger.error(
                    "Embedding failed for %s chunk %s; %s",
                    source_path, chunk.index,
                    "keeping previous records" if prior else "unit left out of the store",
                )
                return _UnitOutcome(
                    unit,
                    FAILED,
                    source_path,
                    records=prior,
                    error=RunError.from_exception(source_path, "embed", vector.error),
                )

            metadata = document.metadata
            if chunk.section_header is not None:
                metadata = metadata.model_copy(update={"section_header": chunk.section_header})
            chunk_index = len(records)
            records.append(ChunkRecord(
                id=make_record_id(source_path, chunk_index),
                file_path=source_path,
                chunk_index=chunk_index,
                content=content,
                content_hash=content_hash,
                embedding=vector,
                metadata=metadata,
            ))

        if not records:
            error = ContentError(f"{source_path} produced no embeddable chunks")
            logger.warning("Skipping %s", error)
            return _UnitOutcome(unit, SKIPPED, error=RunError.from_exception(source_path, "chunk", error))

        logger.debug("Embedded %s (%s chunks)", source_path, len(records))
        return _UnitOutcome(unit, EMBEDDED, source_path, records, chunks_embedded=len(records))
