"""Cosine-similarity ranking over one or more embedding stores.

Linear scan; fine for thousands of chunks, not millions.
"""

import fnmatch
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .vectorstore import ChunkRecord, EmbeddingStore


@dataclass
class SearchResult:
    """A chunk record with its similarity to the query."""

    store_name: str
    record: ChunkRecord
    score: float

    @property
    def source_path(self) -> str:
        return self.record.file_path

    @property
    def content(self) -> str:
        return self.record.content

    @property
    def section_header(self) -> Optional[str]:
        return getattr(self.record.metadata, "section_header", None)

    def __str__(self) -> str:
        """Format for display."""
        header = f" [{self.section_header}]" if self.section_header else ""
        return (
            f"{self.store_name}:{self.record.file_path}#{self.record.chunk_index}{header} "
            f"(score: {self.score:.3f})"
        )


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors.

    Returns 0.0 for mismatched lengths or a zero vector.
    """
    if len(vec_a) != len(vec_b):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


def _matches_filters(record: ChunkRecord, file_pattern: Optional[str], kinds: Optional[set[str]]) -> bool:
    if file_pattern and not fnmatch.fnmatch(record.file_path, file_pattern):
        return False
    if kinds and record.metadata.kind not in kinds:
        return False
    return True


def search_store(
    query_vector: Sequence[float],
    store: EmbeddingStore,
    top_k: int,
    threshold: float,
    file_pattern: Optional[str] = None,
    kinds: Optional[Iterable[str]] = None,
) -> list[SearchResult]:
    """Rank one store's entries against a query vector.

    Entries whose vector length differs from the query are skipped.
    Results scoring below ``threshold`` are dropped; the rest are sorted by
    score descending (ties keep store order) and truncated to ``top_k``.

    Args:
        query_vector: Embedded query
        store: Store to scan
        top_k: Maximum results
        threshold: Minimum cosine similarity
        file_pattern: Optional glob on source paths (e.g. "docs/*.md")
        kinds: Optional metadata kinds to keep (e.g. {"doc", "log"})

    Returns:
        Ranked list of SearchResult objects
    """
    if top_k <= 0:
        return []
    kind_set = set(kinds) if kinds else None
    dims = len(query_vector)

    scored = []
    for record in store.entries:
        if len(record.embedding) != dims:
            continue
        if not _matches_filters(record, file_pattern, kind_set):
            continue
        score = cosine_similarity(query_vector, record.embedding)
        if score >= threshold:
            scored.append(SearchResult(store_name=store.store_name, record=record, score=score))

    # sorted() is stable, so equal scores keep insertion order
    scored = sorted(scored, key=lambda r: r.score, reverse=True)
    return scored[:top_k]


def search_stores(
    query_vector: Sequence[float],
    stores: Iterable[EmbeddingStore],
    top_k: int,
    threshold: float,
    file_pattern: Optional[str] = None,
    kinds: Optional[Iterable[str]] = None,
) -> list[SearchResult]:
    """Search several stores and merge into one ranking.

    Each store is first cut to its own ``top_k``; the union is then
    re-sorted by score and cut to the overall ``top_k``.
    """
    union: list[SearchResult] = []
    for store in stores:
        union.extend(search_store(query_vector, store, top_k, threshold, file_pattern, kinds))

    union = sorted(union, key=lambda r: r.score, reverse=True)
    return union[:top_k]
