"""Retrieval-augmented generation over project content.

Indexing turns collections of source files, docs, logs and CI run records
into persisted embedding stores; querying searches those stores and asks
the chat model to answer from the retrieved context.
"""

from .chunker import TextChunk, chunk_sections, chunk_text
from .fingerprint import ChangeDetector, fingerprint
from .indexer import Indexer, IndexRunSummary
from .orchestrator import BlockingAnswer, QueryResult, RagOrchestrator, StreamingAnswer
from .search import SearchResult, search_store, search_stores
from .vectorstore import ChunkRecord, EmbeddingStore, StoreRepository

__all__ = [
    "TextChunk",
    "chunk_text",
    "chunk_sections",
    "ChangeDetector",
    "fingerprint",
    "Indexer",
    "IndexRunSummary",
    "RagOrchestrator",
    "BlockingAnswer",
    "StreamingAnswer",
    "QueryResult",
    "SearchResult",
    "search_store",
    "search_stores",
    "ChunkRecord",
    "EmbeddingStore",
    "StoreRepository",
]
