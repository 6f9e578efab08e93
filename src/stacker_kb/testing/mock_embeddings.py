"""Deterministic embedding models for tests."""

import threading
from typing import Callable, Mapping, Optional, Sequence

from langchain_core.embeddings import Embeddings


class KeywordEmbeddings(Embeddings):
    """Bag-of-keywords vectors: one dimension per keyword plus a constant one.

    Texts sharing keywords point in similar directions, so similarity
    ranking behaves predictably. The constant dimension keeps every vector
    non-zero.

    Args:
        keywords: Vocabulary, one dimension each (matched case-insensitively)
        overrides: Exact text to vector mappings, checked first
    """

    def __init__(
        self,
        keywords: Sequence[str],
        overrides: Optional[Mapping[str, list[float]]] = None,
    ) -> None:
        self.keywords = [k.lower() for k in keywords]
        self.overrides = dict(overrides or {})

    @property
    def dimensions(self) -> int:
        return len(self.keywords) + 1

    def embed_query(self, text: str) -> list[float]:
        if text in self.overrides:
            return list(self.overrides[text])
        lowered = text.lower()
        return [float(lowered.count(k)) for k in self.keywords] + [1.0]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]


class CountingEmbeddings(Embeddings):
    """Wraps another model and records every text it is asked to embed."""

    def __init__(self, inner: Embeddings) -> None:
        self.inner = inner
        self.texts: list[str] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.texts)

    def embed_query(self, text: str) -> list[float]:
        with self._lock:
            self.texts.append(text)
        return self.inner.embed_query(text)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]


class FlakyEmbeddings(Embeddings):
    """Raises ConnectionError for texts matching a predicate.

    Args:
        inner: Model used for every other text
        fail_when: Predicate on the text; all texts fail when None
    """

    def __init__(self, inner: Embeddings, fail_when: Optional[Callable[[str], bool]] = None) -> None:
        self.inner = inner
        self.fail_when = fail_when

    def embed_query(self, text: str) -> list[float]:
        if self.fail_when is None or self.fail_when(text):
            raise ConnectionError("Connection refused: model endpoint unreachable")
        return self.inner.embed_query(text)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]
