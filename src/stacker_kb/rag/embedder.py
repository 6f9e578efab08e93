"""Embedding client: text in, fixed-length vector (or a typed failure) out."""

import math
import threading
import time
import unicodedata
from dataclasses import dataclass
from typing import Optional, Union

from langchain_core.embeddings import Embeddings

from ..errors import ConnectivityError, ContentError, KnowledgeBaseError
from ..logging_config import get_logger

logger = get_logger(__name__)

# Control characters other than tab/newline/carriage return
_ALLOWED_CONTROL = {"\t", "\n", "\r"}


def sanitize_text(text: str) -> str:
    """Reduce text to characters that survive JSON/UTF-8 transport.

    Normalizes to NFC, drops lone surrogates, NUL and other control
    characters (tab and newlines are kept) and trims surrounding whitespace.
    """
    text = unicodedata.normalize("NFC", text)
    text = text.encode("utf-8", errors="ignore").decode("utf-8")
    text = "".join(
        ch for ch in text
        if ch in _ALLOWED_CONTROL or unicodedata.category(ch) not in ("Cc", "Cs", "Co", "Cn")
    )
    return text.strip()


@dataclass
class EmbeddingFailure:
    """Why a text could not be embedded. Returned, never raised."""

    error: KnowledgeBaseError

    @property
    def message(self) -> str:
        return str(self.error)


EmbedResult = Union[list[float], EmbeddingFailure]


class EmbeddingClient:
    """Adapts arbitrary text to vectors through an Embeddings capability.

    ``embed`` never raises for remote trouble: failures come back as
    :class:`EmbeddingFailure` so one bad chunk does not abort a batch.
    """

    def __init__(self, embeddings: Embeddings, model_name: str) -> None:
        self._embeddings = embeddings
        self.model_name = model_name
        self.calls = 0
        self.dimensions: Optional[int] = None
        self._lock = threading.Lock()

    def embed(self, text: str) -> EmbedResult:
        """Embed one text.

        Args:
            text: Raw text (sanitized before sending)

        Returns:
            The vector, or an EmbeddingFailure wrapping a ContentError (empty
            after sanitization) or a ConnectivityError (remote failure,
            timeout, malformed payload).
        """
        clean = sanitize_text(text)
        if not clean:
            return EmbeddingFailure(ContentError("Text is empty after sanitization"))

        with self._lock:
            self.calls += 1
        start = time.perf_counter()
        try:
            vector = self._embeddings.embed_query(clean)
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "Embedding request failed (Model=%s, TextLength=%s, Latency=%.0fms): %s",
                self.model_name, len(clean), latency_ms, e,
            )
            return EmbeddingFailure(ConnectivityError(f"Embedding request failed: {e}"))

        latency_ms = (time.perf_counter() - start) * 1000
        problem = _check_vector(vector)
        if problem:
            logger.error("Malformed embedding payload (Model=%s): %s", self.model_name, problem)
            return EmbeddingFailure(ConnectivityError(f"Malformed embedding payload: {problem}"))

        vector = [float(v) for v in vector]
        with self._lock:
            if self.dimensions is None:
                self.dimensions = len(vector)

        logger.debug(
            "Embedding complete (Model=%s, TextLength=%s, Dimensions=%s, Latency=%.0fms)",
            self.model_name, len(clean), len(vector), latency_ms,
        )
        return vector


def _check_vector(vector) -> Optional[str]:
    if not isinstance(vector, (list, tuple)):
        return f"expected a list of numbers, got {type(vector).__name__}"
    if not vector:
        return "empty vector"
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"non-numeric component {value!r}"
        if not math.isfinite(value):
            return f"non-finite component {value!r}"
    return None
