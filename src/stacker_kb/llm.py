"""Model-serving endpoint adapters.

The endpoint (Ollama or any server with an OpenAI-compatible API) provides
two capabilities: text embeddings and text generation. Both are reached
through LangChain so tests can swap in fake models.
"""

import time
import urllib.error
import urllib.request
from typing import Callable, Optional

from langchain_core.embeddings import Embeddings
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from .config import EndpointConfig
from .logging_config import get_logger

logger = get_logger(__name__)

USER_AGENT = "stacker-kb/1.0"


def openai_base_url(base_url: str) -> str:
    """Map the endpoint root to its OpenAI-compatible route."""
    base_url = base_url.rstrip("/")
    if base_url.endswith("/v1"):
        return base_url
    return f"{base_url}/v1"


def get_chat_model(endpoint: EndpointConfig, streaming: bool = False) -> ChatOpenAI:
    """Get a ChatOpenAI instance pointing at the local endpoint.

    Args:
        endpoint: Endpoint configuration
        streaming: Request token streaming from the server

    Returns:
        Configured ChatOpenAI instance
    """
    return ChatOpenAI(
        model=endpoint.chat_model,
        base_url=openai_base_url(endpoint.base_url),
        api_key="not-needed",  # local servers don't require auth
        temperature=endpoint.temperature,
        timeout=endpoint.generate_timeout_s,
        max_retries=endpoint.max_retries,
        streaming=streaming,
        default_headers={"User-Agent": USER_AGENT},
    )


class SentenceTransformerEmbeddings(Embeddings):
    """In-process embeddings via sentence-transformers.

    The model is loaded on first use so constructing the adapter is cheap.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2") -> None:
        self.model_name = model_name
        self._model = None

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s (first time only)...", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = self._get_model().encode(texts, show_progress_bar=len(texts) > 50)
        return embeddings.tolist()

    def embed_query(self, text: str) -> list[float]:
        return self.embed_documents([text])[0]


def get_embeddings_model(endpoint: EndpointConfig) -> Embeddings:
    """Get the embeddings capability selected by the endpoint configuration."""
    if endpoint.embed_backend == "local":
        return SentenceTransformerEmbeddings(endpoint.embed_model)

    return OpenAIEmbeddings(
        model=endpoint.embed_model,
        base_url=openai_base_url(endpoint.base_url),
        api_key="not-needed",
        timeout=endpoint.embed_timeout_s,
        max_retries=endpoint.max_retries,
        # Send raw strings; tiktoken token ids mean nothing to non-OpenAI models
        check_embedding_ctx_length=False,
        default_headers={"User-Agent": USER_AGENT},
    )


def probe_endpoint(base_url: str, timeout: float = 5.0, opener: Optional[Callable] = None) -> bool:
    """Check whether the model endpoint answers at its root URL.

    Never raises: any failure is logged and reported as unhealthy.

    Args:
        base_url: Endpoint root (e.g. http://localhost:11434)
        timeout: Seconds to wait for the response
        opener: urlopen-compatible callable (injectable for tests)

    Returns:
        True if the endpoint responded with a 2xx status.
    """
    opener = opener or urllib.request.urlopen
    url = base_url.rstrip("/") + "/"
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    start = time.perf_counter()
    try:
        with opener(request, timeout=timeout) as response:
            status = getattr(response, "status", 200)
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.error("Endpoint health check failed for %s: %s", url, e)
        return False

    latency_ms = (time.perf_counter() - start) * 1000
    if 200 <= status < 300:
        logger.info("Endpoint health check passed for %s (HTTP %s, %.0fms)", url, status, latency_ms)
        return True
    logger.warning("Endpoint health check failed for %s (HTTP %s)", url, status)
    return False
