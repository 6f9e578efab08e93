"""Unit tests for endpoint adapters and the health probe."""

import urllib.error

from stacker_kb.config import EndpointConfig
from stacker_kb.llm import (
    USER_AGENT,
    SentenceTransformerEmbeddings,
    get_chat_model,
    get_embeddings_model,
    openai_base_url,
    probe_endpoint,
)


class _Response:
    def __init__(self, status):
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestAdapters:
    """Test model construction."""

    def test_openai_base_url(self):
        assert openai_base_url("http://localhost:11434") == "http://localhost:11434/v1"
        assert openai_base_url("http://localhost:11434/") == "http://localhost:11434/v1"
        assert openai_base_url("http://host/v1") == "http://host/v1"

    def test_chat_model_settings(self):
        llm = get_chat_model(EndpointConfig(chat_model="mistral", temperature=0.2))
        assert llm.model_name == "mistral"
        assert llm.temperature == 0.2

    def test_local_backend_uses_sentence_transformers(self):
        embeddings = get_embeddings_model(EndpointConfig(embed_backend="local", embed_model="all-MiniLM-L6-v2"))
        assert isinstance(embeddings, SentenceTransformerEmbeddings)
        assert embeddings.model_name == "all-MiniLM-L6-v2"


class TestProbeEndpoint:
    """Test the health probe never raises."""

    def test_healthy(self):
        seen = {}

        def opener(request, timeout):
            seen["url"] = request.full_url
            seen["agent"] = request.get_header("User-agent")
            return _Response(200)

        assert probe_endpoint("http://localhost:11434", opener=opener)
        assert seen == {"url": "http://localhost:11434/", "agent": USER_AGENT}

    def test_non_success_status(self):
        assert not probe_endpoint("http://x", opener=lambda request, timeout: _Response(503))

    def test_network_error(self):
        def opener(request, timeout):
            raise urllib.error.URLError("connection refused")

        assert not probe_endpoint("http://x", opener=opener)
