"""Pytest configuration and fixtures for knowledge-base testing."""

import pytest
from pathlib import Path

from stacker_kb.config import (
    ChunkingConfig,
    CollectionConfig,
    KnowledgeBaseConfig,
    RetrievalConfig,
    StorageConfig,
)
from stacker_kb.rag.audit import AuditLog
from stacker_kb.rag.embedder import EmbeddingClient
from stacker_kb.rag.vectorstore import ChunkRecord, CodeMetadata, StoreRepository, make_record_id
from stacker_kb.testing import CountingEmbeddings, KeywordEmbeddings, create_mock_llm

KEYWORDS = ["auth", "windows", "user", "health", "deploy", "error", "log", "pipeline"]


@pytest.fixture
def mock_llm_factory():
    """Factory for creating mock chat models with scripted responses.

    Example:
        >>> def test_query(mock_llm_factory):
        ...     llm = mock_llm_factory(["The answer."])
    """
    def _factory(responses):
        return create_mock_llm(responses)
    return _factory


@pytest.fixture
def keyword_embeddings():
    """Bag-of-keywords embeddings over a small project vocabulary."""
    return KeywordEmbeddings(KEYWORDS)


@pytest.fixture
def counting_embeddings(keyword_embeddings):
    """Keyword embeddings that record every embedded text."""
    return CountingEmbeddings(keyword_embeddings)


@pytest.fixture
def embedder(counting_embeddings):
    """Embedding client over the counting keyword embeddings."""
    return EmbeddingClient(counting_embeddings, model_name="fake-keywords")


@pytest.fixture
def repo_root(tmp_path):
    """A small project tree with code, docs, logs and pipeline runs.

    Returns:
        Path to the project root
    """
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "logs").mkdir()
    (root / "pipeline-data" / "deploy").mkdir(parents=True)

    (root / "src" / "auth.py").write_text(
        "def enable_windows_auth(app):\n    app.auth = 'windows'\n    return app\n",
        encoding="utf-8",
    )
    (root / "src" / "health.py").write_text(
        "def health():\n    return {'status': 'ok'}\n",
        encoding="utf-8",
    )
    (root / "docs" / "guide.md").write_text(
        "# Auth\nWindows Auth is enabled on /user.\n\n# Deploy\nDeploy runs from the pipeline.\n",
        encoding="utf-8",
    )
    (root / "logs" / "app.log").write_text(
        "2026-10-18 12:00:01 [INF] Service started\n2026-10-18 12:00:02 [ERR] Auth error for user\n",
        encoding="utf-8",
    )
    (root / "pipeline-data" / "deploy" / "101.json").write_text(
        '{"pipeline": "deploy", "runId": "101", "result": "succeeded", "branch": "main"}',
        encoding="utf-8",
    )
    return root


@pytest.fixture
def kb_config(tmp_path):
    """Configuration with small chunks and stores under tmp_path."""
    return KnowledgeBaseConfig(
        chunking=ChunkingConfig(max_chunk_size=200, overlap=20),
        retrieval=RetrievalConfig(top_k=5, threshold=0.5, context_budget_tokens=1000),
        storage=StorageConfig(
            cache_dir=str(tmp_path / "cache"),
            backup_dir=str(tmp_path / "backup"),
            audit_log=str(tmp_path / "audit" / "queries.ndjson"),
        ),
        collections=(
            CollectionConfig(name="code", kind="code", roots=("src",), extensions=(".py",)),
            CollectionConfig(name="docs", kind="docs", roots=("docs",), extensions=(".md",)),
            CollectionConfig(
                name="logs", kind="logs", roots=("logs",), extensions=(".log",),
                retention_days=14, max_items=100,
            ),
            CollectionConfig(
                name="pipelines", kind="pipelines", roots=("pipeline-data",), extensions=(".json",),
                retention_days=30, max_items=5,
            ),
        ),
    ).validate()


@pytest.fixture
def repository(kb_config):
    """Store repository under tmp_path."""
    return StoreRepository.from_config(kb_config.storage)


@pytest.fixture
def audit_log(kb_config):
    return AuditLog(kb_config.storage.audit_log)


@pytest.fixture
def make_record():
    """Factory for chunk records with explicit vectors."""
    def _factory(file_path, embedding, chunk_index=0, content=None, content_hash="h0", metadata=None):
        return ChunkRecord(
            id=make_record_id(file_path, chunk_index),
            file_path=file_path,
            chunk_index=chunk_index,
            content=content if content is not None else f"content of {file_path}",
            content_hash=content_hash,
            embedding=list(embedding),
            metadata=metadata or CodeMetadata(language="python"),
        )
    return _factory
