"""Fake models for testing without a model-serving endpoint."""

from .mock_embeddings import CountingEmbeddings, FlakyEmbeddings, KeywordEmbeddings
from .mock_llm import create_mock_llm

__all__ = [
    "CountingEmbeddings",
    "FlakyEmbeddings",
    "KeywordEmbeddings",
    "create_mock_llm",
]
