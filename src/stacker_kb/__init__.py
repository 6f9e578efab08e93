"""Local knowledge base: index project content and answer questions about it."""

__version__ = "0.1.0"
