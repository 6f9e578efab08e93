"""Application configuration.

Loaded once from defaults, an optional JSON file and environment overrides,
then passed explicitly to every component. Instances are immutable.
"""

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError
from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = "stacker-kb.json"

COLLECTION_KINDS = ("code", "docs", "logs", "pipelines")

DEFAULT_EXCLUDE_DIRS = (
    "bin", "obj", "node_modules", "dist", "build", "__pycache__",
    ".git", ".venv", "venv", ".kb", "kb-stores",
)

# Pipeline directories may be named after build stages
PARTITION_EXCLUDE_DIRS = ("__pycache__", ".git", ".kb", "kb-stores")

DEFAULT_PROMPT_TEMPLATE = (
    "You are an assistant answering questions about a software project.\n"
    "Answer using only the context below. If the context does not contain "
    "the answer, say so.\n\n"
    "Context:\n{context}\n\n"
    "Question: {question}\n\n"
    "Answer:"
)


@dataclass(frozen=True)
class EndpointConfig:
    """Local model-serving endpoint."""
    base_url: str = "http://localhost:11434"
    embed_model: str = "nomic-embed-text"
    chat_model: str = "llama3"
    embed_backend: str = "remote"  # "remote" or "local" (sentence-transformers)
    temperature: float = 0.7
    embed_timeout_s: float = 30.0
    generate_timeout_s: float = 300.0
    max_retries: int = 0


@dataclass(frozen=True)
class ChunkingConfig:
    max_chunk_size: int = 1000
    overlap: int = 200


@dataclass(frozen=True)
class RetrievalConfig:
    top_k: int = 5
    threshold: float = 0.7
    context_budget_tokens: int = 3000
    chars_per_token: int = 4
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE


@dataclass(frozen=True)
class StorageConfig:
    cache_dir: str = ".kb/cache"
    backup_dir: str = "kb-stores"
    audit_log: str = ".kb/audit/queries.ndjson"


@dataclass(frozen=True)
class IndexingConfig:
    workers: int = 1


@dataclass(frozen=True)
class CollectionConfig:
    """One indexable collection. The store name equals the collection name."""
    name: str
    kind: str
    roots: tuple[str, ...] = (".",)
    extensions: tuple[str, ...] = ()
    exclude_dirs: Optional[tuple[str, ...]] = None  # None: default for the kind
    retention_days: Optional[int] = None  # time-partitioned kinds only
    max_items: Optional[int] = None  # log lines per file / runs per pipeline

    @property
    def time_partitioned(self) -> bool:
        return self.kind in ("logs", "pipelines")

    @property
    def excluded_dirs(self) -> tuple[str, ...]:
        if self.exclude_dirs is not None:
            return self.exclude_dirs
        return PARTITION_EXCLUDE_DIRS if self.time_partitioned else DEFAULT_EXCLUDE_DIRS


def default_collections() -> tuple[CollectionConfig, ...]:
    return (
        CollectionConfig(
            name="code",
            kind="code",
            roots=("src",),
            extensions=(".py", ".cs", ".js", ".ts", ".ps1", ".sql", ".json", ".yml", ".yaml", ".toml"),
        ),
        CollectionConfig(
            name="docs",
            kind="docs",
            roots=("docs", "."),
            extensions=(".md", ".markdown", ".txt", ".rst"),
        ),
        CollectionConfig(
            name="logs",
            kind="logs",
            roots=("logs",),
            extensions=(".log", ".ndjson", ".jsonl"),
            retention_days=14,
            max_items=2000,
        ),
        CollectionConfig(
            name="pipelines",
            kind="pipelines",
            roots=("pipeline-data",),
            extensions=(".json",),
            retention_days=30,
            max_items=20,
        ),
    )


@dataclass(frozen=True)
class KnowledgeBaseConfig:
    """Top-level configuration."""
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    collections: tuple[CollectionConfig, ...] = field(default_factory=default_collections)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def collection(self, name: str) -> CollectionConfig:
        for collection in self.collections:
            if collection.name == name:
                return collection
        known = ", ".join(c.name for c in self.collections)
        raise ConfigurationError(f"Unknown collection {name!r} (configured: {known})")

    def validate(self) -> "KnowledgeBaseConfig":
        """Raise ConfigurationError for any invalid setting; return self."""
        chunking = self.chunking
        if chunking.max_chunk_size <= 0:
            raise ConfigurationError(f"max_chunk_size must be positive, got {chunking.max_chunk_size}")
        if chunking.overlap < 0:
            raise ConfigurationError(f"overlap must not be negative, got {chunking.overlap}")
        if chunking.overlap >= chunking.max_chunk_size:
            raise ConfigurationError(
                f"overlap ({chunking.overlap}) must be smaller than max_chunk_size ({chunking.max_chunk_size})"
            )

        retrieval = self.retrieval
        if not 0.0 <= retrieval.threshold <= 1.0:
            raise ConfigurationError(f"threshold must be within [0, 1], got {retrieval.threshold}")
        if retrieval.top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {retrieval.top_k}")
        if retrieval.context_budget_tokens < 1:
            raise ConfigurationError("context_budget_tokens must be at least 1")
        if retrieval.chars_per_token < 1:
            raise ConfigurationError("chars_per_token must be at least 1")
        for placeholder in ("{context}", "{question}"):
            if placeholder not in retrieval.prompt_template:
                raise ConfigurationError(f"prompt_template is missing the {placeholder} placeholder")

        if self.indexing.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.indexing.workers}")
        if self.endpoint.embed_backend not in ("remote", "local"):
            raise ConfigurationError(f"Unknown embed_backend {self.endpoint.embed_backend!r}")
        if not self.endpoint.base_url:
            raise ConfigurationError("endpoint.base_url is required")

        seen = set()
        for collection in self.collections:
            if collection.kind not in COLLECTION_KINDS:
                raise ConfigurationError(
                    f"Collection {collection.name!r} has unknown kind {collection.kind!r}"
                )
            if collection.name in seen:
                raise ConfigurationError(f"Duplicate collection name {collection.name!r}")
            if collection.max_items is not None and collection.max_items < 1:
                raise ConfigurationError(f"Collection {collection.name!r}: max_items must be at least 1")
            seen.add(collection.name)
        return self


def _section(cls, data: Mapping, name: str):
    values = data.get(name) or {}
    if not isinstance(values, Mapping):
        raise ConfigurationError(f"Config section {name!r} must be an object")
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid keys in config section {name!r}: {e}") from e


def _collection_from_dict(data: Mapping) -> CollectionConfig:
    values = dict(data)
    for key in ("roots", "extensions", "exclude_dirs"):
        if key in values:
            value = values[key]
            if value is None:
                del values[key]
                continue
            if isinstance(value, str):
                value = [value]
            elif not isinstance(value, (list, tuple)):
                raise ConfigurationError(
                    f"Collection {data.get('name')!r}: {key} must be a list of strings, got {value!r}"
                )
            values[key] = tuple(value)
    try:
        return CollectionConfig(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid collection config {data!r}: {e}") from e


def config_from_dict(data: Mapping) -> KnowledgeBaseConfig:
    """Build a configuration from a parsed JSON document (no env overrides)."""
    collections = data.get("collections")
    return KnowledgeBaseConfig(
        endpoint=_section(EndpointConfig, data, "endpoint"),
        chunking=_section(ChunkingConfig, data, "chunking"),
        retrieval=_section(RetrievalConfig, data, "retrieval"),
        storage=_section(StorageConfig, data, "storage"),
        indexing=_section(IndexingConfig, data, "indexing"),
        collections=(
            tuple(_collection_from_dict(c) for c in collections)
            if collections is not None
            else default_collections()
        ),
        log_level=data.get("log_level", "INFO"),
        log_file=data.get("log_file"),
    )


def load_config(
    path: str | Path | None = DEFAULT_CONFIG_FILE,
    env: Optional[Mapping[str, str]] = None,
) -> KnowledgeBaseConfig:
    """Load configuration from a JSON file and environment variables.

    A missing file falls back to defaults; an unreadable or malformed file
    is a configuration error.

    Args:
        path: JSON config file. None skips file loading.
        env: Environment mapping (defaults to os.environ).

    Returns:
        Validated, immutable configuration.
    """
    env = os.environ if env is None else env
    data: dict = {}

    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            try:
                data = json.loads(config_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Could not read config file {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file {config_path} must contain a JSON object")
        else:
            logger.debug("No config file at %s (using defaults)", config_path)

    config = config_from_dict(data)

    endpoint = config.endpoint
    if env.get("STACKER_KB_ENDPOINT"):
        endpoint = replace(endpoint, base_url=env["STACKER_KB_ENDPOINT"])
    if env.get("STACKER_KB_EMBED_MODEL"):
        endpoint = replace(endpoint, embed_model=env["STACKER_KB_EMBED_MODEL"])
    if env.get("STACKER_KB_CHAT_MODEL"):
        endpoint = replace(endpoint, chat_model=env["STACKER_KB_CHAT_MODEL"])
    if env.get("STACKER_KB_EMBED_BACKEND"):
        endpoint = replace(endpoint, embed_backend=env["STACKER_KB_EMBED_BACKEND"].lower())

    storage = config.storage
    if env.get("STACKER_KB_CACHE_DIR"):
        storage = replace(storage, cache_dir=env["STACKER_KB_CACHE_DIR"])
    if env.get("STACKER_KB_BACKUP_DIR"):
        storage = replace(storage, backup_dir=env["STACKER_KB_BACKUP_DIR"])

    log_level = env.get("STACKER_KB_LOG_LEVEL", config.log_level).upper()
    log_file = env.get("STACKER_KB_LOG_FILE", config.log_file)

    config = replace(
        config,
        endpoint=endpoint,
        storage=storage,
        log_level=log_level,
        log_file=log_file,
    )
    return config.validate()
