"""Error taxonomy shared by the indexing and query paths."""

from dataclasses import dataclass, asdict


class KnowledgeBaseError(Exception):
    """Base class for all knowledge-base errors."""


class ConfigurationError(KnowledgeBaseError):
    """Invalid sizing, mismatched dimensions or missing configuration.

    Always fatal: raised before any remote call is made.
    """


class ConnectivityError(KnowledgeBaseError):
    """Model endpoint unreachable, timed out, or returned an unusable payload."""


class ContentError(KnowledgeBaseError):
    """Source unit is empty or unreadable. Skipped with a warning."""


class PersistenceError(KnowledgeBaseError):
    """Store file unreadable or corrupt."""


@dataclass
class RunError:
    """One collected failure surfaced in a run summary."""

    source: str
    stage: str  # "read", "embed", "generate", "load"
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, source: str, stage: str, exc: BaseException) -> "RunError":
        return cls(
            source=source,
            stage=stage,
            error_type=type(exc).__name__,
            message=str(exc),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def __str__(self) -> str:
        return f"{self.source} [{self.stage}] {self.error_type}: {self.message}"
