"""Discovery of indexable source units and conversion to text documents.

Each collection kind has its own reader:

- code: the file text
- docs: the file text (chunked by section later)
- logs: the most recent lines of a log file, with the set of levels seen
- pipelines: one CI run record (JSON) rendered as a readable summary
"""

import json
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from ..config import CollectionConfig
from ..errors import ContentError
from ..logging_config import get_logger
from ..tools.gitignore import IgnoreRules
from .vectorstore import CodeMetadata, DocMetadata, LogMetadata, PipelineMetadata

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400

LANGUAGES = {
    ".py": "python",
    ".cs": "csharp",
    ".js": "javascript",
    ".ts": "typescript",
    ".ps1": "powershell",
    ".sql": "sql",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".toml": "toml",
}

# Serilog short and long level names, plus the common upper-case forms
LEVEL_NAMES = {
    "VRB": "Verbose", "VERBOSE": "Verbose", "TRACE": "Verbose",
    "DBG": "Debug", "DEBUG": "Debug",
    "INF": "Information", "INFO": "Information", "INFORMATION": "Information",
    "WRN": "Warning", "WARN": "Warning", "WARNING": "Warning",
    "ERR": "Error", "ERROR": "Error",
    "FTL": "Fatal", "FATAL": "Fatal", "CRITICAL": "Fatal",
}

_BRACKET_LEVEL = re.compile(
    r"\[(?:[^\]]*\s)?(VRB|DBG|INF|WRN|ERR|FTL|Verbose|Debug|Information|Warning|Error|Fatal)\]"
)
_WORD_LEVEL = re.compile(r"(?:^|\s-\s|\s)(DEBUG|INFO|WARNING|WARN|ERROR|CRITICAL|FATAL)(?:\s-\s|:|\s)")
_TIMESTAMP = re.compile(
    r"^\[?(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:\s?(?:Z|[+-]\d{2}:?\d{2}))?)"
)

MetadataType = Union[CodeMetadata, DocMetadata, LogMetadata, PipelineMetadata]


@dataclass
class SourceUnit:
    """A discovered file, before reading."""

    path: Path
    rel_path: str
    mtime: float
    size: int


@dataclass
class SourceDocument:
    """A read source unit: the text to fingerprint and chunk."""

    source_path: str
    text: str
    metadata: MetadataType


def _rel_posix(path: Path, base_dir: Path) -> str:
    try:
        return path.relative_to(base_dir).as_posix()
    except ValueError:
        return path.as_posix()


class ContentLocator:
    """Enumerates and reads the source units of one collection.

    Args:
        collection: Collection configuration (roots, filters, limits)
        base_dir: Directory that relative roots and logical paths are based on
        now: Clock used for the retention cutoff (injectable for tests)
    """

    def __init__(
        self,
        collection: CollectionConfig,
        base_dir: Union[str, Path] = ".",
        now: Callable[[], float] = time.time,
    ) -> None:
        self.collection = collection
        self.base_dir = Path(base_dir).resolve()
        self._now = now

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def _retention_cutoff(self) -> Optional[float]:
        days = self.collection.retention_days
        if not self.collection.time_partitioned or days is None:
            return None
        return self._now() - days * SECONDS_PER_DAY

    def _should_index(self, path: Path, root: Path, rules: IgnoreRules) -> bool:
        """Check extension allow-list, excluded segments and ignore files."""
        extensions = {e.lower() for e in self.collection.extensions}
        if extensions and path.suffix.lower() not in extensions:
            return False

        rel_parts = path.relative_to(root).parts
        excluded = set(self.collection.excluded_dirs)
        if any(part in excluded for part in rel_parts[:-1]):
            return False

        if rules.is_ignored(path):
            return False
        return True

    def locate(self) -> list[SourceUnit]:
        """Find source units: ordered by logical path, de-duplicated.

        A missing root is logged and contributes nothing. Zero-byte files
        and, for time-partitioned collections, files older than the
        retention horizon are never returned.
        """
        cutoff = self._retention_cutoff()
        seen: set[Path] = set()
        units: list[SourceUnit] = []
        expired = 0

        for root_str in self.collection.roots:
            root = (self.base_dir / root_str).resolve()
            if not root.is_dir():
                logger.warning("Collection %r: root %s not found, skipping", self.collection.name, root)
                continue

            rules = IgnoreRules.from_root(root)
            for file_path in root.rglob("*"):
                if not file_path.is_file():
                    continue
                resolved = file_path.resolve()
                if resolved in seen:
                    continue
                if not self._should_index(file_path, root, rules):
                    continue

                try:
                    stat = file_path.stat()
                except OSError:
                    continue
                if stat.st_size == 0:
                    continue
                if cutoff is not None and stat.st_mtime < cutoff:
                    expired += 1
                    continue

                seen.add(resolved)
                units.append(SourceUnit(
                    path=resolved,
                    rel_path=_rel_posix(resolved, self.base_dir),
                    mtime=stat.st_mtime,
                    size=stat.st_size,
                ))

        if expired:
            logger.info(
                "Collection %r: %s units older than %s days excluded",
                self.collection.name, expired, self.collection.retention_days,
            )

        if self.collection.kind == "pipelines" and self.collection.max_items:
            units = self._newest_per_directory(units, self.collection.max_items)

        units.sort(key=lambda u: u.rel_path)
        return units

    @staticmethod
    def _newest_per_directory(units: list[SourceUnit], limit: int) -> list[SourceUnit]:
        """Keep the newest ``limit`` run records in each pipeline directory."""
        by_dir: dict[Path, list[SourceUnit]] = {}
        for unit in units:
            by_dir.setdefault(unit.path.parent, []).append(unit)
        kept = []
        for group in by_dir.values():
            group.sort(key=lambda u: (u.mtime, u.rel_path), reverse=True)
            kept.extend(group[:limit])
        return kept

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def read(self, unit: SourceUnit) -> SourceDocument:
        """Read a unit into a document.

        Raises:
            ContentError: If the unit is unreadable, not text, or empty.
        """
        try:
            text = unit.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ContentError(f"{unit.rel_path} is not UTF-8 text: {e}") from e
        except OSError as e:
            raise ContentError(f"Could not read {unit.rel_path}: {e}") from e

        if not text.strip():
            raise ContentError(f"{unit.rel_path} is empty")

        kind = self.collection.kind
        if kind == "logs":
            return self._read_log(unit, text)
        if kind == "pipelines":
            return self._read_pipeline(unit, text)
        if kind == "docs":
            metadata = DocMetadata(doc_type=unit.path.suffix.lstrip(".").lower(), file_mtime=unit.mtime)
            return SourceDocument(unit.rel_path, text, metadata)

        metadata = CodeMetadata(language=LANGUAGES.get(unit.path.suffix.lower()), file_mtime=unit.mtime)
        return SourceDocument(unit.rel_path, text, metadata)

    def _read_log(self, unit: SourceUnit, text: str) -> SourceDocument:
        lines = text.splitlines()
        limit = self.collection.max_items
        if limit and len(lines) > limit:
            lines = lines[-limit:]
            text = "\n".join(lines) + "\n"

        levels, first_ts, last_ts = scan_log_lines(lines)
        metadata = LogMetadata(
            log_levels=levels,
            first_timestamp=first_ts,
            last_timestamp=last_ts,
            file_mtime=unit.mtime,
        )
        return SourceDocument(unit.rel_path, text, metadata)

    def _read_pipeline(self, unit: SourceUnit, text: str) -> SourceDocument:
        try:
            record = json.loads(text)
        except json.JSONDecodeError as e:
            raise ContentError(f"{unit.rel_path} is not a valid run record: {e}") from e
        if not isinstance(record, dict):
            raise ContentError(f"{unit.rel_path} is not a run record object")

        pipeline = str(_first(record, "pipeline", "pipelineName", "definition") or unit.path.parent.name)
        run_id = str(_first(record, "runId", "id", "buildNumber", "runNumber") or unit.path.stem)
        metadata = PipelineMetadata(
            pipeline=pipeline,
            run_id=run_id,
            result=_str_or_none(_first(record, "result", "status", "conclusion")),
            branch=_str_or_none(_first(record, "branch", "sourceBranch", "ref")),
            started_at=_str_or_none(_first(record, "startTime", "startedAt", "started_at")),
            finished_at=_str_or_none(_first(record, "finishTime", "finishedAt", "finished_at")),
        )
        return SourceDocument(
            source_path=f"pipeline://{pipeline}/{run_id}",
            text=summarize_run(record, metadata),
            metadata=metadata,
        )


def _first(record: dict, *keys: str):
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)


def scan_log_lines(lines: list[str]) -> tuple[list[str], Optional[str], Optional[str]]:
    """Collect the log levels and first/last timestamps seen in log lines.

    Understands Serilog text output ("[12:00:01 INF]", "[INF]"), common
    "LEVEL -" formats and JSON lines with level/timestamp keys.

    Returns:
        (sorted distinct level names, first timestamp, last timestamp)
    """
    levels: set[str] = set()
    timestamps: list[str] = []

    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue

        if stripped.startswith("{"):
            try:
                entry = json.loads(stripped)
            except json.JSONDecodeError:
                entry = None
            if isinstance(entry, dict):
                level = _first(entry, "@l", "level", "Level", "levelname")
                if level is not None:
                    levels.add(LEVEL_NAMES.get(str(level).upper(), str(level)))
                timestamp = _first(entry, "@t", "timestamp", "Timestamp", "time")
                if timestamp is not None:
                    timestamps.append(str(timestamp))
                continue

        match = _BRACKET_LEVEL.search(stripped) or _WORD_LEVEL.search(stripped)
        if match:
            levels.add(LEVEL_NAMES[match.group(1).upper()])
        ts_match = _TIMESTAMP.match(stripped)
        if ts_match:
            timestamps.append(ts_match.group(1))

    first_ts = timestamps[0] if timestamps else None
    last_ts = timestamps[-1] if timestamps else None
    return sorted(levels), first_ts, last_ts


def summarize_run(record: dict, metadata: PipelineMetadata) -> str:
    """Render a CI run record as plain text for embedding."""
    lines = [
        f"Pipeline: {metadata.pipeline}",
        f"Run: {metadata.run_id}",
    ]
    if metadata.result:
        lines.append(f"Result: {metadata.result}")
    if metadata.branch:
        lines.append(f"Branch: {metadata.branch}")
    commit = _first(record, "commit", "sourceVersion", "sha")
    if commit:
        lines.append(f"Commit: {commit}")
    trigger = _first(record, "trigger", "reason", "requestedFor")
    if trigger:
        lines.append(f"Triggered by: {trigger}")
    if metadata.started_at:
        lines.append(f"Started: {metadata.started_at}")
    if metadata.finished_at:
        lines.append(f"Finished: {metadata.finished_at}")

    stages = record.get("stages") or record.get("jobs") or []
    if isinstance(stages, list) and stages:
        lines.append("Stages:")
        for stage in stages:
            if isinstance(stage, dict):
                name = _first(stage, "name", "displayName", "id") or "?"
                result = _first(stage, "result", "status", "conclusion") or "unknown"
                lines.append(f"- {name}: {result}")
            else:
                lines.append(f"- {stage}")

    issues = record.get("issues") or record.get("errors") or []
    if isinstance(issues, list) and issues:
        lines.append("Issues:")
        for issue in issues:
            if isinstance(issue, dict):
                issue = _first(issue, "message", "text") or json.dumps(issue, sort_keys=True)
            lines.append(f"- {issue}")

    notes = _first(record, "summary", "notes", "log")
    if isinstance(notes, str):
        lines.append("")
        lines.append(notes.strip())

    return "\n".join(lines) + "\n"
