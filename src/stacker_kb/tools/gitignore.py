"""Utilities for parsing and checking .gitignore / .rag-ignore patterns."""

import re
from dataclasses import dataclass, field
from pathlib import Path

from ..logging_config import get_logger

logger = get_logger(__name__)

IGNORE_FILES = (".gitignore", ".rag-ignore")


@dataclass
class IgnorePattern:
    regex: re.Pattern
    directory_only: bool
    negated: bool


def parse_pattern(pattern: str) -> IgnorePattern | None:
    """Parse one gitignore line into a compiled pattern.

    Returns:
        IgnorePattern, or None for blank lines, comments and invalid patterns
    """
    pattern = pattern.strip()

    # Skip empty lines and comments
    if not pattern or pattern.startswith("#"):
        return None

    negated = pattern.startswith("!")
    if negated:
        pattern = pattern[1:]

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern[:-1]

    # Escape special regex chars except * and ?
    regex = re.escape(pattern)

    # Convert gitignore wildcards to regex
    regex = regex.replace(r"\*\*", "GITIGNORE_DOUBLE_STAR")
    regex = regex.replace(r"\*", r"[^/]*")
    regex = regex.replace(r"\?", r"[^/]")
    regex = regex.replace("GITIGNORE_DOUBLE_STAR", r".*")

    if regex.startswith("/"):
        # Anchored at the root
        regex = "^" + regex[1:]
    else:
        regex = "(^|/)" + regex

    # Match the path itself or anything below it
    regex = regex + "(/|$)"

    try:
        return IgnorePattern(re.compile(regex), directory_only, negated)
    except re.error:
        return None


@dataclass
class IgnoreRules:
    """Ignore patterns loaded from one root. Later patterns win."""

    root: Path
    patterns: list[IgnorePattern] = field(default_factory=list)

    @classmethod
    def from_root(cls, root: Path) -> "IgnoreRules":
        """Load .gitignore then .rag-ignore from a root directory.

        .rag-ignore patterns come last, so they can re-include paths
        ignored by .gitignore using negation (!).
        """
        rules = cls(root=root)
        for filename in IGNORE_FILES:
            path = root / filename
            if not path.is_file():
                continue
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read %s: %s", path, e)
                continue
            for line in lines:
                parsed = parse_pattern(line)
                if parsed:
                    rules.patterns.append(parsed)
        return rules

    def is_ignored(self, path: Path) -> bool:
        """Check a path (absolute or relative to the root) against the rules.

        Dot-prefixed path segments are always ignored and cannot be
        re-included by negation.
        """
        try:
            rel_path = path.relative_to(self.root) if path.is_absolute() else path
        except ValueError:
            # Outside the root; leave it to other checks
            return False

        if any(part.startswith(".") for part in rel_path.parts):
            return True

        rel_path_str = rel_path.as_posix()
        is_dir = path.is_dir() if path.is_absolute() else False

        ignored = False
        for pattern in self.patterns:
            match = pattern.regex.search(rel_path_str)
            if not match:
                continue
            # A directory-only pattern matching the final segment of a file is not a match
            if pattern.directory_only and match.end() == len(rel_path_str) and not is_dir:
                continue
            ignored = not pattern.negated

        return ignored
