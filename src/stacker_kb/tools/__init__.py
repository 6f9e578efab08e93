"""Filesystem helpers."""

from .gitignore import IgnoreRules, parse_pattern

__all__ = ["IgnoreRules", "parse_pattern"]
