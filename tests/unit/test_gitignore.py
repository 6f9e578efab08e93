"""Unit tests for ignore-file handling."""

from pathlib import Path

from stacker_kb.tools.gitignore import IgnoreRules, parse_pattern


def _rules(root, *lines):
    return IgnoreRules(root=root, patterns=[p for p in map(parse_pattern, lines) if p])


class TestParsePattern:
    """Test pattern parsing."""

    def test_blank_and_comment_lines(self):
        assert parse_pattern("") is None
        assert parse_pattern("   ") is None
        assert parse_pattern("# comment") is None

    def test_flags(self):
        pattern = parse_pattern("!build/")
        assert pattern.negated
        assert pattern.directory_only


class TestIsIgnored:
    """Test matching against relative paths."""

    def test_wildcard_matches_at_any_depth(self, tmp_path):
        rules = _rules(tmp_path, "*.log")
        assert rules.is_ignored(Path("app.log"))
        assert rules.is_ignored(Path("a/b/app.log"))
        assert not rules.is_ignored(Path("app.py"))

    def test_directory_pattern(self, tmp_path):
        rules = _rules(tmp_path, "build/")
        assert rules.is_ignored(Path("build/out.py"))
        assert not rules.is_ignored(Path("build"))

    def test_anchored_pattern(self, tmp_path):
        rules = _rules(tmp_path, "/root.txt")
        assert rules.is_ignored(Path("root.txt"))
        assert not rules.is_ignored(Path("sub/root.txt"))

    def test_negation_re_includes(self, tmp_path):
        rules = _rules(tmp_path, "*.log", "!keep.log")
        assert rules.is_ignored(Path("drop.log"))
        assert not rules.is_ignored(Path("keep.log"))

    def test_dot_segments_always_ignored(self, tmp_path):
        rules = _rules(tmp_path, "!.hidden/")
        assert rules.is_ignored(Path(".hidden/x.py"))

    def test_rag_ignore_overrides_gitignore(self, tmp_path):
        (tmp_path / ".gitignore").write_text("*.md\n", encoding="utf-8")
        (tmp_path / ".rag-ignore").write_text("!README.md\n", encoding="utf-8")
        rules = IgnoreRules.from_root(tmp_path)
        assert rules.is_ignored(tmp_path / "notes.md")
        assert not rules.is_ignored(tmp_path / "README.md")

    def test_path_outside_root_is_not_ignored(self, tmp_path):
        rules = _rules(tmp_path / "inner", "*")
        assert not rules.is_ignored(tmp_path / "other.py")
