"""Unit tests for content discovery and source readers."""

import json
import os
import time

import pytest

from stacker_kb.config import CollectionConfig, default_collections
from stacker_kb.errors import ContentError
from stacker_kb.rag.locator import ContentLocator, scan_log_lines
from stacker_kb.rag.vectorstore import CodeMetadata, DocMetadata, LogMetadata, PipelineMetadata

DAY = 86400


def _write(path, text, mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class TestLocate:
    """Test discovery filters and ordering."""

    def test_finds_allowed_extensions_in_path_order(self, tmp_path):
        _write(tmp_path / "src" / "b.py", "b = 1\n")
        _write(tmp_path / "src" / "a.py", "a = 1\n")
        _write(tmp_path / "src" / "notes.txt", "skip me\n")
        collection = CollectionConfig(name="code", kind="code", roots=("src",), extensions=(".py",))

        units = ContentLocator(collection, base_dir=tmp_path).locate()
        assert [u.rel_path for u in units] == ["src/a.py", "src/b.py"]
        assert all(u.size > 0 for u in units)

    def test_excluded_dirs_ignore_files_and_empty_files(self, tmp_path):
        _write(tmp_path / "src" / "keep.py", "x = 1\n")
        _write(tmp_path / "src" / "bin" / "out.py", "x = 1\n")
        _write(tmp_path / "src" / "generated.py", "x = 1\n")
        _write(tmp_path / "src" / ".cache" / "c.py", "x = 1\n")
        _write(tmp_path / "src" / "empty.py", "")
        _write(tmp_path / "src" / ".gitignore", "generated.py\n")
        collection = CollectionConfig(name="code", kind="code", roots=("src",), extensions=(".py",))

        units = ContentLocator(collection, base_dir=tmp_path).locate()
        assert [u.rel_path for u in units] == ["src/keep.py"]

    def test_missing_root_yields_nothing(self, tmp_path):
        collection = CollectionConfig(name="code", kind="code", roots=("nope",))
        assert ContentLocator(collection, base_dir=tmp_path).locate() == []

    def test_overlapping_roots_are_deduplicated(self, tmp_path):
        _write(tmp_path / "docs" / "guide.md", "# Guide\n")
        collection = CollectionConfig(name="docs", kind="docs", roots=("docs", "."), extensions=(".md",))
        units = ContentLocator(collection, base_dir=tmp_path).locate()
        assert [u.rel_path for u in units] == ["docs/guide.md"]

    def test_retention_cutoff_for_time_partitioned_collections(self, tmp_path):
        now = time.time()
        _write(tmp_path / "logs" / "new.log", "[INF] fresh\n", mtime=now - DAY)
        _write(tmp_path / "logs" / "old.log", "[INF] stale\n", mtime=now - 20 * DAY)
        collection = CollectionConfig(
            name="logs", kind="logs", roots=("logs",), extensions=(".log",), retention_days=14,
        )
        units = ContentLocator(collection, base_dir=tmp_path, now=lambda: now).locate()
        assert [u.rel_path for u in units] == ["logs/new.log"]

    def test_retention_does_not_apply_to_code(self, tmp_path):
        _write(tmp_path / "src" / "old.py", "x = 1\n", mtime=time.time() - 400 * DAY)
        collection = CollectionConfig(name="code", kind="code", roots=("src",), retention_days=1)
        assert len(ContentLocator(collection, base_dir=tmp_path).locate()) == 1

    def test_pipelines_keep_newest_runs_per_directory(self, tmp_path):
        now = time.time()
        for i in range(4):
            _write(tmp_path / "runs" / "build" / f"{i}.json", "{}", mtime=now - (10 - i) * 60)
        _write(tmp_path / "runs" / "deploy" / "1.json", "{}", mtime=now)
        collection = CollectionConfig(
            name="pipelines", kind="pipelines", roots=("runs",), extensions=(".json",), max_items=2,
        )
        units = ContentLocator(collection, base_dir=tmp_path, now=lambda: now).locate()
        assert [u.rel_path for u in units] == ["runs/build/2.json", "runs/build/3.json", "runs/deploy/1.json"]

    def test_default_pipelines_include_build_stage_directories(self, tmp_path):
        now = time.time()
        _write(tmp_path / "pipeline-data" / "build" / "42.json", "{}", mtime=now)
        _write(tmp_path / "pipeline-data" / "dist" / "7.json", "{}", mtime=now)
        pipelines = [c for c in default_collections() if c.kind == "pipelines"][0]

        units = ContentLocator(pipelines, base_dir=tmp_path, now=lambda: now).locate()
        assert [u.rel_path for u in units] == ["pipeline-data/build/42.json", "pipeline-data/dist/7.json"]

    def test_default_code_still_skips_build_output(self, tmp_path):
        _write(tmp_path / "src" / "build" / "gen.py", "x = 1\n")
        _write(tmp_path / "src" / "app.py", "x = 1\n")
        code = [c for c in default_collections() if c.kind == "code"][0]

        units = ContentLocator(code, base_dir=tmp_path).locate()
        assert [u.rel_path for u in units] == ["src/app.py"]


class TestRead:
    """Test per-kind readers."""

    def test_code_document(self, tmp_path):
        _write(tmp_path / "src" / "app.cs", "class App {}\n")
        collection = CollectionConfig(name="code", kind="code", roots=("src",))
        locator = ContentLocator(collection, base_dir=tmp_path)
        document = locator.read(locator.locate()[0])

        assert document.source_path == "src/app.cs"
        assert document.text == "class App {}\n"
        assert isinstance(document.metadata, CodeMetadata)
        assert document.metadata.language == "csharp"

    def test_doc_document(self, tmp_path):
        _write(tmp_path / "docs" / "guide.md", "# Guide\ntext\n")
        collection = CollectionConfig(name="docs", kind="docs", roots=("docs",))
        locator = ContentLocator(collection, base_dir=tmp_path)
        document = locator.read(locator.locate()[0])
        assert isinstance(document.metadata, DocMetadata)
        assert document.metadata.doc_type == "md"

    def test_log_keeps_last_lines_and_levels(self, tmp_path):
        lines = [f"2026-10-18 12:00:{i:02d} [INF] line {i}" for i in range(10)]
        lines.append("2026-10-18 12:00:59 [ERR] boom")
        _write(tmp_path / "logs" / "app.log", "\n".join(lines) + "\n")
        collection = CollectionConfig(name="logs", kind="logs", roots=("logs",), max_items=3)
        locator = ContentLocator(collection, base_dir=tmp_path)
        document = locator.read(locator.locate()[0])

        assert document.text.splitlines() == lines[-3:]
        assert isinstance(document.metadata, LogMetadata)
        assert document.metadata.log_levels == ["Error", "Information"]
        assert document.metadata.first_timestamp == "2026-10-18 12:00:08"
        assert document.metadata.last_timestamp == "2026-10-18 12:00:59"

    def test_pipeline_run_is_summarized(self, tmp_path):
        record = {
            "pipeline": "deploy",
            "runId": 42,
            "result": "failed",
            "branch": "main",
            "stages": [{"name": "build", "result": "succeeded"}, {"name": "test", "result": "failed"}],
            "issues": [{"message": "3 tests failed"}],
        }
        _write(tmp_path / "runs" / "deploy" / "42.json", json.dumps(record))
        collection = CollectionConfig(name="pipelines", kind="pipelines", roots=("runs",))
        locator = ContentLocator(collection, base_dir=tmp_path)
        document = locator.read(locator.locate()[0])

        assert document.source_path == "pipeline://deploy/42"
        assert isinstance(document.metadata, PipelineMetadata)
        assert document.metadata.result == "failed"
        assert "Pipeline: deploy" in document.text
        assert "- test: failed" in document.text
        assert "- 3 tests failed" in document.text

    def test_invalid_pipeline_json_is_content_error(self, tmp_path):
        _write(tmp_path / "runs" / "bad.json", "{oops")
        collection = CollectionConfig(name="pipelines", kind="pipelines", roots=("runs",))
        locator = ContentLocator(collection, base_dir=tmp_path)
        with pytest.raises(ContentError):
            locator.read(locator.locate()[0])

    def test_non_utf8_and_blank_files_are_content_errors(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "bin.py").write_bytes(b"\xff\xfe\x00bad")
        _write(tmp_path / "src" / "blank.py", "   \n\n")
        collection = CollectionConfig(name="code", kind="code", roots=("src",))
        locator = ContentLocator(collection, base_dir=tmp_path)
        for unit in locator.locate():
            with pytest.raises(ContentError):
                locator.read(unit)


class TestScanLogLines:
    """Test log level and timestamp extraction."""

    def test_serilog_text_formats(self):
        levels, first, last = scan_log_lines([
            "[12:00:01 INF] Started",
            "[12:00:02 WRN] Slow request",
        ])
        assert levels == ["Information", "Warning"]
        assert first is None and last is None

    def test_json_lines(self):
        levels, first, last = scan_log_lines([
            '{"@t": "2026-10-18T12:00:00Z", "@l": "Warning", "@m": "disk"}',
            '{"timestamp": "2026-10-18T12:05:00Z", "level": "error"}',
        ])
        assert levels == ["Error", "Warning"]
        assert first == "2026-10-18T12:00:00Z"
        assert last == "2026-10-18T12:05:00Z"

    def test_python_style_lines(self):
        levels, _, _ = scan_log_lines(["2026-10-18 12:00:00,123 - app - ERROR - failed"])
        assert levels == ["Error"]
