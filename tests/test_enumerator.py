"""
Unit tests for source tree enumeration.

Tests verify:
- Shell-glob ignore matching relative to the source root
- Depth-first lexical ordering
- Destination key construction
- EnumerationError for unreadable trees
"""

import os
from pathlib import Path

import pytest

from gcs_publish.errors import EnumerationError
from gcs_publish.uploader import (
    UploadTask,
    compile_ignore_pattern,
    enumerate_files,
    matches_ignore,
)
from gcs_publish.uploader import enumerator


def _write(root: Path, relative: str, content: str = "data") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


class TestMatchesIgnore:
    """Test ignore pattern matching."""

    def test_empty_pattern_matches_nothing(self):
        assert matches_ignore("x.txt", "") is False
        assert matches_ignore("x.txt", None) is False

    def test_star_matches_within_segment(self):
        assert matches_ignore("y.log", "*.log") is True
        assert matches_ignore("x.txt", "*.log") is False

    def test_star_does_not_cross_separator(self):
        assert matches_ignore("logs/y.log", "*.log") is False
        assert matches_ignore("logs/y.log", "*/*.log") is True
        assert matches_ignore("logs/y.log", "logs/*") is True

    def test_question_mark_and_brackets(self):
        assert matches_ignore("a1.txt", "a?.txt") is True
        assert matches_ignore("a12.txt", "a?.txt") is False
        assert matches_ignore("b.txt", "[abc].txt") is True
        assert matches_ignore("d.txt", "[abc].txt") is False
        assert matches_ignore("d.txt", "[!abc].txt") is True

    def test_matching_is_case_sensitive(self):
        assert matches_ignore("Y.LOG", "*.log") is False

    def test_exact_path(self):
        assert matches_ignore("assets/secret.json", "assets/secret.json") is True

    def test_caret_negates_class(self):
        assert matches_ignore("d.txt", "[^abc].txt") is True
        assert matches_ignore("a.txt", "[^abc].txt") is False

    def test_ranges(self):
        assert matches_ignore("v7.txt", "v[0-9].txt") is True
        assert matches_ignore("vx.txt", "v[0-9].txt") is False

    def test_backslash_escapes_wildcards(self):
        assert matches_ignore("*.log", r"\*.log") is True
        assert matches_ignore("y.log", r"\*.log") is False
        assert matches_ignore("a?.txt", r"a\?.txt") is True
        assert matches_ignore("ab.txt", r"a\?.txt") is False
        assert matches_ignore("[x].txt", r"\[x].txt") is True

    def test_escape_inside_class(self):
        assert matches_ignore("].txt", r"[\]].txt") is True
        assert matches_ignore("-.txt", r"[\-a].txt") is True

    def test_regex_metacharacters_are_literal(self):
        assert matches_ignore("a+b(1).txt", "a+b(1).txt") is True
        assert matches_ignore("aab(1).txt", "a+b(1).txt") is False

    @pytest.mark.parametrize(
        "pattern",
        ["*.[k", "[", "[]", "[a-]", "[^]", "x\\", "[a\\", "[z-a].txt", "ok/*.[k"],
    )
    def test_malformed_pattern_raises(self, pattern):
        with pytest.raises(EnumerationError, match="invalid ignore pattern"):
            matches_ignore("secret.key", pattern)

    def test_compiled_per_segment(self):
        assert len(compile_ignore_pattern("a/b/*.txt")) == 3


class TestUploadTask:
    """Test UploadTask destination keys."""

    def test_destination_key_with_prefix(self):
        task = UploadTask(absolute_path="/a/x.txt", relative_path="x.txt")
        assert task.destination_key("p") == "p/x.txt"

    def test_destination_key_nested_prefix(self):
        task = UploadTask(absolute_path="/a/css/site.css", relative_path="css/site.css")
        assert task.destination_key("releases/v2") == "releases/v2/css/site.css"

    def test_destination_key_without_prefix(self):
        task = UploadTask(absolute_path="/a/x.txt", relative_path="x.txt")
        assert task.destination_key("") == "x.txt"

    def test_task_is_immutable(self):
        task = UploadTask(absolute_path="/a/x.txt", relative_path="x.txt")
        with pytest.raises(AttributeError):
            task.relative_path = "y.txt"


class TestEnumerateFiles:
    """Test enumerate_files function."""

    def test_ignore_scenario(self, tmp_path: Path):
        """Files matching the ignore glob are never enumerated."""
        _write(tmp_path, "x.txt")
        _write(tmp_path, "y.log")

        tasks = enumerate_files(str(tmp_path), ignore="*.log")

        assert [t.relative_path for t in tasks] == ["x.txt"]
        assert tasks[0].absolute_path == str(tmp_path / "x.txt")

    def test_depth_first_lexical_order(self, tmp_path: Path):
        _write(tmp_path, "c.txt")
        _write(tmp_path, "a/z.txt")
        _write(tmp_path, "a/b/y.txt")
        _write(tmp_path, "b.txt")

        tasks = enumerate_files(str(tmp_path))

        assert [t.relative_path for t in tasks] == [
            "a/b/y.txt",
            "a/z.txt",
            "b.txt",
            "c.txt",
        ]

    def test_malformed_ignore_aborts_before_walking(self, tmp_path: Path, monkeypatch):
        """A typo in the glob fails the run instead of uploading what it meant to hide."""
        _write(tmp_path, "secret.key")
        _write(tmp_path, "x.txt")
        walked = []
        real_scandir = os.scandir

        def recording_scandir(path):
            walked.append(path)
            return real_scandir(path)

        monkeypatch.setattr(enumerator.os, "scandir", recording_scandir)

        with pytest.raises(EnumerationError, match=r"\*\.\[k"):
            enumerate_files(str(tmp_path), ignore="*.[k")

        assert walked == []

    def test_escaped_ignore_skips_literal_name(self, tmp_path: Path):
        _write(tmp_path, "*.log")
        _write(tmp_path, "y.log")

        tasks = enumerate_files(str(tmp_path), ignore=r"\*.log")

        assert [t.relative_path for t in tasks] == ["y.log"]

    def test_directories_are_not_yielded(self, tmp_path: Path):
        (tmp_path / "empty").mkdir()
        _write(tmp_path, "full/file.txt")

        tasks = enumerate_files(str(tmp_path))

        assert [t.relative_path for t in tasks] == ["full/file.txt"]

    def test_nested_files_not_matched_by_top_level_glob(self, tmp_path: Path):
        _write(tmp_path, "y.log")
        _write(tmp_path, "logs/z.log")

        tasks = enumerate_files(str(tmp_path), ignore="*.log")

        assert [t.relative_path for t in tasks] == ["logs/z.log"]

    def test_empty_directory(self, tmp_path: Path):
        assert enumerate_files(str(tmp_path)) == []

    def test_relative_source_root(self, tmp_path: Path, monkeypatch):
        _write(tmp_path, "dist/index.html")
        monkeypatch.chdir(tmp_path)

        tasks = enumerate_files("dist")

        assert [t.relative_path for t in tasks] == ["index.html"]
        assert os.path.isabs(tasks[0].absolute_path)

    def test_missing_root_raises(self, tmp_path: Path):
        with pytest.raises(EnumerationError, match="not a directory"):
            enumerate_files(str(tmp_path / "missing"))

    def test_file_root_raises(self, tmp_path: Path):
        path = _write(tmp_path, "x.txt")
        with pytest.raises(EnumerationError):
            enumerate_files(str(path))

    def test_unreadable_subdirectory_aborts(self, tmp_path: Path, monkeypatch):
        _write(tmp_path, "ok.txt")
        _write(tmp_path, "locked/secret.txt")
        real_scandir = os.scandir
        locked = str(tmp_path / "locked")

        def fake_scandir(path):
            if str(path) == locked:
                raise PermissionError(13, "Permission denied", path)
            return real_scandir(path)

        monkeypatch.setattr(enumerator.os, "scandir", fake_scandir)

        with pytest.raises(EnumerationError, match="locked"):
            enumerate_files(str(tmp_path))

    def test_symlinked_directory_is_not_descended(self, tmp_path: Path):
        _write(tmp_path, "real/inner.txt")
        (tmp_path / "alias").symlink_to(tmp_path / "real", target_is_directory=True)

        paths = [t.relative_path for t in enumerate_files(str(tmp_path))]

        assert "real/inner.txt" in paths
        assert "alias/inner.txt" not in paths
