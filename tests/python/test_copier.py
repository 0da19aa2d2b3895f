"""
Unit tests for the age-filtered copier.

Tests cover:
- Inclusive age threshold in whole days
- Directory traversal regardless of directory age
- Mirrored directory structure
- Metadata markers and missing roots
- Non-fatal per-file copy failures
"""

from __future__ import annotations

import os
import shutil
from datetime import datetime
from pathlib import Path

import pytest
from conftest import set_age

from xcs_diag.exceptions import ConfigurationError, ErrorCode, MissingRootError
from xcs_diag.storage import AgeFilteredCopier, CopyReport, age_in_days, copy_recent, is_metadata_marker

posix_only = pytest.mark.skipif(os.name != "posix", reason="requires symlink support")


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    root = tmp_path / "source"
    root.mkdir()
    return root


@pytest.fixture
def dest_root(tmp_path: Path) -> Path:
    root = tmp_path / "dest"
    root.mkdir()
    return root


class TestAgeInDays:
    """Tests for whole-day age computation."""

    def test_partial_day_rounds_down(self) -> None:
        assert age_in_days(0.0, 86399.0) == 0
        assert age_in_days(0.0, 86400.0) == 1
        assert age_in_days(0.0, 2.5 * 86400) == 2

    def test_future_mtime_is_negative(self) -> None:
        assert age_in_days(86400.0, 0.0) == -1


class TestIsMetadataMarker:
    """Tests for OS metadata detection."""

    @pytest.mark.parametrize("name", [".", "..", ".DS_Store", "._build.log", ".Spotlight-V100"])
    def test_markers(self, name: str) -> None:
        assert is_metadata_marker(name) is True

    @pytest.mark.parametrize("name", ["build.log", ".hidden.log", "DS_Store"])
    def test_regular_names(self, name: str) -> None:
        assert is_metadata_marker(name) is False


class TestAgeFilteredCopier:
    """Tests for AgeFilteredCopier."""

    def test_threshold_is_inclusive(
        self, source_root: Path, dest_root: Path, reference_time: datetime
    ) -> None:
        """Files exactly max_age_days old are copied, one day older are not."""
        at_threshold = source_root / "at_threshold.log"
        too_old = source_root / "too_old.log"
        fresh = source_root / "fresh.log"
        for path in (at_threshold, too_old, fresh):
            path.write_text(path.name)
        set_age(at_threshold, 7, reference_time)
        set_age(too_old, 8, reference_time)
        set_age(fresh, 0, reference_time)

        copier = AgeFilteredCopier(7, reference_time=reference_time)
        report = copier.copy_recent(source_root, dest_root)

        assert (dest_root / "at_threshold.log").exists()
        assert (dest_root / "fresh.log").exists()
        assert not (dest_root / "too_old.log").exists()
        assert report.files_copied == 2
        assert report.files_skipped == 1
        assert report.success is True

    def test_mirrors_directory_structure(
        self, source_root: Path, dest_root: Path, reference_time: datetime
    ) -> None:
        nested = source_root / "a" / "b" / "c"
        nested.mkdir(parents=True)
        deep = nested / "deep.log"
        deep.write_text("deep")
        top = source_root / "top.txt"
        top.write_text("top")
        for path in (deep, top):
            set_age(path, 1, reference_time)

        AgeFilteredCopier(3, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert (dest_root / "a" / "b" / "c" / "deep.log").read_text() == "deep"
        assert (dest_root / "top.txt").read_text() == "top"

    def test_traverses_old_directories(
        self, source_root: Path, dest_root: Path, reference_time: datetime
    ) -> None:
        """A directory's own age never prevents visiting recent files inside it."""
        old_dir = source_root / "archive"
        old_dir.mkdir()
        recent = old_dir / "recent.log"
        recent.write_text("recent")
        set_age(recent, 0, reference_time)
        set_age(old_dir, 400, reference_time)

        AgeFilteredCopier(1, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert (dest_root / "archive" / "recent.log").exists()

    def test_old_files_never_copied_anywhere_in_tree(
        self, source_root: Path, dest_root: Path, reference_time: datetime
    ) -> None:
        for index, subdir in enumerate(["x", "x/y", "z"]):
            directory = source_root / subdir
            directory.mkdir(parents=True, exist_ok=True)
            old = directory / f"old{index}.log"
            old.write_text("old")
            set_age(old, 30, reference_time)

        report = AgeFilteredCopier(5, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert [p for p in dest_root.rglob("*") if p.is_file()] == []
        assert report.files_skipped == 3

    def test_skips_metadata_markers(
        self, source_root: Path, dest_root: Path, reference_time: datetime
    ) -> None:
        for name in (".DS_Store", "._server.log", "server.log"):
            path = source_root / name
            path.write_text(name)
            set_age(path, 0, reference_time)

        AgeFilteredCopier(1, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert sorted(p.name for p in dest_root.iterdir()) == ["server.log"]

    def test_preserves_modification_time(
        self, source_root: Path, dest_root: Path, reference_time: datetime
    ) -> None:
        path = source_root / "server.log"
        path.write_text("content")
        set_age(path, 2, reference_time)

        AgeFilteredCopier(2, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert (dest_root / "server.log").stat().st_mtime == pytest.approx(path.stat().st_mtime, abs=1)

    def test_does_not_modify_source(
        self, source_root: Path, dest_root: Path, reference_time: datetime
    ) -> None:
        path = source_root / "server.log"
        path.write_text("content")
        set_age(path, 0, reference_time)

        AgeFilteredCopier(1, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert path.read_text() == "content"
        assert sorted(p.name for p in source_root.iterdir()) == ["server.log"]

    def test_missing_source_root(self, tmp_path: Path, dest_root: Path) -> None:
        with pytest.raises(MissingRootError) as exc_info:
            AgeFilteredCopier(1).copy_recent(tmp_path / "absent", dest_root)

        assert exc_info.value.error_code == ErrorCode.FS_MISSING_ROOT
        assert exc_info.value.context["role"] == "source"
        assert list(dest_root.iterdir()) == []

    def test_missing_dest_root(self, source_root: Path, tmp_path: Path) -> None:
        (source_root / "server.log").write_text("x")

        with pytest.raises(MissingRootError) as exc_info:
            AgeFilteredCopier(1).copy_recent(source_root, tmp_path / "absent")

        assert exc_info.value.context["role"] == "destination"
        assert not (tmp_path / "absent").exists()

    def test_copy_failure_is_not_fatal(
        self,
        source_root: Path,
        dest_root: Path,
        reference_time: datetime,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        for name in ("a.log", "b.log", "c.log"):
            path = source_root / name
            path.write_text(name)
            set_age(path, 0, reference_time)

        real_copy2 = shutil.copy2

        def flaky_copy2(src: Path, dst: Path) -> object:
            if Path(src).name == "b.log":
                raise PermissionError(13, "Permission denied")
            return real_copy2(src, dst)

        monkeypatch.setattr(shutil, "copy2", flaky_copy2)

        report = AgeFilteredCopier(1, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert sorted(p.name for p in dest_root.iterdir()) == ["a.log", "c.log"]
        assert report.files_copied == 2
        assert len(report.errors) == 1
        assert "b.log" in report.errors[0]
        assert report.success is False

    def test_negative_threshold_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            AgeFilteredCopier(-1)

        assert exc_info.value.error_code == ErrorCode.CONFIG_VALIDATION
        assert exc_info.value.context["field"] == "max_age_days"

    @posix_only
    def test_symlinked_file_is_copied(
        self, source_root: Path, dest_root: Path, tmp_path: Path, reference_time: datetime
    ) -> None:
        """A symlinked log is copied by content and aged by its target."""
        target = tmp_path / "elsewhere.log"
        target.write_text("target")
        set_age(target, 0, reference_time)
        (source_root / "current.log").symlink_to(target)

        report = AgeFilteredCopier(1, reference_time=reference_time).copy_recent(source_root, dest_root)

        copied = dest_root / "current.log"
        assert copied.read_text() == "target"
        assert not copied.is_symlink()
        assert report.files_copied == 1

    @posix_only
    def test_symlinked_directory_not_followed(
        self, source_root: Path, dest_root: Path, tmp_path: Path, reference_time: datetime
    ) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        inner = outside / "inner.log"
        inner.write_text("inner")
        set_age(inner, 0, reference_time)
        (source_root / "linked").symlink_to(outside, target_is_directory=True)
        (source_root / "dangling.log").symlink_to(tmp_path / "missing.log")

        report = AgeFilteredCopier(1, reference_time=reference_time).copy_recent(source_root, dest_root)

        assert list(dest_root.iterdir()) == []
        assert report.files_copied == 0
        assert report.success is True

    def test_module_function(self, source_root: Path, dest_root: Path) -> None:
        (source_root / "now.log").write_text("now")

        report = copy_recent(source_root, dest_root, 0)

        assert isinstance(report, CopyReport)
        assert (dest_root / "now.log").exists()


class TestCopyReport:
    """Tests for CopyReport."""

    def test_to_dict(self, tmp_path: Path) -> None:
        report = CopyReport(source_root=tmp_path / "s", dest_root=tmp_path / "d", files_copied=3)
        data = report.to_dict()

        assert data["files_copied"] == 3
        assert data["error_count"] == 0
        assert data["success"] is True
        assert data["source_root"] == str(tmp_path / "s")
