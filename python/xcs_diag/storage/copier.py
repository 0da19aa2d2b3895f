"""
Age-filtered recursive copy of log directories.

Mirrors a source tree into a destination tree, copying only files whose
age in whole days does not exceed a threshold. Directories are always
traversed regardless of their own modification time.
"""

from __future__ import annotations

import os
import shutil
import stat
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from xcs_diag.exceptions import ConfigurationError, CopyFailure, MissingRootError
from xcs_diag.logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400

# Finder and Spotlight bookkeeping, never useful in a bundle
METADATA_MARKERS = frozenset(
    {
        ".DS_Store",
        ".localized",
        ".Spotlight-V100",
        ".fseventsd",
        ".Trashes",
        ".TemporaryItems",
        ".DocumentRevisions-V100",
    }
)


def is_metadata_marker(name: str) -> bool:
    """Check whether a directory entry is OS metadata rather than content."""
    return name in (".", "..") or name in METADATA_MARKERS or name.startswith("._")


def age_in_days(mtime: float, now: float) -> int:
    """Whole days elapsed between a modification time and now."""
    return int((now - mtime) // SECONDS_PER_DAY)


def iter_tree_files(
    root: Path,
    errors: list[str],
    bound_logger: Any | None = None,
) -> Iterator[tuple[Path, os.stat_result]]:
    """
    Yield every regular file below root with its stat result.

    Traversal is depth-first over sorted snapshots of each listing, so
    siblings are visited in name order. Metadata markers are skipped.
    Symlinks to regular files are yielded with the target's stat; other
    symlinks and special files are logged and ignored, and symlinked
    directories are never followed. Listing and stat failures are
    appended to errors and the walk continues.
    """
    log = bound_logger or logger
    stack: list[Path] = [root]
    while stack:
        directory = stack.pop()
        try:
            entries = tuple(sorted(directory.iterdir(), key=lambda p: p.name))
        except OSError as e:
            errors.append(f"Cannot list {directory}: {e}")
            log.warning("directory_list_failed", path=str(directory), error=str(e))
            continue

        subdirectories: list[Path] = []
        for entry in entries:
            if is_metadata_marker(entry.name):
                continue
            try:
                entry_stat = entry.lstat()
                if stat.S_ISLNK(entry_stat.st_mode):
                    entry_stat = entry.stat()
                    if not stat.S_ISREG(entry_stat.st_mode):
                        log.debug("symlink_not_followed", path=str(entry))
                        continue
            except FileNotFoundError:
                log.debug("entry_not_found", path=str(entry))
                continue
            except OSError as e:
                errors.append(f"Cannot stat {entry}: {e}")
                continue

            if stat.S_ISDIR(entry_stat.st_mode):
                subdirectories.append(entry)
            elif stat.S_ISREG(entry_stat.st_mode):
                yield entry, entry_stat
            else:
                log.debug("special_file_ignored", path=str(entry))

        # Reverse so the alphabetically first directory is visited first
        stack.extend(reversed(subdirectories))


def copy_preserving(
    source: Path,
    destination: Path,
    errors: list[str],
    bound_logger: Any | None = None,
) -> bool:
    """Copy one file with its attributes. Failures are appended to errors, not raised."""
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
    except OSError as e:
        failure = CopyFailure.from_os_error(str(source), str(destination), e)
        errors.append(str(failure))
        (bound_logger or logger).warning("file_copy_failed", **failure.to_dict())
        return False
    return True


@dataclass
class CopyReport:
    """Result of an age-filtered copy."""

    source_root: Path
    dest_root: Path
    files_copied: int = 0
    files_skipped: int = 0
    bytes_copied: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Check if the copy completed without per-file errors."""
        return len(self.errors) == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "source_root": str(self.source_root),
            "dest_root": str(self.dest_root),
            "files_copied": self.files_copied,
            "files_skipped": self.files_skipped,
            "bytes_copied": self.bytes_copied,
            "errors": self.errors,
            "error_count": len(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "success": self.success,
        }


class AgeFilteredCopier:
    """
    Copies recently modified files from one tree into another.

    A file is copied when ``floor((now - mtime) / 86400) <= max_age_days``,
    so the threshold day itself is included.
    """

    def __init__(
        self,
        max_age_days: int,
        reference_time: datetime | None = None,
        bound_logger: Any | None = None,
    ) -> None:
        """
        Initialize the copier.

        Args:
            max_age_days: Maximum file age, in whole days, that is still copied.
            reference_time: Time ages are measured against. Defaults to now.
            bound_logger: Logger to use instead of the module logger.

        Raises:
            ConfigurationError: If max_age_days is negative.
        """
        if max_age_days < 0:
            raise ConfigurationError.validation_failed("max_age_days", max_age_days, "must not be negative")
        self.max_age_days = max_age_days
        self._reference_time = reference_time
        self._logger = bound_logger or logger

    def _now(self) -> float:
        if self._reference_time is not None:
            return self._reference_time.timestamp()
        return datetime.now(timezone.utc).timestamp()

    def copy_recent(self, source_root: Path, dest_root: Path) -> CopyReport:
        """
        Copy files no older than the threshold from source_root to dest_root.

        Args:
            source_root: Tree to read from. Never modified.
            dest_root: Existing directory receiving the mirrored files.

        Returns:
            Report of copied and skipped files.

        Raises:
            MissingRootError: If either root does not exist. Nothing is copied.
        """
        source_root = Path(source_root)
        dest_root = Path(dest_root)

        if not source_root.is_dir():
            raise MissingRootError.for_path(str(source_root), "source")
        if not dest_root.is_dir():
            raise MissingRootError.for_path(str(dest_root), "destination")

        start_time = time.perf_counter()
        now = self._now()
        report = CopyReport(source_root=source_root, dest_root=dest_root)

        self._logger.info(
            "age_filtered_copy_started",
            source_root=str(source_root),
            dest_root=str(dest_root),
            max_age_days=self.max_age_days,
        )

        for entry, entry_stat in iter_tree_files(source_root, report.errors, self._logger):
            if age_in_days(entry_stat.st_mtime, now) > self.max_age_days:
                report.files_skipped += 1
                continue

            destination = dest_root / entry.relative_to(source_root)
            if copy_preserving(entry, destination, report.errors, self._logger):
                report.files_copied += 1
                report.bytes_copied += entry_stat.st_size

        report.duration_seconds = time.perf_counter() - start_time
        self._logger.info("age_filtered_copy_completed", result=report.to_dict())
        return report


def copy_recent(source_root: Path, dest_root: Path, max_age_days: int) -> CopyReport:
    """Copy files modified within max_age_days from source_root into dest_root."""
    return AgeFilteredCopier(max_age_days).copy_recent(source_root, dest_root)
