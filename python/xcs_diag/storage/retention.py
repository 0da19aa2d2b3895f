"""
Retention-bounded selection of integration assets.

The asset root holds one directory per bot, each containing run folders
named by integration number. A retention policy decides how many of the
most recent runs per bot are extracted; only diagnostic files (logs,
process samples, crash reports) are copied out of the selected runs.

Design Patterns:
- Strategy Pattern: All vs LastN retention policies
- Template Method: Shared scan-and-copy workflow for both modes
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from xcs_diag.exceptions import ConfigurationError, MissingRootError
from xcs_diag.logging import get_logger
from xcs_diag.storage.copier import copy_preserving, is_metadata_marker, iter_tree_files

logger = get_logger(__name__)


class AssetFileClass(str, Enum):
    """Kinds of diagnostic files extracted from integration runs."""

    LOG = "log"
    SAMPLE = "sample"
    CRASH = "crash"


ASSET_SUFFIXES: dict[AssetFileClass, tuple[str, ...]] = {
    AssetFileClass.LOG: (".log",),
    AssetFileClass.SAMPLE: (".sample",),
    AssetFileClass.CRASH: (".crash", ".ips"),
}


def classify_asset(name: str) -> AssetFileClass | None:
    """Return the asset class of a file name, or None if it is not extracted."""
    lowered = name.lower()
    for file_class, suffixes in ASSET_SUFFIXES.items():
        if lowered.endswith(suffixes):
            return file_class
    return None


def parse_run_number(name: str) -> int | None:
    """Integer value of a run folder name, or None when it is not numeric."""
    if name.isascii() and name.isdigit():
        return int(name)
    return None


def run_sort_key(name: str) -> tuple[int, str]:
    """Order run folders by numeric value so that "9" precedes "10"."""
    number = parse_run_number(name)
    if number is None:
        raise ValueError(f"Run folder name is not numeric: {name!r}")
    return (number, name)


class RetentionMode(str, Enum):
    """How many runs per bot are eligible for extraction."""

    ALL = "all"
    LAST_N = "last_n"


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Retention policy for integration assets.

    Use ``RetentionPolicy.all()`` for every run or ``RetentionPolicy.last(n)``
    for the n highest-numbered runs per bot.
    """

    mode: RetentionMode
    count: int | None = None

    def __post_init__(self) -> None:
        if self.mode is RetentionMode.LAST_N:
            if self.count is None or self.count < 1:
                raise ConfigurationError.validation_failed(
                    "count", self.count, "LastN retention requires a count of at least 1"
                )
        elif self.count is not None:
            raise ConfigurationError.validation_failed(
                "count", self.count, "All retention does not take a count"
            )

    @classmethod
    def all(cls) -> RetentionPolicy:
        """Policy extracting assets from every run."""
        return cls(mode=RetentionMode.ALL)

    @classmethod
    def last(cls, count: int) -> RetentionPolicy:
        """Policy extracting assets from the last ``count`` runs per bot."""
        return cls(mode=RetentionMode.LAST_N, count=count)

    @property
    def is_bounded(self) -> bool:
        """Whether the policy limits the number of runs per bot."""
        return self.mode is RetentionMode.LAST_N

    def get_description(self) -> str:
        """Get a human-readable description of the policy."""
        if self.is_bounded:
            return f"Last {self.count} integrations per bot"
        return "All integrations"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"mode": self.mode.value, "count": self.count}


@dataclass
class ExtractionReport:
    """Result of an asset extraction."""

    policy: RetentionPolicy
    entities_scanned: int = 0
    runs_selected: dict[str, list[int]] = field(default_factory=dict)
    files_copied: int = 0
    bytes_copied: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Check if extraction completed without errors."""
        return len(self.errors) == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "policy": self.policy.to_dict(),
            "entities_scanned": self.entities_scanned,
            "runs_selected": self.runs_selected,
            "files_copied": self.files_copied,
            "bytes_copied": self.bytes_copied,
            "errors": self.errors,
            "error_count": len(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "success": self.success,
        }


class AssetRetentionSelector:
    """
    Extracts diagnostic files from the most recent integration runs.

    Selection only reads the asset root; matching files are copied into
    the destination with their path relative to the asset root preserved.
    """

    def __init__(self, policy: RetentionPolicy, bound_logger: Any | None = None) -> None:
        """
        Initialize the selector.

        Args:
            policy: Which runs per bot are eligible.
            bound_logger: Logger to use instead of the module logger.
        """
        self.policy = policy
        self._logger = bound_logger or logger

    def select_runs(self, entity_dir: Path) -> list[Path]:
        """
        Choose the run folders of one bot under a LastN policy.

        Non-directories, metadata entries and non-numeric names are
        discarded. The highest-numbered runs are taken first, up to the
        policy's count.

        Args:
            entity_dir: A bot directory under the asset root.

        Returns:
            Selected run folders, highest number first.
        """
        candidates: list[Path] = []
        for entry in tuple(entity_dir.iterdir()):
            if is_metadata_marker(entry.name) or not entry.is_dir():
                continue
            if parse_run_number(entry.name) is None:
                self._logger.debug(
                    "run_folder_not_numeric",
                    entity=entity_dir.name,
                    folder=entry.name,
                )
                continue
            candidates.append(entry)

        ordered = sorted(candidates, key=lambda p: run_sort_key(p.name))
        limit = self.policy.count if self.policy.is_bounded else len(ordered)

        selected: list[Path] = []
        while ordered and len(selected) < limit:
            selected.append(ordered.pop())
        return selected

    def select_and_extract(self, asset_root: Path, dest_root: Path) -> ExtractionReport:
        """
        Extract matching asset files according to the retention policy.

        Args:
            asset_root: Directory holding one subdirectory per bot.
            dest_root: Directory receiving the extracted files. Created if needed.

        Returns:
            Report of selected runs and copied files.

        Raises:
            MissingRootError: If asset_root does not exist.
        """
        asset_root = Path(asset_root)
        dest_root = Path(dest_root)

        if not asset_root.is_dir():
            raise MissingRootError.for_path(str(asset_root), "asset")

        start_time = time.perf_counter()
        report = ExtractionReport(policy=self.policy)
        dest_root.mkdir(parents=True, exist_ok=True)

        self._logger.info(
            "asset_extraction_started",
            asset_root=str(asset_root),
            dest_root=str(dest_root),
            policy=self.policy.get_description(),
        )

        if self.policy.is_bounded:
            self._extract_last_runs(asset_root, dest_root, report)
        else:
            self._extract_tree(asset_root, asset_root, dest_root, report)

        report.duration_seconds = time.perf_counter() - start_time
        self._logger.info("asset_extraction_completed", result=report.to_dict())
        return report

    def _extract_last_runs(self, asset_root: Path, dest_root: Path, report: ExtractionReport) -> None:
        entity_dirs = sorted(
            (p for p in asset_root.iterdir() if not is_metadata_marker(p.name) and p.is_dir()),
            key=lambda p: p.name,
        )

        for entity_dir in entity_dirs:
            report.entities_scanned += 1
            try:
                runs = self.select_runs(entity_dir)
            except OSError as e:
                report.errors.append(f"Cannot list runs of {entity_dir.name}: {e}")
                self._logger.warning(
                    "entity_scan_failed",
                    entity=entity_dir.name,
                    error=str(e),
                )
                continue

            if not runs:
                self._logger.debug("entity_has_no_runs", entity=entity_dir.name)
                continue

            report.runs_selected[entity_dir.name] = [int(run.name) for run in runs]
            for run_dir in runs:
                self._extract_tree(run_dir, asset_root, dest_root, report)

    def _extract_tree(
        self,
        scan_root: Path,
        asset_root: Path,
        dest_root: Path,
        report: ExtractionReport,
    ) -> None:
        """Copy every asset file below scan_root, keeping paths relative to asset_root."""
        for entry, entry_stat in iter_tree_files(scan_root, report.errors, self._logger):
            if not classify_asset(entry.name):
                continue
            destination = dest_root / entry.relative_to(asset_root)
            if copy_preserving(entry, destination, report.errors, self._logger):
                report.files_copied += 1
                report.bytes_copied += entry_stat.st_size


def select_and_extract(asset_root: Path, dest_root: Path, policy: RetentionPolicy) -> ExtractionReport:
    """Extract asset files from asset_root into dest_root under the given policy."""
    return AssetRetentionSelector(policy).select_and_extract(asset_root, dest_root)
