"""
Top-level driver for a diagnostic collection run.

Phases run sequentially against a fresh staging root::

    commands/       output of each diagnostic command
    logs/<label>/   recently modified files of each configured log root
    integrations/   assets from the retained integration runs
    database/       bots, integrations, settings and versions as JSON
    collector.json  per-phase reports

A failing phase never stops the run: missing roots skip the phase, any
other error is logged and recorded, and whatever was collected is still
packaged.
"""

from __future__ import annotations

import json
import shutil
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from xcs_diag.command import CommandRunner
from xcs_diag.config import Config, get_config
from xcs_diag.exceptions import DiagnosticError, MissingRootError, StorageError, UnexpectedFailure
from xcs_diag.logging import get_logger, with_context
from xcs_diag.models import CommandResult
from xcs_diag.storage.bundle import BundleArchiver
from xcs_diag.storage.copier import AgeFilteredCopier
from xcs_diag.storage.retention import AssetRetentionSelector, RetentionPolicy
from xcs_diag.store.client import DocumentStoreClient
from xcs_diag.store.exporter import DocumentExporter, sanitize_name

logger = get_logger(__name__)

COMMANDS_DIR = "commands"
LOGS_DIR = "logs"
INTEGRATIONS_DIR = "integrations"
DATABASE_DIR = "database"
REPORT_FILENAME = "collector.json"


class PhaseStatus(str, Enum):
    """Final state of a collection phase."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PhaseReport:
    """Outcome of one collection phase."""

    name: str
    status: PhaseStatus = PhaseStatus.COMPLETED
    details: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "status": self.status.value,
            "details": self.details,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class CollectionResult:
    """Result of a full collection run."""

    staging_root: Path
    bundle_path: Path | None = None
    phases: list[PhaseReport] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def errors(self) -> list[str]:
        """All errors recorded by any phase."""
        return [error for phase in self.phases for error in phase.errors]

    def phase(self, name: str) -> PhaseReport | None:
        """Look up a phase report by name."""
        return next((p for p in self.phases if p.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "staging_root": str(self.staging_root),
            "bundle_path": str(self.bundle_path) if self.bundle_path else None,
            "phases": [p.to_dict() for p in self.phases],
            "error_count": len(self.errors),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


PhaseFunction = Callable[[Path, PhaseReport], None]


class DiagnosticCollector:
    """
    Runs every collection phase and packages the result.

    Collaborators can be injected for testing; by default they are built
    from the configuration.
    """

    def __init__(
        self,
        config: Config | None = None,
        runner: CommandRunner | None = None,
        client: DocumentStoreClient | None = None,
        archiver: BundleArchiver | None = None,
    ) -> None:
        self._config = config or get_config()
        collector_config = self._config.collector
        self._runner = runner or CommandRunner(timeout_seconds=self._config.commands.timeout_seconds)
        self._client = client
        self._archiver = archiver or BundleArchiver(Path(collector_config.output_dir))

    def retention_policy(self) -> RetentionPolicy:
        """The asset retention policy selected by configuration."""
        collector_config = self._config.collector
        if collector_config.all_integrations:
            return RetentionPolicy.all()
        return RetentionPolicy.last(collector_config.integration_count)

    def _create_staging_root(self) -> Path:
        parent = self._config.collector.staging_parent
        if parent:
            Path(parent).mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="xcs-diag-", dir=parent))

    def run(self) -> CollectionResult:
        """
        Collect everything into a new staging root and package it.

        Returns:
            Per-phase reports and the bundle path (None when packaging is disabled).

        Raises:
            StorageError: If the bundle archive cannot be written. The staging
                root is kept in that case.
        """
        collector_config = self._config.collector
        staging_root = self._create_staging_root()
        result = CollectionResult(staging_root=staging_root)
        bundle_id = BundleArchiver.generate_bundle_id(collector_config.bundle_name)

        with with_context(bundle_id=bundle_id):
            logger.info("collection_started", staging_root=str(staging_root))

            phases: list[tuple[str, PhaseFunction]] = [
                ("commands", self._collect_commands),
                ("logs", self._collect_logs),
                ("integrations", self._collect_integrations),
                ("database", self._collect_database),
            ]
            for name, function in phases:
                result.phases.append(self._run_phase(name, function, staging_root))

            result.finished_at = datetime.now(timezone.utc)
            self._write_report(staging_root, result)

            if collector_config.package:
                try:
                    result.bundle_path = self._archiver.archive(
                        staging_root, collector_config.bundle_name, bundle_id=bundle_id
                    )
                except StorageError:
                    logger.error("staging_root_kept", staging_root=str(staging_root))
                    raise

                if not collector_config.keep_staging:
                    shutil.rmtree(staging_root, ignore_errors=True)

            logger.info(
                "collection_completed",
                bundle_path=str(result.bundle_path) if result.bundle_path else None,
                error_count=len(result.errors),
            )

        return result

    def _run_phase(self, name: str, function: PhaseFunction, staging_root: Path) -> PhaseReport:
        report = PhaseReport(name=name)
        start_time = time.perf_counter()

        with with_context(phase=name):
            logger.info("phase_started")
            try:
                function(staging_root, report)
            except MissingRootError as e:
                report.status = PhaseStatus.SKIPPED
                report.errors.append(str(e))
                logger.warning("phase_skipped", **e.to_dict())
            except DiagnosticError as e:
                report.status = PhaseStatus.FAILED
                report.errors.append(str(e))
                logger.error("phase_failed", **e.to_dict())
            except Exception as e:
                failure = UnexpectedFailure.in_phase(name, e)
                report.status = PhaseStatus.FAILED
                report.errors.append(str(failure))
                logger.exception("phase_failed_unexpectedly", **failure.to_dict())

            report.duration_seconds = time.perf_counter() - start_time
            logger.info(
                "phase_completed",
                status=report.status.value,
                error_count=len(report.errors),
                duration_seconds=round(report.duration_seconds, 3),
            )
        return report

    def _collect_commands(self, staging_root: Path, report: PhaseReport) -> None:
        output_dir = staging_root / COMMANDS_DIR
        output_dir.mkdir(parents=True, exist_ok=True)

        for spec in self._config.commands.commands:
            command_result = self._runner.run(spec.command)
            output_path = output_dir / f"{sanitize_name(spec.name)}.txt"
            output_path.write_text(_format_command_output(command_result), encoding="utf-8")

            report.details[spec.name] = {
                "success": command_result.success,
                "timed_out": command_result.timed_out,
                "returncode": command_result.returncode,
            }
            if command_result.timed_out:
                report.errors.append(f"Command '{spec.name}' timed out")

    def _collect_logs(self, staging_root: Path, report: PhaseReport) -> None:
        logs_dir = staging_root / LOGS_DIR

        for log_root in self._config.collector.log_roots:
            dest_root = logs_dir / sanitize_name(log_root.label)
            dest_root.mkdir(parents=True, exist_ok=True)
            copier = AgeFilteredCopier(log_root.max_age_days, bound_logger=logger.bind(label=log_root.label))
            try:
                copy_report = copier.copy_recent(Path(log_root.path), dest_root)
            except MissingRootError as e:
                # One absent log directory does not skip the others
                report.details[log_root.label] = {"skipped": str(e)}
                logger.warning("log_root_missing", **e.to_dict())
                continue

            report.details[log_root.label] = copy_report.to_dict()
            report.errors.extend(copy_report.errors)

    def _collect_integrations(self, staging_root: Path, report: PhaseReport) -> None:
        selector = AssetRetentionSelector(self.retention_policy())
        extraction = selector.select_and_extract(
            Path(self._config.collector.asset_root),
            staging_root / INTEGRATIONS_DIR,
        )
        report.details.update(extraction.to_dict())
        report.errors.extend(extraction.errors)

    def _collect_database(self, staging_root: Path, report: PhaseReport) -> None:
        store_config = self._config.store
        if not store_config.enabled:
            report.status = PhaseStatus.SKIPPED
            logger.info("database_export_disabled")
            return

        client = self._client or DocumentStoreClient(store_config)
        exporter = DocumentExporter(client, record_limit=store_config.record_limit)
        export_report = exporter.export_all(staging_root / DATABASE_DIR)
        report.details.update(export_report.to_dict())
        report.errors.extend(export_report.errors)

    @staticmethod
    def _write_report(staging_root: Path, result: CollectionResult) -> None:
        path = staging_root / REPORT_FILENAME
        try:
            path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("collector_report_write_failed", path=str(path), error=str(e))


def _format_command_output(result: CommandResult) -> str:
    lines = [f"$ {result.command}"]
    if result.timed_out:
        lines.append("# timed out")
    else:
        lines.append(f"# exit status: {result.returncode}")
    lines.append("")
    lines.append(result.stdout)
    if result.stderr:
        lines.append("# stderr")
        lines.append(result.stderr)
    return "\n".join(lines)
