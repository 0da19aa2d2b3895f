"""
Integration tests for the diagnostic collector.

Commands and the document store are replaced with in-memory fakes; the
filesystem phases run against temporary trees.
"""

from __future__ import annotations

import json
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from conftest import FakeStoreClient

from xcs_diag.collector import (
    COMMANDS_DIR,
    DATABASE_DIR,
    INTEGRATIONS_DIR,
    LOGS_DIR,
    REPORT_FILENAME,
    CollectionResult,
    DiagnosticCollector,
    PhaseStatus,
)
from xcs_diag.config import CommandSpec, Config, LogRootConfig
from xcs_diag.exceptions import StorageError
from xcs_diag.models import CommandResult
from xcs_diag.storage import BundleArchiver, RetentionMode


class FakeRunner:
    """Returns canned results instead of running commands."""

    def __init__(self, results: dict[str, CommandResult] | None = None) -> None:
        self.results = results or {}
        self.commands: list[str] = []

    def run(self, command: str, timeout_seconds: float | None = None) -> CommandResult:
        self.commands.append(command)
        return self.results.get(
            command,
            CommandResult(command=command, stdout=f"output of {command}\n", success=True, returncode=0),
        )


class ExplodingStore(FakeStoreClient):
    def list_entities(self) -> list[Any]:
        raise RuntimeError("store exploded")


@pytest.fixture
def collector_config(tmp_path: Path, make_asset_tree: Callable[[dict[str, list[str]]], Path]) -> Config:
    server_logs = tmp_path / "server_logs"
    server_logs.mkdir()
    (server_logs / "xcsd.log").write_text("server started\n")
    asset_root = make_asset_tree({"A": ["1", "2", "3"], "B": [str(i) for i in range(1, 13)]})

    config = Config()
    config.collector.staging_parent = str(tmp_path / "staging")
    config.collector.output_dir = str(tmp_path / "out")
    config.collector.log_roots = [
        LogRootConfig(label="server", path=str(server_logs), max_age_days=7),
        LogRootConfig(label="missing", path=str(tmp_path / "no_such_dir")),
    ]
    config.collector.asset_root = str(asset_root)
    config.collector.integration_count = 10
    config.commands.commands = [
        CommandSpec(name="sw_vers", command="sw_vers"),
        CommandSpec(name="ps", command="ps auxww"),
    ]
    return config


class TestRetentionPolicySelection:
    """Tests for mapping configuration to a retention policy."""

    def test_last_n_default(self, collector_config: Config) -> None:
        policy = DiagnosticCollector(collector_config, runner=FakeRunner()).retention_policy()

        assert policy.mode is RetentionMode.LAST_N
        assert policy.count == 10

    def test_all(self, collector_config: Config) -> None:
        collector_config.collector.all_integrations = True

        policy = DiagnosticCollector(collector_config, runner=FakeRunner()).retention_policy()

        assert policy.mode is RetentionMode.ALL


class TestDiagnosticCollector:
    """Tests for DiagnosticCollector.run."""

    def test_staging_layout(self, collector_config: Config, fake_store: FakeStoreClient) -> None:
        collector_config.collector.package = False
        runner = FakeRunner()

        result = DiagnosticCollector(collector_config, runner=runner, client=fake_store).run()

        staging = result.staging_root
        assert staging.parent == Path(collector_config.collector.staging_parent)
        assert (staging / COMMANDS_DIR / "sw_vers.txt").read_text().startswith("$ sw_vers")
        assert "output of ps auxww" in (staging / COMMANDS_DIR / "ps.txt").read_text()
        assert (staging / LOGS_DIR / "server" / "xcsd.log").exists()
        assert sorted(p.name for p in (staging / INTEGRATIONS_DIR).iterdir()) == ["A", "B"]
        assert sorted(int(p.name) for p in (staging / INTEGRATIONS_DIR / "B").iterdir()) == list(range(3, 13))
        assert (staging / DATABASE_DIR / "My_Bot_" / "bot.json").exists()
        assert (staging / DATABASE_DIR / "settings.json").exists()
        assert runner.commands == ["sw_vers", "ps auxww"]
        assert result.bundle_path is None

    def test_report_written(self, collector_config: Config, fake_store: FakeStoreClient) -> None:
        collector_config.collector.package = False

        result = DiagnosticCollector(collector_config, runner=FakeRunner(), client=fake_store).run()

        report = json.loads((result.staging_root / REPORT_FILENAME).read_text())
        assert [p["name"] for p in report["phases"]] == ["commands", "logs", "integrations", "database"]
        assert all(p["status"] == "completed" for p in report["phases"])

    def test_missing_log_root_does_not_skip_others(
        self, collector_config: Config, fake_store: FakeStoreClient
    ) -> None:
        collector_config.collector.package = False

        result = DiagnosticCollector(collector_config, runner=FakeRunner(), client=fake_store).run()

        logs = result.phase("logs")
        assert logs is not None
        assert logs.status is PhaseStatus.COMPLETED
        assert "skipped" in logs.details["missing"]
        assert logs.details["server"]["files_copied"] == 1

    def test_missing_asset_root_skips_phase(
        self, collector_config: Config, fake_store: FakeStoreClient, tmp_path: Path
    ) -> None:
        collector_config.collector.package = False
        collector_config.collector.asset_root = str(tmp_path / "no_assets")

        result = DiagnosticCollector(collector_config, runner=FakeRunner(), client=fake_store).run()

        assert result.phase("integrations").status is PhaseStatus.SKIPPED
        assert result.phase("database").status is PhaseStatus.COMPLETED
        assert (result.staging_root / DATABASE_DIR / "versions.json").exists()

    def test_unexpected_failure_is_contained(self, collector_config: Config, tmp_path: Path) -> None:
        """A crashing phase is recorded and the bundle is still produced."""
        result = DiagnosticCollector(
            collector_config, runner=FakeRunner(), client=ExplodingStore()
        ).run()

        database = result.phase("database")
        assert database.status is PhaseStatus.FAILED
        assert "store exploded" in database.errors[0]
        assert result.phase("integrations").status is PhaseStatus.COMPLETED
        assert result.bundle_path is not None
        assert result.bundle_path.exists()

    def test_timed_out_command_recorded(self, collector_config: Config, fake_store: FakeStoreClient) -> None:
        collector_config.collector.package = False
        runner = FakeRunner({"ps auxww": CommandResult.timeout_sentinel("ps auxww")})

        result = DiagnosticCollector(collector_config, runner=runner, client=fake_store).run()

        commands = result.phase("commands")
        assert commands.details["ps"]["timed_out"] is True
        assert commands.details["sw_vers"]["success"] is True
        assert "# timed out" in (result.staging_root / COMMANDS_DIR / "ps.txt").read_text()

    def test_database_disabled(self, collector_config: Config) -> None:
        collector_config.collector.package = False
        collector_config.store.enabled = False

        result = DiagnosticCollector(collector_config, runner=FakeRunner()).run()

        assert result.phase("database").status is PhaseStatus.SKIPPED
        assert not (result.staging_root / DATABASE_DIR).exists()

    def test_packages_and_removes_staging(
        self, collector_config: Config, fake_store: FakeStoreClient
    ) -> None:
        result = DiagnosticCollector(collector_config, runner=FakeRunner(), client=fake_store).run()

        assert result.bundle_path is not None
        assert result.bundle_path.parent == Path(collector_config.collector.output_dir)
        assert not result.staging_root.exists()
        with tarfile.open(result.bundle_path, "r:gz") as tar:
            names = tar.getnames()
        bundle_id = result.bundle_path.name.removesuffix(".tar.gz")
        assert f"{bundle_id}/{DATABASE_DIR}/My_Bot_/12.json" in names
        assert f"{bundle_id}/{REPORT_FILENAME}" in names

    def test_keep_staging(self, collector_config: Config, fake_store: FakeStoreClient) -> None:
        collector_config.collector.keep_staging = True

        result = DiagnosticCollector(collector_config, runner=FakeRunner(), client=fake_store).run()

        assert result.bundle_path is not None
        assert result.staging_root.exists()

    def test_archive_failure_keeps_staging(
        self, collector_config: Config, fake_store: FakeStoreClient
    ) -> None:
        class FailingArchiver(BundleArchiver):
            def archive(self, staging_root: Path, name: str, bundle_id: str | None = None) -> Path:
                raise StorageError.archive_failed("x", "disk full")

        collector = DiagnosticCollector(
            collector_config,
            runner=FakeRunner(),
            client=fake_store,
            archiver=FailingArchiver(Path(collector_config.collector.output_dir)),
        )

        with pytest.raises(StorageError):
            collector.run()

        staging_parent = Path(collector_config.collector.staging_parent)
        assert len(list(staging_parent.iterdir())) == 1


class TestCollectionResult:
    """Tests for CollectionResult."""

    def test_to_dict(self, tmp_path: Path) -> None:
        result = CollectionResult(staging_root=tmp_path)
        data = result.to_dict()

        assert data["staging_root"] == str(tmp_path)
        assert data["bundle_path"] is None
        assert data["error_count"] == 0
