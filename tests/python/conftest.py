"""Pytest configuration and shared fixtures for Python tests."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
import structlog

from xcs_diag.config import set_config
from xcs_diag.models import Entity, Record

REFERENCE_TIME = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "posix: marks tests that need POSIX process groups")


def set_age(path: Path, days: int, reference: datetime = REFERENCE_TIME) -> None:
    """Set a path's mtime to ``days`` whole days (plus one hour) before reference."""
    mtime = (reference - timedelta(days=days, hours=1)).timestamp()
    os.utime(path, (mtime, mtime))


@pytest.fixture(autouse=True)
def _reset_global_state() -> Iterator[None]:
    """Restore the global config and root logging handlers after each test."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level

    yield

    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers = handlers
    root_logger.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    set_config(None)


@pytest.fixture
def reference_time() -> datetime:
    """Fixed 'now' for age calculations."""
    return REFERENCE_TIME


@pytest.fixture
def make_asset_tree(tmp_path: Path) -> Callable[[dict[str, list[str]]], Path]:
    """
    Build an asset root with one directory per bot and the given run folders.

    Every run folder receives one file of each asset class, a nested crash
    report, and a file that must never be extracted.
    """

    def _make(runs_by_entity: dict[str, list[str]]) -> Path:
        root = tmp_path / "assets"
        root.mkdir(exist_ok=True)
        for entity, runs in runs_by_entity.items():
            entity_dir = root / entity
            entity_dir.mkdir(parents=True, exist_ok=True)
            for run in runs:
                run_dir = entity_dir / run
                (run_dir / "crashes").mkdir(parents=True, exist_ok=True)
                (run_dir / "build.log").write_text(f"{entity} run {run}\n")
                (run_dir / "xcodebuild.sample").write_text("sample\n")
                (run_dir / "crashes" / "App.crash").write_text("crash\n")
                (run_dir / "archive.xcarchive.zip").write_bytes(b"\x00" * 16)
        return root

    return _make


class FakeStoreClient:
    """In-memory stand-in for DocumentStoreClient."""

    def __init__(
        self,
        bots: list[dict[str, Any]] | None = None,
        integrations: dict[str, list[dict[str, Any]]] | None = None,
        settings: dict[str, Any] | None = None,
        versions: dict[str, Any] | None = None,
    ) -> None:
        self.bots = bots or []
        self.integrations = integrations or {}
        self.settings = settings
        self.versions = versions
        self.record_calls: list[tuple[str, int | None]] = []

    def list_entity_ids(self) -> list[str]:
        return [bot["_id"] for bot in self.bots]

    def list_entities(self) -> list[Entity]:
        return [Entity.from_row({"id": bot["_id"], "doc": bot}) for bot in self.bots]

    def last_records_for_entity(self, entity_id: str, limit: int | None = None) -> list[Record]:
        self.record_calls.append((entity_id, limit))
        documents = self.integrations.get(entity_id, [])
        if limit is not None:
            documents = documents[:limit]
        return [Record.from_document(doc) for doc in documents]

    def get_settings(self) -> dict[str, Any] | None:
        return self.settings

    def get_versions(self) -> dict[str, Any] | None:
        return self.versions


@pytest.fixture
def fake_store() -> FakeStoreClient:
    """A store with two bots, their latest integrations, settings and versions."""
    return FakeStoreClient(
        bots=[
            {"_id": "bot-1", "name": "My Bot!", "type": 1},
            {"_id": "bot-2", "name": "Nightly/Release", "type": 1},
        ],
        integrations={
            "bot-1": [
                {"_id": "int-12", "number": 12, "bot": {"_id": "bot-1", "name": "My Bot!"}},
                {"_id": "int-11", "number": 11, "bot": {"_id": "bot-1", "name": "My Bot!"}},
                {"_id": "int-10", "number": 10, "bot": {"_id": "bot-1", "name": "My Bot!"}},
            ],
            "bot-2": [
                {"_id": "int-3", "number": 3, "bot": {"_id": "bot-2", "name": "Nightly/Release"}},
            ],
        },
        settings={"_id": "settings", "maxIntegrations": 50},
        versions={"_id": "versions", "server": "2.0"},
    )
