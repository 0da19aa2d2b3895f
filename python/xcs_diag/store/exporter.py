"""
Export of document store contents into a directory tree.

Layout under the destination root::

    <SanitizedBotName>/bot.json
    <SanitizedBotName>/<integration number>.json
    settings.json
    versions.json

Integrations are placed under the owning bot's *name* as embedded in the
integration document, not under the bot id. Bots whose sanitized names
collide share a directory, and the later write wins. Bots and integrations
without an owning name are logged and skipped.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from xcs_diag.exceptions import StorageError
from xcs_diag.logging import get_logger
from xcs_diag.store.client import DocumentStoreClient

logger = get_logger(__name__)

_UNSAFE_CHARACTERS = re.compile(r"[^0-9A-Za-z]")

BOT_FILENAME = "bot.json"
SETTINGS_FILENAME = "settings.json"
VERSIONS_FILENAME = "versions.json"


def sanitize_name(name: str) -> str:
    """Replace every character outside [0-9A-Za-z] with an underscore."""
    return _UNSAFE_CHARACTERS.sub("_", name)


def write_document(path: Path, document: dict[str, Any]) -> None:
    """Serialize a document to path, replacing any existing file."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
    except (OSError, TypeError, ValueError) as e:
        raise StorageError.write_failed(str(path), str(e)) from e


@dataclass
class ExportReport:
    """Result of a document store export."""

    entities_written: int = 0
    records_written: int = 0
    singletons_written: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "entities_written": self.entities_written,
            "records_written": self.records_written,
            "singletons_written": self.singletons_written,
            "errors": self.errors,
            "error_count": len(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "success": self.success,
        }


class DocumentExporter:
    """Writes bots, their latest integrations, settings and versions as JSON files."""

    def __init__(
        self,
        client: DocumentStoreClient,
        record_limit: int = 2,
        bound_logger: Any | None = None,
    ) -> None:
        """
        Initialize the exporter.

        Args:
            client: Source of documents.
            record_limit: Integrations exported per bot.
            bound_logger: Logger to use instead of the module logger.
        """
        self._client = client
        self.record_limit = record_limit
        self._logger = bound_logger or logger

    def export_all(self, dest_root: Path) -> ExportReport:
        """
        Export everything the store returns into dest_root.

        Empty query results mean there is nothing to export; they are
        not errors. Write failures are recorded and the export continues.

        Args:
            dest_root: Destination directory. Created if needed.

        Returns:
            Export counters and write errors.
        """
        dest_root = Path(dest_root)
        dest_root.mkdir(parents=True, exist_ok=True)
        start_time = time.perf_counter()
        report = ExportReport()

        self._logger.info("document_export_started", dest_root=str(dest_root))

        self._export_entities(dest_root, report)
        self._export_records(dest_root, report)
        self._export_singleton(self._client.get_settings(), dest_root / SETTINGS_FILENAME, report)
        self._export_singleton(self._client.get_versions(), dest_root / VERSIONS_FILENAME, report)

        report.duration_seconds = time.perf_counter() - start_time
        self._logger.info("document_export_completed", result=report.to_dict())
        return report

    def _write(self, path: Path, document: dict[str, Any], report: ExportReport) -> bool:
        try:
            write_document(path, document)
        except StorageError as e:
            report.errors.append(str(e))
            self._logger.warning("document_write_failed", **e.to_dict())
            return False
        return True

    def _export_entities(self, dest_root: Path, report: ExportReport) -> None:
        for entity in self._client.list_entities():
            if not entity.name:
                # An empty directory name would place bot.json in the export root
                self._logger.warning("bot_missing_name", entity_id=entity.id)
                continue

            directory = dest_root / sanitize_name(entity.name)
            if self._write(directory / BOT_FILENAME, entity.document, report):
                report.entities_written += 1

    def _export_records(self, dest_root: Path, report: ExportReport) -> None:
        for entity_id in self._client.list_entity_ids():
            for record in self._client.last_records_for_entity(entity_id, self.record_limit):
                if not record.owner_entity_name or record.number is None:
                    self._logger.warning(
                        "record_missing_fields",
                        entity_id=entity_id,
                        record_id=record.document.get("_id"),
                    )
                    continue

                directory = dest_root / sanitize_name(record.owner_entity_name)
                if self._write(directory / f"{record.number}.json", record.document, report):
                    report.records_written += 1

    def _export_singleton(
        self, document: dict[str, Any] | None, path: Path, report: ExportReport
    ) -> None:
        if document is None:
            self._logger.info("singleton_absent", file=path.name)
            return
        if self._write(path, document, report):
            report.singletons_written.append(path.name)


def export_all(client: DocumentStoreClient, dest_root: Path) -> ExportReport:
    """Export all bots, integrations, settings and versions from client into dest_root."""
    return DocumentExporter(client).export_all(dest_root)
