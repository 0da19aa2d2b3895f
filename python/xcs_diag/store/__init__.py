"""
Document store access for the collector.

Provides a read-only view client with explicit query outcomes and an
exporter that flattens bots and integrations into JSON files.
"""

from xcs_diag.store.client import DocumentStoreClient, QueryOutcome, QueryStatus
from xcs_diag.store.exporter import (
    DocumentExporter,
    ExportReport,
    export_all,
    sanitize_name,
    write_document,
)

__all__ = [
    "DocumentExporter",
    "DocumentStoreClient",
    "ExportReport",
    "QueryOutcome",
    "QueryStatus",
    "export_all",
    "sanitize_name",
    "write_document",
]
