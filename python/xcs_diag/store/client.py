"""
Read-only client for the CouchDB-compatible document store.

Issues authenticated GET requests against view endpoints. Every query
produces a QueryOutcome; the convenience methods reduce failures to
empty results so that no exception crosses the client boundary. Each
request is attempted exactly once.
"""

from __future__ import annotations

import base64
import http.client
import json
import ssl
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.error import HTTPError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from xcs_diag.config import StoreConfig
from xcs_diag.exceptions import StoreQueryError
from xcs_diag.logging import get_logger
from xcs_diag.models import Entity, Record

logger = get_logger(__name__)


class QueryStatus(str, Enum):
    """Tagged result of a view query."""

    OK = "ok"
    EMPTY = "empty"
    ERROR = "error"


@dataclass
class QueryOutcome:
    """Rows returned by a view query, or the reason there are none."""

    status: QueryStatus
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: StoreQueryError | None = None

    @classmethod
    def ok(cls, rows: list[dict[str, Any]]) -> QueryOutcome:
        return cls(status=QueryStatus.OK, rows=rows)

    @classmethod
    def empty(cls) -> QueryOutcome:
        return cls(status=QueryStatus.EMPTY)

    @classmethod
    def failed(cls, error: StoreQueryError) -> QueryOutcome:
        return cls(status=QueryStatus.ERROR, error=error)

    @property
    def has_rows(self) -> bool:
        return self.status is QueryStatus.OK


def _encode_param(value: Any) -> str:
    """View parameters are JSON values; plain strings pass through as-is."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


class DocumentStoreClient:
    """
    Authenticated view client.

    Example:
        client = DocumentStoreClient(config.store, password="secret")
        for bot in client.list_entities():
            print(bot.name)
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        password: str | None = None,
        bound_logger: Any | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Store location, credentials and view paths.
            password: Basic auth password. Resolved from config when omitted.
            bound_logger: Logger to use instead of the module logger.
        """
        self._config = config or StoreConfig()
        self._password = password if password is not None else self._config.resolve_password()
        self._logger = (bound_logger or logger).bind(
            store_url=self._config.url,
            database=self._config.database,
        )
        self._ssl_context = self._build_ssl_context()

    def _build_ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._config.verify_tls:
            # The service ships a self-signed certificate
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _build_headers(self) -> dict[str, str]:
        credentials = f"{self._config.username}:{self._password}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return {
            "Accept": "application/json",
            "Authorization": f"Basic {encoded}",
            "User-Agent": "xcs-diagnose/1.0",
        }

    def _view_path(self, view: str, params: dict[str, Any]) -> str:
        path = f"/{quote(self._config.database)}/{view.lstrip('/')}"
        if params:
            path += "?" + urlencode({k: _encode_param(v) for k, v in params.items()})
        return path

    def query_view(self, view: str, **params: Any) -> QueryOutcome:
        """
        Run one GET against a view.

        Non-2xx responses are logged with method, path and body. Transport
        and parse failures are logged with their traceback. Both yield an
        ERROR outcome.

        Args:
            view: View path relative to the database, e.g. ``_design/bot/_view/all``.
            **params: View query parameters; non-string values are JSON-encoded.

        Returns:
            The query outcome.
        """
        path = self._view_path(view, params)
        url = self._config.url.rstrip("/") + path
        request = Request(url, headers=self._build_headers(), method="GET")

        try:
            with urlopen(request, timeout=self._config.timeout_seconds, context=self._ssl_context) as response:
                status = response.status
                body = response.read()
        except HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp is not None else ""
            error = StoreQueryError.http_error("GET", path, e.code, error_body)
            self._logger.error("store_http_error", **error.to_dict())
            return QueryOutcome.failed(error)
        except (OSError, http.client.HTTPException) as e:
            error = StoreQueryError.connection_failed(path, e)
            self._logger.exception("store_request_failed", **error.to_dict())
            return QueryOutcome.failed(error)

        if not 200 <= status < 300:
            text = body.decode("utf-8", errors="replace")
            error = StoreQueryError.http_error("GET", path, status, text)
            self._logger.error("store_http_error", **error.to_dict())
            return QueryOutcome.failed(error)

        try:
            payload = json.loads(body.decode("utf-8"))
            rows = payload["rows"]
            if not isinstance(rows, list):
                raise TypeError(f"'rows' is {type(rows).__name__}, expected list")
        except (ValueError, KeyError, TypeError) as e:
            error = StoreQueryError.invalid_response(path, f"{type(e).__name__}: {e}")
            self._logger.exception("store_response_invalid", **error.to_dict())
            return QueryOutcome.failed(error)

        rows = [row for row in rows if isinstance(row, dict)]
        self._logger.debug("store_query_completed", path=path, row_count=len(rows))
        return QueryOutcome.ok(rows) if rows else QueryOutcome.empty()

    def list_entity_ids(self) -> list[str]:
        """IDs of all bots. Empty on failure."""
        outcome = self.query_view(self._config.bots_view)
        return [str(row["id"]) for row in outcome.rows if row.get("id")]

    def list_entities(self) -> list[Entity]:
        """All bots with their documents. Empty on failure."""
        outcome = self.query_view(self._config.bots_view, include_docs=True)
        return [Entity.from_row(row) for row in outcome.rows if isinstance(row.get("doc"), dict)]

    def last_records_for_entity(self, entity_id: str, limit: int | None = None) -> list[Record]:
        """
        Most recent integrations of one bot, newest first.

        The view is keyed by ``[bot_id, number]``; a descending range from
        ``[bot_id, {}]`` to ``[bot_id]`` yields the highest numbers first.

        Args:
            entity_id: Bot document ID.
            limit: Maximum records. Defaults to the configured record limit.

        Returns:
            Records, empty on failure or absence.
        """
        outcome = self.query_view(
            self._config.records_view,
            startkey=[entity_id, {}],
            endkey=[entity_id],
            descending=True,
            limit=limit if limit is not None else self._config.record_limit,
            include_docs=True,
            reduce=False,
        )
        return [
            Record.from_document(row["doc"]) for row in outcome.rows if isinstance(row.get("doc"), dict)
        ]

    def get_singleton_document(self, view: str) -> dict[str, Any] | None:
        """First row's document of a singleton view, or None when there are no rows."""
        outcome = self.query_view(view, include_docs=True)
        if not outcome.has_rows:
            return None

        first = outcome.rows[0]
        document = first.get("doc")
        if not isinstance(document, dict):
            document = first.get("value")
        return document if isinstance(document, dict) else None

    def get_settings(self) -> dict[str, Any] | None:
        """The service settings document."""
        return self.get_singleton_document(self._config.settings_view)

    def get_versions(self) -> dict[str, Any] | None:
        """The service versions document."""
        return self.get_singleton_document(self._config.versions_view)
