"""PostgreSQL client for pg-fanout.

Wraps one psycopg v3 synchronous connection per endpoint: bounded connect,
row-by-row streaming of a single query, and a cancel request that may be
sent from another thread. psycopg errors are mapped to the FanoutError
hierarchy so callers can tell connect, query and fetch failures apart.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import psycopg
import structlog

from pg_fanout.core.exceptions import (
    FetchError,
    NetworkError,
    QueryError,
    TimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pg_fanout.core.config import Endpoint


def _error_detail(e: BaseException) -> str:
    return " ".join(str(e).split()) or type(e).__name__


class PgClient:
    """Synchronous PostgreSQL client bound to one endpoint."""

    def __init__(
        self,
        endpoint: Endpoint,
        connect_timeout: int = 15,
        application_name: str = "pg-fanout",
    ) -> None:
        self.endpoint = endpoint
        self.connect_timeout = connect_timeout
        self.application_name = application_name
        self._connection: psycopg.Connection[Any] | None = None
        self._cursor: psycopg.Cursor[Any] | None = None

    def __enter__(self) -> PgClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def connect(self) -> None:
        if self._connection is not None and not self._connection.closed:
            return

        try:
            self._connection = psycopg.connect(
                self.endpoint.dsn,
                connect_timeout=self.connect_timeout,
                application_name=self.application_name,
                autocommit=True,
            )
        except psycopg.Error as e:
            detail = _error_detail(e)
            msg = (
                f"Connection failed to {self.endpoint.host}:{self.endpoint.port} "
                f"database '{self.endpoint.dbname}': {detail}"
            )
            if "timeout" in detail.lower():
                raise TimeoutError(msg) from e
            raise NetworkError(msg) from e

    def stream_query(self, sql: str) -> Iterator[tuple[Any, ...]]:
        """Yield result rows one at a time as the server sends them.

        Errors raised before the first row are QueryErrors, later ones
        FetchErrors. Column names are available from column_names() once
        the first row has been yielded.
        """
        if self._connection is None:
            self.connect()
        assert self._connection is not None

        log = structlog.get_logger()
        received = False
        try:
            with self._connection.cursor() as cur:
                self._cursor = cur
                for row in cur.stream(sql):
                    received = True
                    yield row
        except psycopg.Error as e:
            detail = _error_detail(e)
            if received:
                log.error(
                    "row stream failed", endpoint=self.endpoint.label, error=detail
                )
                raise FetchError(detail) from e
            log.error("query failed", endpoint=self.endpoint.label, error=detail)
            raise QueryError(detail) from e

    def column_names(self) -> list[str]:
        if self._cursor is None or self._cursor.description is None:
            return []
        return [desc.name for desc in self._cursor.description]

    def cancel(self) -> None:
        """Ask the server to abort the running statement. Thread-safe."""
        conn = self._connection
        if conn is None or conn.closed:
            return
        try:
            conn.cancel()
        except psycopg.Error as e:
            log = structlog.get_logger()
            log.warning(
                "cancel request failed",
                endpoint=self.endpoint.label,
                error=_error_detail(e),
            )

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            self._cursor = None
