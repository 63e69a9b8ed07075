"""Per-endpoint connect/query/fetch lifecycle.

A ConnectionTask drives one endpoint from ``init`` to a terminal state
(``complete`` or ``failed``) on its own thread. Its fields are written only
by that thread; observers get immutable StatusEvent snapshots through the
event queue, or the TaskResult once the dispatcher has joined.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any, Protocol

import sentry_sdk
import structlog

from pg_fanout.core.artifact import Artifact
from pg_fanout.core.exceptions import FanoutError, FetchError, QueryError
from pg_fanout.core.models import StatusEvent, TaskResult, TaskState
from pg_fanout.core.serializer import render_row

if TYPE_CHECKING:
    import queue
    from collections.abc import Iterator
    from pathlib import Path

    from pg_fanout.core.config import Endpoint

CANCELLED = "cancelled"

_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.INIT: frozenset({TaskState.CONNECTING, TaskState.FAILED}),
    TaskState.CONNECTING: frozenset({TaskState.CONNECTED, TaskState.FAILED}),
    TaskState.CONNECTED: frozenset({TaskState.QUERY_STARTED, TaskState.FAILED}),
    TaskState.QUERY_STARTED: frozenset(
        {TaskState.FETCHING, TaskState.COMPLETE, TaskState.FAILED}
    ),
    TaskState.FETCHING: frozenset({TaskState.COMPLETE, TaskState.FAILED}),
    TaskState.COMPLETE: frozenset(),
    TaskState.FAILED: frozenset(),
}


class QueryClient(Protocol):
    """What a ConnectionTask needs from a database client."""

    def connect(self) -> None: ...

    def stream_query(self, sql: str) -> Iterator[tuple[Any, ...]]: ...

    def column_names(self) -> list[str]: ...

    def cancel(self) -> None: ...

    def close(self) -> None: ...


class InvalidTransition(RuntimeError):
    pass


def _one_line(text: str) -> str:
    return " ".join(text.split())


class ConnectionTask:
    def __init__(
        self,
        endpoint: Endpoint,
        query: str,
        client: QueryClient,
        *,
        events: queue.Queue[Any] | None = None,
        cancel_event: threading.Event | None = None,
        status_interval: float = 0.1,
        artifact_dir: Path | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.query = query
        self._client = client
        self._events = events
        self._cancel_event = cancel_event or threading.Event()
        self._status_interval = status_interval
        self._artifact_dir = artifact_dir

        self.state = TaskState.INIT
        self.status = "init"
        self.reason: str | None = None
        self.artifact: Artifact | None = None
        self.row_count = 0
        self.fetch_start: float | None = None
        self.elapsed = 0.0
        self._last_publish = 0.0

    # -- observation --

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def snapshot(self) -> StatusEvent:
        return StatusEvent(
            index=self.endpoint.index,
            label=self.endpoint.label,
            state=self.state,
            status=self.status,
            row_count=self.row_count,
        )

    def result(self) -> TaskResult:
        artifact_path = None
        if self.state is TaskState.COMPLETE and self.artifact is not None:
            artifact_path = self.artifact.path
        return TaskResult(
            endpoint=self.endpoint,
            state=self.state,
            status=self.status,
            reason=self.reason,
            row_count=self.row_count,
            elapsed_seconds=self.elapsed,
            artifact_path=artifact_path,
        )

    def _publish(self) -> None:
        self._last_publish = time.monotonic()
        if self._events is not None:
            self._events.put(self.snapshot())

    # -- state machine --

    def _transition(self, state: TaskState, status: str) -> None:
        if state not in _TRANSITIONS[self.state]:
            msg = f"{self.endpoint.label}: cannot go from {self.state} to {state}"
            raise InvalidTransition(msg)
        self.state = state
        self.status = status
        self._publish()

    def _fail(self, reason: str) -> None:
        log = structlog.get_logger()
        self.reason = reason
        self._discard_artifact()
        if self.fetch_start is not None:
            self.elapsed = time.monotonic() - self.fetch_start
        self._transition(TaskState.FAILED, f"failed: {reason}")
        log.warning("task failed", endpoint=self.endpoint.label, reason=reason)

    def _discard_artifact(self) -> None:
        if self.artifact is not None:
            self.artifact.discard()
            self.artifact = None

    # -- execution --

    def cancel(self) -> None:
        """Abort the running statement from another thread.

        The task notices through the shared cancel event and ends failed.
        """
        if not self.state.is_terminal:
            self._client.cancel()

    def run(self) -> TaskResult:
        log = structlog.get_logger()
        try:
            self._run()
        except Exception as e:
            log.exception("unexpected task error", endpoint=self.endpoint.label)
            if not self.state.is_terminal:
                detail = _one_line(str(e)) or type(e).__name__
                self._fail(f"internal-error: {detail}")
        finally:
            self._client.close()
            log.debug(
                "task finished",
                endpoint=self.endpoint.label,
                state=str(self.state),
                rows=self.row_count,
            )
        return self.result()

    def _run(self) -> None:
        if self.cancelled:
            self._fail(CANCELLED)
            return

        self._transition(TaskState.CONNECTING, "connecting")
        with sentry_sdk.start_span(op="db.connect", description=self.endpoint.label):
            try:
                self._client.connect()
            except FanoutError as e:
                self._fail(f"connect-error: {_one_line(e.message)}")
                return
        self._transition(TaskState.CONNECTED, "connected")

        if self.cancelled:
            self._fail(CANCELLED)
            return

        self._transition(TaskState.QUERY_STARTED, "executing query")
        self.fetch_start = time.monotonic()
        sql_normalized = _one_line(self.query)
        with sentry_sdk.start_span(
            op="db.query", description=sql_normalized[:100]
        ) as span:
            try:
                self._fetch()
            except QueryError as e:
                self._fail(
                    CANCELLED if self.cancelled else f"query-error: {e.message}"
                )
                return
            except FetchError as e:
                self._fail(
                    CANCELLED if self.cancelled else f"row-error: {e.message}"
                )
                return
            except OSError as e:
                self._fail(f"artifact-error: {_one_line(str(e))}")
                return
            span.set_data("row_count", self.row_count)

        if self.cancelled:
            self._fail(CANCELLED)
            return

        self.elapsed = time.monotonic() - self.fetch_start
        if self.artifact is not None:
            self.artifact.close()
        self._transition(
            TaskState.COMPLETE,
            f"fetched {self.row_count} rows successfully in {self.elapsed:.1f} seconds",
        )

    def _fetch(self) -> None:
        rows = self._client.stream_query(self.query)
        try:
            for row in rows:
                if self.cancelled:
                    break
                self._write_row(row)
        finally:
            close = getattr(rows, "close", None)
            if close is not None:
                close()

    def _write_row(self, row: tuple[Any, ...]) -> None:
        if self.artifact is None:
            header = self._client.column_names() or [
                f"column{i + 1}" for i in range(len(row))
            ]
            self.artifact = Artifact(header, directory=self._artifact_dir)
            self._transition(TaskState.FETCHING, "fetching")

        self.artifact.write_row(render_row(row))
        self.row_count += 1

        now = time.monotonic()
        elapsed = now - (self.fetch_start or now)
        rate = f" ({self.row_count / elapsed:.2f}/s)" if elapsed > 0 else ""
        self.status = f"fetch {self.row_count} rows{rate}"
        if now - self._last_publish >= self._status_interval:
            self._publish()

    def mark_failed(self, reason: str) -> None:
        """Force a terminal state after the task's thread died unexpectedly."""
        if not self.state.is_terminal:
            self._fail(reason)
