"""Concurrent fan-out of one query over many endpoints.

One ConnectionTask per endpoint runs on a thread pool. By default the pool
has one worker per endpoint; ``max_workers`` bounds it for large endpoint
lists. ``join()`` is the barrier the aggregator waits on: it returns only
when every task is terminal.
"""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any

import structlog

from pg_fanout.core.client import PgClient
from pg_fanout.core.models import Phase, PhaseEvent, TaskResult
from pg_fanout.core.task import ConnectionTask

if TYPE_CHECKING:
    import queue
    from collections.abc import Callable
    from pathlib import Path

    from pg_fanout.core.config import Endpoint, Settings
    from pg_fanout.core.task import QueryClient

# How often join() wakes up to check the cancel event.
_JOIN_POLL_SECONDS = 0.2


class Dispatcher:
    def __init__(
        self,
        query: str,
        settings: Settings,
        *,
        client_factory: Callable[[Endpoint], QueryClient] | None = None,
        events: queue.Queue[Any] | None = None,
        cancel_event: threading.Event | None = None,
        artifact_dir: Path | None = None,
    ) -> None:
        self.query = query
        self.settings = settings
        self._client_factory = client_factory or self._default_client
        self._events = events
        self._cancel_event = cancel_event or threading.Event()
        self._artifact_dir = artifact_dir
        self._executor: ThreadPoolExecutor | None = None
        self._futures: dict[Future[TaskResult], ConnectionTask] = {}
        self._cancel_sent = False
        self.tasks: list[ConnectionTask] = []

    def _default_client(self, endpoint: Endpoint) -> PgClient:
        return PgClient(
            endpoint,
            connect_timeout=self.settings.connect_timeout,
            application_name=self.settings.application_name,
        )

    @property
    def worker_count(self) -> int:
        return max(1, self.settings.max_workers or len(self.tasks))

    def start(self, endpoints: list[Endpoint]) -> list[ConnectionTask]:
        """Launch one task per endpoint. Returns the tasks in endpoint order."""
        if self._executor is not None:
            raise RuntimeError("Dispatcher already started")

        log = structlog.get_logger()
        self.tasks = [
            ConnectionTask(
                endpoint,
                self.query,
                self._client_factory(endpoint),
                events=self._events,
                cancel_event=self._cancel_event,
                status_interval=self.settings.status_interval,
                artifact_dir=self._artifact_dir,
            )
            for endpoint in endpoints
        ]
        for task in self.tasks:
            if self._events is not None:
                self._events.put(task.snapshot())

        self._executor = ThreadPoolExecutor(
            max_workers=self.worker_count, thread_name_prefix="pg-fanout"
        )
        self._futures = {self._executor.submit(task.run): task for task in self.tasks}
        log.info(
            "dispatched tasks",
            endpoints=len(self.tasks),
            workers=self.worker_count,
        )
        return self.tasks

    def join(self) -> list[TaskResult]:
        """Block until every task is terminal, then signal FETCH_COMPLETE."""
        if self._executor is None:
            raise RuntimeError("Dispatcher not started")

        log = structlog.get_logger()
        pending = set(self._futures)
        while pending:
            _, pending = wait(
                pending, timeout=_JOIN_POLL_SECONDS, return_when=FIRST_EXCEPTION
            )
            if self._cancel_event.is_set() and not self._cancel_sent:
                self.cancel()
        self._executor.shutdown(wait=True)

        for future, task in self._futures.items():
            exc = future.exception()
            if exc is not None:
                log.error(
                    "task thread raised",
                    endpoint=task.endpoint.label,
                    error=str(exc),
                )
                task.mark_failed(f"internal-error: {exc}")

        not_terminal = [t.endpoint.label for t in self.tasks if not t.state.is_terminal]
        if not_terminal:
            msg = f"join finished with non-terminal tasks: {', '.join(not_terminal)}"
            raise RuntimeError(msg)

        log.info("fetch phase complete", tasks=len(self.tasks))
        if self._events is not None:
            self._events.put(PhaseEvent(phase=Phase.FETCH_COMPLETE))
        return [task.result() for task in self.tasks]

    def cancel(self) -> None:
        """Stop all tasks: set the shared event and abort running statements."""
        log = structlog.get_logger()
        self._cancel_event.set()
        if self._cancel_sent:
            return
        self._cancel_sent = True
        log.info("cancelling tasks", tasks=len(self.tasks))
        for task in self.tasks:
            task.cancel()
