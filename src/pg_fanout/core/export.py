"""One export run: validate, fan out, join, archive.

The cancel event may be set from any thread (the CLI sets it on Ctrl+C).
A cancelled run stops every task, closes every connection, deletes every
temporary artifact and does not leave an archive behind.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

import sentry_sdk
import structlog

from pg_fanout.core.aggregator import Aggregator, discard_artifacts
from pg_fanout.core.config import apply_collision_policy
from pg_fanout.core.dispatcher import Dispatcher
from pg_fanout.core.exceptions import OutputError, UsageError
from pg_fanout.core.models import ExportReport

if TYPE_CHECKING:
    import queue
    from collections.abc import Callable

    from pg_fanout.core.config import Endpoint, Settings
    from pg_fanout.core.task import QueryClient


def validate_run(
    query: str, output: Path | str | None, endpoints: list[Endpoint]
) -> Path:
    """Check run parameters before any task starts. Returns the output path."""
    if not query or not query.strip():
        raise UsageError("You must supply a SQL query")
    if not output:
        raise UsageError("You must supply an output zip filename")
    if not endpoints:
        raise UsageError(
            "You must supply at least one postgresql connection URL to connect to"
        )

    path = Path(output)
    if path.is_dir():
        raise OutputError(f"Output path is a directory: {path}")
    if not path.parent.is_dir():
        raise OutputError(f"Output directory does not exist: {path.parent}")
    return path


def run_export(
    endpoints: list[Endpoint],
    query: str,
    output: Path | str,
    settings: Settings,
    *,
    events: queue.Queue[Any] | None = None,
    cancel_event: threading.Event | None = None,
    client_factory: Callable[[Endpoint], QueryClient] | None = None,
    artifact_dir: Path | None = None,
) -> ExportReport:
    log = structlog.get_logger()
    archive_path = validate_run(query, output, endpoints)
    endpoints = apply_collision_policy(endpoints, settings.on_collision)
    cancel_event = cancel_event or threading.Event()

    dispatcher = Dispatcher(
        query,
        settings,
        client_factory=client_factory,
        events=events,
        cancel_event=cancel_event,
        artifact_dir=artifact_dir,
    )
    with sentry_sdk.start_span(
        op="fetch", description=f"Fetch from {len(endpoints)} endpoints"
    ):
        dispatcher.start(endpoints)
        results = dispatcher.join()

    if cancel_event.is_set():
        log.info("run cancelled before archiving, discarding outputs")
        discard_artifacts(results)
        return ExportReport(archive_path=archive_path, tasks=results, cancelled=True)

    aggregator = Aggregator(archive_path, events=events, cancel_event=cancel_event)
    entries = aggregator.build(results)
    return ExportReport(
        archive_path=archive_path,
        tasks=results,
        entries=entries,
        cancelled=cancel_event.is_set(),
    )
