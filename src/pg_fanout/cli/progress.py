"""Live status display and end-of-run summary.

The display never reads task objects. It drains StatusEvent and PhaseEvent
snapshots from the run's queue on a fixed tick and redraws one line per
endpoint, so it is only eventually consistent with the tasks.
"""

from __future__ import annotations

import queue
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from pg_fanout.cli.helpers import fmt_rows, fmt_size, format_duration_human
from pg_fanout.core.models import Phase, PhaseEvent, StatusEvent, TaskState

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    from pg_fanout.core.config import Endpoint
    from pg_fanout.core.models import ExportReport

STATE_ICONS: dict[TaskState, str] = {
    TaskState.INIT: "🎬",
    TaskState.CONNECTING: "🔌",
    TaskState.CONNECTED: "🔌",
    TaskState.QUERY_STARTED: "🔍",
    TaskState.FETCHING: "📝",
    TaskState.COMPLETE: "🏁",
    TaskState.FAILED: "💣",
}

_STATUS_STYLE = "grey82"
_LABEL_WIDTH = 30


class ProgressDisplay:
    def __init__(
        self,
        endpoints: list[Endpoint],
        archive_path: Path,
        events: queue.Queue[Any],
        *,
        refresh_interval: float = 1 / 6,
        console: Console | None = None,
    ) -> None:
        self.archive_path = archive_path
        self.refresh_interval = refresh_interval
        self._events = events
        self._console = console or Console(stderr=True)
        self.latest: dict[int, StatusEvent] = {
            e.index: StatusEvent(
                index=e.index, label=e.label, state=TaskState.INIT, status="init"
            )
            for e in endpoints
        }
        self.fetches_done = False
        self.archive_done = False

    def apply(self, event: StatusEvent | PhaseEvent) -> None:
        if isinstance(event, StatusEvent):
            self.latest[event.index] = event
        elif event.phase is Phase.FETCH_COMPLETE:
            self.fetches_done = True
        elif event.phase is Phase.ARCHIVE_COMPLETE:
            self.archive_done = True

    def drain(self) -> int:
        """Apply every queued event. Returns how many were applied."""
        applied = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return applied
            self.apply(event)
            applied += 1

    def render(self) -> Group:
        table = Table.grid(padding=(0, 1))
        table.add_column(no_wrap=True)
        table.add_column(min_width=_LABEL_WIDTH, no_wrap=True)
        table.add_column()
        for index in sorted(self.latest):
            event = self.latest[index]
            table.add_row(
                STATE_ICONS[event.state],
                event.label,
                Text(event.status, style=_STATUS_STYLE),
            )

        parts: list[Any] = [table]
        if self.archive_done:
            parts.append(Text(f"\nFinished writing to {self.archive_path}"))
        elif self.fetches_done:
            parts.append(Text(f"\nWriting archive to {self.archive_path} ..."))
        return Group(*parts)

    def run(self, done: threading.Event) -> None:
        """Redraw on a fixed tick until ``done`` is set.

        KeyboardInterrupt propagates to the caller, which turns it into a
        cancellation of the run.
        """
        with Live(
            self.render(), console=self._console, auto_refresh=False, transient=False
        ) as live:
            while not done.is_set():
                self.drain()
                live.update(self.render(), refresh=True)
                done.wait(self.refresh_interval)
            self.drain()
            live.update(self.render(), refresh=True)


def print_summary(report: ExportReport) -> None:
    typer.echo("\n--- Export Summary ---", err=True)
    for task in report.tasks:
        icon = STATE_ICONS[task.state]
        label = f"{task.endpoint.label:<{_LABEL_WIDTH}}"
        typer.echo(f"{icon} - {label} {task.status}", err=True)

    typer.echo("", err=True)
    typer.echo(
        f"Endpoints: {len(report.tasks)} "
        f"({report.completed} complete, {report.failed} failed)",
        err=True,
    )
    total_rows = sum(t.row_count for t in report.tasks if t.state is TaskState.COMPLETE)
    longest = max((t.elapsed_seconds for t in report.tasks), default=0.0)
    typer.echo(
        f"Fetched: {fmt_rows(total_rows)} in {format_duration_human(longest)}",
        err=True,
    )

    for entry in report.entries:
        if not entry.written:
            typer.echo(f"  {entry.entry_name}: not archived ({entry.error})", err=True)

    if report.cancelled:
        typer.echo("Cancelled: no archive written", err=True)
        return

    written = sum(e.bytes_copied for e in report.entries if e.written)
    typer.echo(
        f"Archive: {report.archive_path} "
        f"({report.entries_written} entries, {fmt_size(written)} uncompressed)",
        err=True,
    )
