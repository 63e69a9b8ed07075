"""Tests for the status display and the end-of-run summary."""

import io
import queue
import threading
from pathlib import Path

import pytest
from rich.console import Console

from pg_fanout.cli.progress import STATE_ICONS, ProgressDisplay, print_summary
from pg_fanout.core.models import (
    EntryResult,
    ExportReport,
    Phase,
    PhaseEvent,
    StatusEvent,
    TaskResult,
    TaskState,
)
from tests.fakes import make_endpoint


@pytest.fixture
def endpoints():
    return [
        make_endpoint("postgresql://u:pw@a/db", index=0),
        make_endpoint("postgresql://u@b/db", index=1),
    ]


def _console():
    return Console(file=io.StringIO(), width=160, color_system=None)


def _text(display):
    console = _console()
    console.print(display.render())
    return console.file.getvalue()


@pytest.mark.unit
class TestProgressDisplay:
    def test_initial_state(self, endpoints, temp_dir):
        display = ProgressDisplay(endpoints, temp_dir / "out.zip", queue.Queue())
        assert [e.state for e in display.latest.values()] == [TaskState.INIT] * 2
        text = _text(display)
        assert "postgresql://u:***@a/db" in text
        assert "pw" not in text

    def test_drain_applies_latest(self, endpoints, temp_dir):
        events = queue.Queue()
        display = ProgressDisplay(endpoints, temp_dir / "out.zip", events)
        for n in (10, 20):
            events.put(
                StatusEvent(
                    index=1,
                    label=endpoints[1].label,
                    state=TaskState.FETCHING,
                    status=f"fetch {n} rows",
                    row_count=n,
                )
            )
        assert display.drain() == 2
        assert display.latest[1].row_count == 20
        assert "fetch 20 rows" in _text(display)
        assert display.drain() == 0

    def test_phase_lines(self, endpoints, temp_dir):
        archive = temp_dir / "out.zip"
        display = ProgressDisplay(endpoints, archive, queue.Queue())
        assert "Writing archive" not in _text(display)

        display.apply(PhaseEvent(phase=Phase.FETCH_COMPLETE))
        assert "Writing archive to" in _text(display)

        display.apply(PhaseEvent(phase=Phase.ARCHIVE_COMPLETE, archive_path=archive))
        assert "Finished writing to" in _text(display)

    def test_every_state_has_icon(self):
        assert set(STATE_ICONS) == set(TaskState)

    def test_run_until_done(self, endpoints, temp_dir):
        events = queue.Queue()
        events.put(PhaseEvent(phase=Phase.FETCH_COMPLETE))
        console = _console()
        display = ProgressDisplay(
            endpoints, temp_dir / "out.zip", events, console=console
        )
        done = threading.Event()
        done.set()
        display.run(done)
        assert display.fetches_done
        assert "postgresql://u@b/db" in console.file.getvalue()


def _report(**kwargs):
    tasks = [
        TaskResult(
            endpoint=make_endpoint("postgresql://u@a/db", index=0),
            state=TaskState.COMPLETE,
            status="fetched 3 rows successfully in 0.1 seconds",
            row_count=3,
            elapsed_seconds=0.1,
            artifact_path=None,
        ),
        TaskResult(
            endpoint=make_endpoint("postgresql://u@b/db", index=1),
            state=TaskState.FAILED,
            status="failed: connect-error: refused",
            reason="connect-error: refused",
        ),
    ]
    return ExportReport(archive_path=Path("out.zip"), tasks=tasks, **kwargs)


@pytest.mark.unit
class TestPrintSummary:
    def test_summary(self, capsys):
        entries = [
            EntryResult(
                entry_name="a_db.csv", label="a", written=True, bytes_copied=2048
            )
        ]
        print_summary(_report(entries=entries))
        err = capsys.readouterr().err
        assert "--- Export Summary ---" in err
        assert "failed: connect-error: refused" in err
        assert "Endpoints: 2 (1 complete, 1 failed)" in err
        assert "Fetched: 3 rows" in err
        assert "Archive: out.zip (1 entries, 2.0 KB uncompressed)" in err

    def test_failed_entry_listed(self, capsys):
        entries = [
            EntryResult(entry_name="a_db.csv", label="a", written=False, error="gone")
        ]
        print_summary(_report(entries=entries))
        assert "a_db.csv: not archived (gone)" in capsys.readouterr().err

    def test_cancelled(self, capsys):
        print_summary(_report(cancelled=True))
        err = capsys.readouterr().err
        assert "Cancelled: no archive written" in err
        assert "Archive:" not in err

    def test_nothing_on_stdout(self, capsys):
        print_summary(_report())
        assert capsys.readouterr().out == ""
