"""Tests for the concurrent fan-out and its join point."""

import queue
import threading

import pytest

from pg_fanout.core.config import Settings
from pg_fanout.core.dispatcher import Dispatcher
from pg_fanout.core.models import Phase, PhaseEvent, StatusEvent, TaskState
from pg_fanout.core.task import CANCELLED
from tests.fakes import ExplodingClient, FakeClient, make_endpoint, numbered_rows


def _endpoints(n):
    return [make_endpoint(f"postgresql://u@host{i}/db", index=i) for i in range(n)]


def _dispatcher(clients, tmp_path, **kwargs):
    settings = kwargs.pop("settings", Settings())
    return Dispatcher(
        "SELECT 1",
        settings,
        client_factory=lambda endpoint: clients[endpoint.index],
        artifact_dir=tmp_path,
        **kwargs,
    )


def _drain(events):
    out = []
    while not events.empty():
        out.append(events.get_nowait())
    return out


@pytest.mark.unit
class TestJoin:
    def test_results_in_endpoint_order(self, tmp_path):
        clients = [
            FakeClient(rows=numbered_rows(3)),
            FakeClient(connect_error="refused"),
            FakeClient(rows=[]),
        ]
        dispatcher = _dispatcher(clients, tmp_path)
        dispatcher.start(_endpoints(3))
        results = dispatcher.join()

        assert [r.endpoint.index for r in results] == [0, 1, 2]
        assert [r.state for r in results] == [
            TaskState.COMPLETE,
            TaskState.FAILED,
            TaskState.COMPLETE,
        ]

    def test_every_result_terminal(self, tmp_path):
        clients = [FakeClient(rows=numbered_rows(i)) for i in range(6)]
        dispatcher = _dispatcher(clients, tmp_path)
        dispatcher.start(_endpoints(6))
        results = dispatcher.join()
        assert all(r.state.is_terminal for r in results)
        assert all(c.closed for c in clients)

    def test_thread_error_is_contained(self, tmp_path):
        clients = [ExplodingClient(), FakeClient(rows=numbered_rows(2))]
        dispatcher = _dispatcher(clients, tmp_path)
        dispatcher.start(_endpoints(2))
        results = dispatcher.join()
        assert results[0].reason == "internal-error: boom"
        assert results[1].state is TaskState.COMPLETE

    def test_join_before_start(self, tmp_path):
        with pytest.raises(RuntimeError, match="not started"):
            _dispatcher([], tmp_path).join()

    def test_start_twice(self, tmp_path):
        dispatcher = _dispatcher([FakeClient()], tmp_path)
        dispatcher.start(_endpoints(1))
        with pytest.raises(RuntimeError, match="already started"):
            dispatcher.start(_endpoints(1))
        dispatcher.join()


@pytest.mark.unit
class TestWorkers:
    def test_one_worker_per_endpoint_by_default(self, tmp_path):
        clients = [FakeClient() for _ in range(4)]
        dispatcher = _dispatcher(clients, tmp_path)
        dispatcher.start(_endpoints(4))
        assert dispatcher.worker_count == 4
        dispatcher.join()

    def test_max_workers_bounds_pool(self, tmp_path):
        clients = [FakeClient(rows=numbered_rows(2)) for _ in range(5)]
        dispatcher = _dispatcher(clients, tmp_path, settings=Settings(max_workers=2))
        dispatcher.start(_endpoints(5))
        assert dispatcher.worker_count == 2
        results = dispatcher.join()
        assert all(r.state is TaskState.COMPLETE for r in results)


@pytest.mark.unit
class TestEvents:
    def test_initial_snapshots_then_fetch_complete(self, tmp_path):
        events = queue.Queue()
        clients = [FakeClient(rows=numbered_rows(1)) for _ in range(2)]
        dispatcher = _dispatcher(clients, tmp_path, events=events)
        dispatcher.start(_endpoints(2))
        dispatcher.join()

        drained = _drain(events)
        assert drained[0].state is TaskState.INIT
        assert drained[1].state is TaskState.INIT
        assert isinstance(drained[-1], PhaseEvent)
        assert drained[-1].phase is Phase.FETCH_COMPLETE
        assert all(isinstance(e, StatusEvent) for e in drained[:-1])


@pytest.mark.unit
class TestCancel:
    def test_cancel_event_stops_running_tasks(self, tmp_path):
        cancel_event = threading.Event()
        clients = [
            FakeClient(rows=numbered_rows(10), hold_at=2),
            FakeClient(rows=numbered_rows(10), hold_at=5),
        ]
        dispatcher = _dispatcher(clients, tmp_path, cancel_event=cancel_event)
        dispatcher.start(_endpoints(2))
        assert clients[0].holding.wait(5)
        assert clients[1].holding.wait(5)

        cancel_event.set()
        results = dispatcher.join()

        assert [r.reason for r in results] == [CANCELLED, CANCELLED]
        assert [c.cancel_calls for c in clients] == [1, 1]
        assert all(c.closed for c in clients)
        assert list(tmp_path.iterdir()) == []

    def test_cancel_is_sent_once(self, tmp_path):
        clients = [FakeClient(rows=numbered_rows(10), hold_at=1)]
        dispatcher = _dispatcher(clients, tmp_path)
        dispatcher.start(_endpoints(1))
        assert clients[0].holding.wait(5)

        dispatcher.cancel()
        dispatcher.cancel()
        results = dispatcher.join()

        assert clients[0].cancel_calls == 1
        assert results[0].reason == CANCELLED

    def test_join_waits_for_running_task(self, tmp_path):
        clients = [
            FakeClient(rows=numbered_rows(2)),
            FakeClient(rows=numbered_rows(10), hold_at=3),
        ]
        dispatcher = _dispatcher(clients, tmp_path)
        dispatcher.start(_endpoints(2))
        assert clients[1].holding.wait(5)

        joined = threading.Event()
        thread = threading.Thread(target=lambda: (dispatcher.join(), joined.set()))
        thread.start()
        assert not joined.wait(0.3)

        dispatcher.cancel()
        thread.join(10)
        assert joined.is_set()
