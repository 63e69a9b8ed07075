"""In-memory stand-ins for PgClient used by the unit tests."""

import threading

from pg_fanout.core.config import Endpoint
from pg_fanout.core.exceptions import FetchError, NetworkError, QueryError


def make_endpoint(dsn: str = "postgresql://app@db1:5432/sales", index: int = 0):
    return Endpoint.from_dsn(dsn, index=index)


class FakeClient:
    """Plays back canned rows, optionally failing or stalling on the way.

    ``hold_at`` stalls the stream before that row until cancel() is called,
    which lets a test cancel a task while it is fetching.
    """

    def __init__(
        self,
        rows=(),
        columns=("id", "name"),
        *,
        connect_error=None,
        query_error=None,
        fail_at=None,
        hold_at=None,
    ):
        self.rows = list(rows)
        self.columns = list(columns)
        self.connect_error = connect_error
        self.query_error = query_error
        self.fail_at = fail_at
        self.hold_at = hold_at
        self.holding = threading.Event()
        self._released = threading.Event()
        self.connected = False
        self.closed = False
        self.cancel_calls = 0
        self._described = False

    def connect(self):
        if self.connect_error is not None:
            raise NetworkError(self.connect_error)
        self.connected = True

    def stream_query(self, sql):
        if self.query_error is not None:
            raise QueryError(self.query_error)
        self._described = True
        for i, row in enumerate(self.rows):
            if self.fail_at is not None and i == self.fail_at:
                raise FetchError("server closed the connection unexpectedly")
            if self.hold_at is not None and i == self.hold_at:
                self.holding.set()
                self._released.wait(5)
            yield row

    def column_names(self):
        return list(self.columns) if self._described else []

    def cancel(self):
        self.cancel_calls += 1
        self._released.set()

    def close(self):
        self.closed = True


class ExplodingClient(FakeClient):
    """Raises something no client should raise."""

    def connect(self):
        raise RuntimeError("boom")


def numbered_rows(n: int):
    return [(i, f"row-{i}") for i in range(1, n + 1)]
