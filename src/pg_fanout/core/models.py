"""Run models for pg-fanout.

Task states, the status/phase events published to observers, and the
terminal results returned by the dispatcher and the aggregator.
"""

from __future__ import annotations

import time
from enum import StrEnum
from pathlib import Path  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from pg_fanout.core.config import Endpoint  # noqa: TC001


class TaskState(StrEnum):
    INIT = "init"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    QUERY_STARTED = "query_started"
    FETCHING = "fetching"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETE, TaskState.FAILED)


class Phase(StrEnum):
    FETCH_COMPLETE = "fetch_complete"
    ARCHIVE_COMPLETE = "archive_complete"


class StatusEvent(BaseModel):
    """Immutable snapshot of one task, pushed to observers on change."""

    model_config = ConfigDict(frozen=True)

    index: int
    label: str
    state: TaskState
    status: str
    row_count: int = 0
    timestamp: float = Field(default_factory=time.time)


class PhaseEvent(BaseModel):
    """Run-level signal: all fetches settled, or the archive is closed."""

    model_config = ConfigDict(frozen=True)

    phase: Phase
    archive_path: Path | None = None
    timestamp: float = Field(default_factory=time.time)


class TaskResult(BaseModel):
    """Terminal snapshot of a ConnectionTask."""

    model_config = ConfigDict(frozen=True)

    endpoint: Endpoint
    state: TaskState
    status: str
    reason: str | None = None
    row_count: int = 0
    elapsed_seconds: float = 0.0
    artifact_path: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is TaskState.COMPLETE


class EntryResult(BaseModel):
    """Outcome of copying one artifact into the archive."""

    entry_name: str
    label: str
    written: bool
    bytes_copied: int = 0
    error: str | None = None


class ExportReport(BaseModel):
    archive_path: Path
    tasks: list[TaskResult]
    entries: list[EntryResult] = []
    cancelled: bool = False

    @property
    def completed(self) -> int:
        return sum(1 for t in self.tasks if t.state is TaskState.COMPLETE)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tasks if t.state is TaskState.FAILED)

    @property
    def entries_written(self) -> int:
        return sum(1 for e in self.entries if e.written)

    @property
    def entries_failed(self) -> int:
        return sum(1 for e in self.entries if not e.written)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or self.entries_failed > 0
