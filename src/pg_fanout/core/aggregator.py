"""Archive assembly: runs after the dispatcher's join point.

Each complete task's artifact becomes one zip entry; failed tasks and
zero-row results contribute nothing. A copy failure is recorded against
its entry and the remaining entries still get written. Every artifact is
deleted once this phase ends, whatever the outcome.
"""

from __future__ import annotations

import threading
import zipfile
from typing import TYPE_CHECKING, Any

import sentry_sdk
import structlog

from pg_fanout.core.exceptions import ArchiveError
from pg_fanout.core.models import EntryResult, Phase, PhaseEvent, TaskResult, TaskState

if TYPE_CHECKING:
    import queue
    from pathlib import Path

_CHUNK_SIZE = 1 << 20


def discard_artifacts(results: list[TaskResult]) -> None:
    for result in results:
        if result.artifact_path is not None:
            result.artifact_path.unlink(missing_ok=True)


class Aggregator:
    def __init__(
        self,
        archive_path: Path,
        *,
        events: queue.Queue[Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.archive_path = archive_path
        self._events = events
        self._cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def build(self, results: list[TaskResult]) -> list[EntryResult]:
        """Write the archive from terminal task results, in endpoint order.

        Raises ArchiveError if the archive file cannot be created. A
        cancelled build removes the partial archive.
        """
        log = structlog.get_logger()
        not_terminal = [r.endpoint.label for r in results if not r.state.is_terminal]
        if not_terminal:
            discard_artifacts(results)
            msg = f"Cannot archive non-terminal tasks: {', '.join(not_terminal)}"
            raise RuntimeError(msg)

        entries: list[EntryResult] = []
        with sentry_sdk.start_span(
            op="archive", description=f"Write {self.archive_path.name}"
        ) as span:
            try:
                archive = zipfile.ZipFile(
                    self.archive_path, "w", compression=zipfile.ZIP_DEFLATED
                )
            except OSError as e:
                discard_artifacts(results)
                msg = f"Could not create archive {self.archive_path}: {e}"
                raise ArchiveError(msg) from e

            try:
                for result in results:
                    if self.cancelled:
                        log.info("archive cancelled", written=len(entries))
                        break
                    if result.state is not TaskState.COMPLETE:
                        continue
                    if result.artifact_path is None:
                        log.debug("no rows, no entry", endpoint=result.endpoint.label)
                        continue
                    entries.append(self._copy_entry(archive, result))
            finally:
                archive.close()
                discard_artifacts(results)

            span.set_data("entries", len(entries))

        if self.cancelled:
            self.archive_path.unlink(missing_ok=True)
            return entries

        log.info(
            "archive complete",
            path=str(self.archive_path),
            entries=sum(1 for e in entries if e.written),
            failed=sum(1 for e in entries if not e.written),
        )
        if self._events is not None:
            self._events.put(
                PhaseEvent(phase=Phase.ARCHIVE_COMPLETE, archive_path=self.archive_path)
            )
        return entries

    def _copy_entry(self, archive: zipfile.ZipFile, result: TaskResult) -> EntryResult:
        log = structlog.get_logger()
        assert result.artifact_path is not None
        entry_name = result.endpoint.entry_name
        label = result.endpoint.label
        copied = 0
        try:
            with (
                open(result.artifact_path, "rb") as src,
                archive.open(entry_name, "w", force_zip64=True) as dst,
            ):
                while chunk := src.read(_CHUNK_SIZE):
                    dst.write(chunk)
                    copied += len(chunk)
        except (OSError, zipfile.BadZipFile, ValueError, RuntimeError) as e:
            log.error("archive entry failed", entry=entry_name, error=str(e))
            return EntryResult(
                entry_name=entry_name, label=label, written=False, error=str(e)
            )
        finally:
            result.artifact_path.unlink(missing_ok=True)

        log.debug("archive entry written", entry=entry_name, bytes=copied)
        return EntryResult(
            entry_name=entry_name, label=label, written=True, bytes_copied=copied
        )
