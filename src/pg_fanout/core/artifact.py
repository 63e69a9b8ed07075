"""Temporary per-endpoint CSV files (RFC 4180 compliant)."""

from __future__ import annotations

import csv
import tempfile
from pathlib import Path
from typing import IO

import structlog

ARTIFACT_PREFIX = "pg-fanout-"
ARTIFACT_SUFFIX = ".csv"


class Artifact:
    """A temporary CSV file owned by one ConnectionTask.

    Created on the first row of a result set, handed to the aggregator
    once the task completes, and deleted after it has been archived.
    """

    def __init__(self, header: list[str], directory: Path | None = None) -> None:
        self._file: IO[str] | None = tempfile.NamedTemporaryFile(  # noqa: SIM115
            mode="w",
            encoding="utf-8",
            newline="",
            prefix=ARTIFACT_PREFIX,
            suffix=ARTIFACT_SUFFIX,
            dir=directory,
            delete=False,
        )
        self.path = Path(self._file.name)
        self._writer = csv.writer(self._file)
        self._writer.writerow(header)
        self.columns = len(header)
        self.rows_written = 0
        structlog.get_logger().debug("artifact created", path=str(self.path))

    def write_row(self, values: list[str]) -> None:
        self._writer.writerow(values)
        self.rows_written += 1

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def discard(self) -> None:
        """Close and delete the file. Safe to call more than once."""
        self.close()
        self.path.unlink(missing_ok=True)

    @property
    def closed(self) -> bool:
        return self._file is None
