"""Tests for temporary CSV artifacts."""

import csv

import pytest

from pg_fanout.core.artifact import ARTIFACT_PREFIX, Artifact


def _read(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


@pytest.mark.unit
class TestArtifact:
    def test_header_written_first(self, tmp_path):
        artifact = Artifact(["id", "name"], directory=tmp_path)
        artifact.close()
        assert _read(artifact.path) == [["id", "name"]]
        assert artifact.columns == 2

    def test_rows_appended(self, tmp_path):
        artifact = Artifact(["id", "name"], directory=tmp_path)
        artifact.write_row(["1", "alice"])
        artifact.write_row(["2", "bob"])
        artifact.close()
        assert _read(artifact.path) == [["id", "name"], ["1", "alice"], ["2", "bob"]]
        assert artifact.rows_written == 2

    def test_quoting(self, tmp_path):
        artifact = Artifact(["note"], directory=tmp_path)
        artifact.write_row(['has "quotes", commas\nand newlines'])
        artifact.close()
        raw = artifact.path.read_bytes()
        assert b'"has ""quotes"", commas\nand newlines"' in raw
        assert raw.startswith(b"note\r\n")
        assert _read(artifact.path)[1] == ['has "quotes", commas\nand newlines']

    def test_created_in_directory(self, tmp_path):
        artifact = Artifact(["x"], directory=tmp_path)
        artifact.close()
        assert artifact.path.parent == tmp_path
        assert artifact.path.name.startswith(ARTIFACT_PREFIX)
        assert artifact.path.suffix == ".csv"

    def test_close_is_idempotent(self, tmp_path):
        artifact = Artifact(["x"], directory=tmp_path)
        assert not artifact.closed
        artifact.close()
        artifact.close()
        assert artifact.closed
        assert artifact.path.exists()

    def test_discard_deletes(self, tmp_path):
        artifact = Artifact(["x"], directory=tmp_path)
        artifact.write_row(["1"])
        artifact.discard()
        assert artifact.closed
        assert not artifact.path.exists()
        artifact.discard()
        assert list(tmp_path.iterdir()) == []
