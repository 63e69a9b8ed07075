"""Shared test fixtures for pg-fanout."""

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from typer.testing import CliRunner

from pg_fanout.cli.main import app
from pg_fanout.core.logging import setup_logging

_ENV_VARS = (
    "DEBUG",
    "PG_FANOUT_DEBUG",
    "PG_FANOUT_LOG_FILE",
    "PG_FANOUT_CONNECT_TIMEOUT",
    "PG_FANOUT_MAX_WORKERS",
    "PG_FANOUT_ON_COLLISION",
    "SENTRY_DSN",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's shell settings out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    setup_logging()
    yield
    setup_logging()


@pytest.fixture
def runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_runner(runner):
    """Invoke the CLI app with the given arguments."""

    def invoke(*args: str, **kwargs):
        return runner.invoke(app, list(args), **kwargs)

    return invoke


@pytest.fixture
def temp_dir():
    """Temporary directory for test files."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
