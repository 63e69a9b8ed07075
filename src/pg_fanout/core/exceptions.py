"""Exception hierarchy for pg-fanout.

All exceptions carry an exit_code for CLI return value mapping.
Connect, query and fetch errors never leave their ConnectionTask; they are
turned into a failed state there. Only usage/input/config errors and a failure
to create the archive reach the CLI.
"""

from pg_fanout.core.exit_codes import ExitCode


class FanoutError(Exception):
    """Base exception for all pg-fanout errors."""

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UsageError(FanoutError):
    """Missing query, output path or endpoints."""

    exit_code: int = ExitCode.USAGE_ERROR


class InputError(FanoutError):
    """Unreadable query file, malformed connection descriptor."""

    exit_code: int = ExitCode.INPUT_ERROR


class ConfigError(FanoutError):
    """Malformed config, unknown endpoint group."""

    exit_code: int = ExitCode.CONFIG_ERROR


class OutputError(FanoutError):
    """Output location unusable."""

    exit_code: int = ExitCode.OUTPUT_ERROR


class ArchiveError(OutputError):
    """The archive file could not be created."""


class NetworkError(FanoutError):
    """Connection failures, unreachable host."""

    exit_code: int = ExitCode.NETWORK_ERROR


class TimeoutError(NetworkError):
    """Connection timeout."""

    exit_code: int = ExitCode.TIMEOUT


class QueryError(FanoutError):
    """The server rejected the query before producing rows."""


class FetchError(FanoutError):
    """The row stream broke after it started."""
