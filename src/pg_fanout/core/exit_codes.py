"""Standard exit codes for pg-fanout.

Exit codes follow Unix conventions; 130 is the shell convention for SIGINT.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes for pg-fanout commands."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    USAGE_ERROR = 2
    INPUT_ERROR = 3
    OUTPUT_ERROR = 4
    NETWORK_ERROR = 5
    TIMEOUT = 6
    CONFIG_ERROR = 7
    CANCELLED = 130
