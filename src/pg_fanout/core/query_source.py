"""Query source resolution for pg-fanout.

Resolves the SQL query text from one of three sources:
1. Inline (--query), highest priority
2. File (--file)
3. stdin, lowest priority, only when piped
"""

from __future__ import annotations

import sys
from pathlib import Path

from pg_fanout.core.exceptions import InputError, UsageError


def resolve_query_source(
    inline: str | None,
    file_path: str | Path | None,
) -> str:
    """Resolve SQL query from inline, file, or stdin.

    Precedence: inline > file > stdin.
    Raises UsageError when no source is available.
    """
    if inline is not None:
        return inline

    if file_path is not None:
        p = Path(file_path)
        if not p.is_file():
            msg = (
                f"Query file not found: {file_path}\n"
                "Use --query for inline queries or pipe query via stdin."
            )
            raise InputError(msg)
        return p.read_text()

    try:
        is_tty = sys.stdin.isatty()
    except (ValueError, AttributeError):
        is_tty = True
    if not is_tty:
        return sys.stdin.read()

    msg = "No query provided. Use --query, --file, or pipe to stdin."
    raise UsageError(msg)
