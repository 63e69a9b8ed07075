"""Shared CLI formatting helpers."""

from __future__ import annotations


def format_duration_human(seconds: float | None) -> str:
    if seconds is None:
        return ""

    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}m {secs}s"
    else:
        hours, remainder = divmod(int(seconds), 3600)
        return f"{hours}h {remainder // 60}m"


def fmt_size(b: int | None) -> str:
    """Format bytes as human-readable size."""
    if not b:
        return "-"
    units = [("TB", 1 << 40), ("GB", 1 << 30), ("MB", 1 << 20), ("KB", 1 << 10)]
    for suffix, threshold in units:
        if b >= threshold:
            value = b / threshold
            return f"{value:.0f} {suffix}" if value >= 10 else f"{value:.1f} {suffix}"
    return f"{b}B"


def fmt_rows(n: int) -> str:
    return f"{n:,} row" if n == 1 else f"{n:,} rows"
