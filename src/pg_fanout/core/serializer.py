"""Canonical text rendering of result cells.

Every value psycopg can hand back is classified into a closed set of
``CellKind``s and rendered by exactly one rule. ``render`` is total: it
returns a string for any input and never raises. New Python types are
added in ``classify`` only.
"""

from __future__ import annotations

import ipaddress
import json
import math
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import StrEnum
from fractions import Fraction
from typing import Any
from uuid import UUID

from psycopg.types.range import Range

NULL_MARKER = "[null]"
BAD_DATA_MARKER = "bad data"
DECIMAL_PLACES = 5


class CellKind(StrEnum):
    NULL = "null"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    TEXT = "text"
    BINARY = "binary"
    TEMPORAL = "temporal"
    STRUCTURED = "structured"
    UNKNOWN = "unknown"


_TEXT_TYPES = (str, UUID, ipaddress.IPv4Address, ipaddress.IPv6Address)
_BINARY_TYPES = (bytes, bytearray, memoryview)
_TEMPORAL_TYPES = (
    datetime,
    date,
    time,
    timedelta,
    ipaddress.IPv4Network,
    ipaddress.IPv6Network,
    ipaddress.IPv4Interface,
    ipaddress.IPv6Interface,
    Range,
)


def classify(value: Any) -> CellKind:
    """Map a Python value to its CellKind."""
    if value is None:
        return CellKind.NULL
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return CellKind.BOOLEAN
    if isinstance(value, int):
        return CellKind.INTEGER
    if isinstance(value, float):
        return CellKind.FLOAT
    if isinstance(value, (Decimal, Fraction)):
        return CellKind.DECIMAL
    if isinstance(value, _TEXT_TYPES):
        return CellKind.TEXT
    if isinstance(value, _BINARY_TYPES):
        return CellKind.BINARY
    if isinstance(value, _TEMPORAL_TYPES):
        return CellKind.TEMPORAL
    if isinstance(value, (dict, list)):
        return CellKind.STRUCTURED
    return CellKind.UNKNOWN


def rational_string(value: Decimal | Fraction, places: int = DECIMAL_PLACES) -> str:
    """Render an exact rational with a fixed number of fractional digits.

    The last digit is rounded to nearest, halves away from zero. Digits
    beyond ``places`` are lost.
    """
    if isinstance(value, Decimal) and not value.is_finite():
        return str(value)
    frac = Fraction(value)
    scale = 10**places
    quotient, remainder = divmod(abs(frac.numerator) * scale, frac.denominator)
    if 2 * remainder >= frac.denominator:
        quotient += 1
    whole, fraction = divmod(quotient, scale)
    sign = "-" if frac < 0 else ""
    if places == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction:0{places}d}"


def _json_default(value: Any) -> str:
    if classify(value) is CellKind.UNKNOWN:
        raise TypeError(f"{type(value).__name__} is not JSON serializable")
    return render(value)


def _render_structured(value: dict[Any, Any] | list[Any]) -> str:
    try:
        return json.dumps(
            value,
            default=_json_default,
            sort_keys=True,
            separators=(",", ":"),
            allow_nan=False,
            ensure_ascii=False,
        )
    except (TypeError, ValueError, RecursionError):
        return BAD_DATA_MARKER


def _render_float(value: float) -> str:
    # Non-finite values use the PostgreSQL spelling, as numerics do.
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return f"{value:f}"


def _render_binary(value: bytes | bytearray | memoryview) -> str:
    return "\\x" + bytes(value).hex()


def _render_unknown(value: Any) -> str:
    type_name = type(value).__name__
    for text_of in (str, repr):
        try:
            return f"({type_name}): {text_of(value)}"
        except Exception:  # noqa: S112
            continue
    return f"({type_name}): {object.__repr__(value)}"


_RENDERERS: dict[CellKind, Callable[[Any], str]] = {
    CellKind.NULL: lambda _: NULL_MARKER,
    CellKind.BOOLEAN: lambda v: "true" if v else "false",
    CellKind.INTEGER: lambda v: format(v, "d"),
    CellKind.FLOAT: _render_float,
    CellKind.DECIMAL: rational_string,
    CellKind.TEXT: str,
    CellKind.BINARY: _render_binary,
    CellKind.TEMPORAL: str,
    CellKind.STRUCTURED: _render_structured,
    CellKind.UNKNOWN: _render_unknown,
}


def render(value: Any) -> str:
    """Render one cell as canonical text. Never raises."""
    try:
        return _RENDERERS[classify(value)](value)
    except Exception:
        return _render_unknown(value)


def render_row(row: tuple[Any, ...] | list[Any]) -> list[str]:
    return [render(v) for v in row]
