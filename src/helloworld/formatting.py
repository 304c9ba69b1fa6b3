"""
Human-readable rendering of sizes, durations and timestamps for the
diagnostics report.

    format_size(1536)          → "1.50 KB"
    format_duration(3723.5)    → "1h2m3.5s"
    format_timestamp(0)        → "never"
    format_bool(True)          → "true"
"""

from datetime import datetime, timezone
from typing import Optional


_SIZE_UNITS = ("KB", "MB", "GB", "TB")

_NANOSECOND = 1
_MICROSECOND = 1_000 * _NANOSECOND
_MILLISECOND = 1_000 * _MICROSECOND
_SECOND = 1_000 * _MILLISECOND
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE


def format_size(size: int) -> str:
    """
    Format a byte count.

    Below 1024 the raw count is printed ("512 B"); above, two decimals
    with a 1024-based unit ("1.50 KB", "12.00 MB").
    """
    size = int(size)
    if abs(size) < 1024:
        return f"{size} B"

    value = float(size)
    for unit in _SIZE_UNITS:
        value /= 1024
        if abs(value) < 1024 or unit == _SIZE_UNITS[-1]:
            break
    return f"{value:.2f} {unit}"


def format_duration(seconds: float) -> str:
    """
    Format an elapsed time in seconds.

    Sub-second values use the largest unit that keeps a non-zero integer
    part ("250ms", "1.5µs", "42ns"). From one second up the value is split
    into hours, minutes and fractional seconds ("1h2m3.5s", "4m0s").
    Trailing zeros of the fraction are dropped.
    """
    ns = int(round(seconds * _SECOND))
    sign = "-" if ns < 0 else ""
    ns = abs(ns)

    if ns == 0:
        return "0s"
    if ns < _MICROSECOND:
        return f"{sign}{ns}ns"
    if ns < _MILLISECOND:
        return f"{sign}{_fraction(ns, _MICROSECOND)}µs"
    if ns < _SECOND:
        return f"{sign}{_fraction(ns, _MILLISECOND)}ms"

    hours, rest = divmod(ns, _HOUR)
    minutes, rest = divmod(rest, _MINUTE)
    secs = _fraction(rest, _SECOND)

    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


def _fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def format_timestamp(timestamp: Optional[float]) -> str:
    """
    Format a Unix timestamp (seconds) in UTC.

    None or 0 means the event never happened and renders as "never".
    """
    if not timestamp:
        return "never"
    moment = datetime.fromtimestamp(timestamp, timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S.%f +0000 UTC")


def format_bool(value: bool) -> str:
    return "true" if value else "false"
