"""
Row value helpers
Drivers return counters as strings, Decimals or None; metrics want
non-negative numbers.
"""

from datetime import datetime
from typing import Any, Mapping, Optional


def column_value(row: Optional[Mapping[str, Any]], name: str) -> Any:
    """Column lookup tolerant of the driver's case folding"""
    if not row:
        return None
    if name in row:
        return row[name]
    lowered = name.lower()
    for key, value in row.items():
        if key.lower() == lowered:
            return value
    return None


def as_int(value: Any) -> int:
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError):
        return 0


def as_float(value: Any) -> float:
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return 0.0


def as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None
