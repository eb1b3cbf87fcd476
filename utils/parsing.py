"""
Lenient parsing of numeric fields in exchange payloads.

Venues return numbers as strings, sometimes as null and occasionally in
seconds instead of milliseconds. Bad values never raise, they collapse to a
neutral default so one malformed field cannot break a whole poll.
"""
import math
from typing import Any

# Anything below this is a seconds timestamp (year 2001 in ms)
_MS_THRESHOLD = 1e12


def parse_float(value: Any, default: float = 0.0) -> float:
    """Parse a float, returning default for None, garbage or NaN/inf."""
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def to_millis(value: Any) -> int:
    """
    Normalize a timestamp to milliseconds.

    Returns 0 for missing or unparsable input so callers can filter it out.
    """
    timestamp = parse_float(value)
    if timestamp <= 0:
        return 0
    if timestamp < _MS_THRESHOLD:
        timestamp *= 1000
    return int(timestamp)


def first_present(data: dict, *keys: str, default: Any = None) -> Any:
    """Value of the first key present and not None in data."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default
