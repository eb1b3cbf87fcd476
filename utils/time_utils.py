"""
Millisecond clock helpers.
"""
import time
from datetime import datetime, timezone

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    """Current wall clock time in milliseconds."""
    return int(time.time() * 1000)


def year_start_ms(reference_ms: int) -> int:
    """Start of the UTC calendar year containing reference_ms."""
    reference = datetime.fromtimestamp(reference_ms / 1000, tz=timezone.utc)
    start = datetime(reference.year, 1, 1, tzinfo=timezone.utc)
    return int(start.timestamp() * 1000)


def format_date(timestamp_ms: int) -> str:
    """YYYY-MM-DD of a millisecond timestamp (UTC)."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
