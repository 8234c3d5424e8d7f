"""
Time utility functions.
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()


def seconds_ago(seconds: float) -> datetime:
    """UTC datetime the given number of seconds in the past."""
    return utc_now() - timedelta(seconds=seconds)
