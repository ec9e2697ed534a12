from datetime import datetime
from typing import Optional


def format_time_ago(timestamp: datetime, now: Optional[datetime] = None) -> str:
    """Human readable age of a message timestamp, e.g. '5 minutes ago'."""
    now = now or datetime.now()
    seconds = int((now - timestamp).total_seconds())
    if seconds < 60:
        return "just now"

    for unit, size in (
        ("year", 365 * 24 * 3600),
        ("month", 30 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ):
        count = seconds // size
        if count >= 1:
            return f"{count} {unit}{'s' if count > 1 else ''} ago"
    return "just now"
