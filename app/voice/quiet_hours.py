"""
Quiet-hours evaluation for outbound callbacks.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Optional

import structlog

from app.voice.models import QuietHours

logger = structlog.get_logger(__name__)


def parse_hhmm(value: str) -> Optional[time]:
    """Parse "HH:MM" (24h). Returns None for anything else."""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError):
        return None


def local_time(now: datetime, offset_minutes: int) -> time:
    """Wall-clock time at a fixed UTC offset. Naive datetimes are taken as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone(timedelta(minutes=offset_minutes))).time()


def is_quiet_hours(window: QuietHours, now: Optional[datetime] = None) -> bool:
    """
    Whether callbacks are suppressed at `now`.

    The window is [start, end) in the user's local time. When start > end
    it wraps through midnight (22:00-08:00 covers 23:30 and 07:59).
    """
    if not window.enabled:
        return False

    start = parse_hhmm(window.start)
    end = parse_hhmm(window.end)
    if start is None or end is None:
        logger.warning("Invalid quiet hours window", start=window.start, end=window.end)
        return False

    current = local_time(now or datetime.now(timezone.utc), window.timezone_offset_minutes)
    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end
