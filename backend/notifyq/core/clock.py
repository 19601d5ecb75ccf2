"""
Time helpers.

All timestamps stored in the job table are naive UTC. Calendar-day questions
(dedup day, lookahead) are answered in the configured local timezone.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_today(now: datetime, tz_name: str) -> date:
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()


def local_day_bounds(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """Return the [start, end) of the local calendar day containing ``now``, as naive UTC."""
    tz = ZoneInfo(tz_name)
    today = local_today(now, tz_name)
    start = datetime.combine(today, time.min, tzinfo=tz)
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz)
    return to_naive_utc(start), to_naive_utc(end)
