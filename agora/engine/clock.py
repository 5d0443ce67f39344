"""
agora.engine.clock — Local Calendar Boundaries
===============================================

Timestamps are stored as aware UTC.  "Today", "this week" and "this month"
are defined in the community's configured timezone (``RuleBook.tz``), so a
daily limit resets at *local* midnight, not UTC midnight.

All helpers are pure and take ``now`` explicitly so tests can pin time.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta, tzinfo

PERIODS = ("all_time", "day", "week", "month")


def utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_dt(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on round-trip)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def as_utc(dt: datetime | None) -> datetime:
    """*dt* converted to aware UTC; ``None`` means now."""
    if dt is None:
        return utcnow()
    return normalize_dt(dt).astimezone(UTC)


def local_date(dt: datetime, tz: tzinfo) -> date:
    """Calendar date of *dt* in *tz*."""
    return normalize_dt(dt).astimezone(tz).date()


def local_date_str(dt: datetime, tz: tzinfo) -> str:
    return local_date(dt, tz).isoformat()


def local_day_start(now: datetime, tz: tzinfo) -> datetime:
    """Local midnight of the day containing *now*, as aware UTC."""
    day = local_date(now, tz)
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)


def local_month_start(now: datetime, tz: tzinfo) -> datetime:
    day = local_date(now, tz).replace(day=1)
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)


def period_start(period: str, now: datetime, tz: tzinfo) -> datetime | None:
    """Lower bound of a counting window, or ``None`` for ``all_time``.

    * ``day``   — local midnight today
    * ``week``  — trailing seven days from *now*
    * ``month`` — local midnight on the first of the current month
    """
    if period == "all_time":
        return None
    if period == "day":
        return local_day_start(now, tz)
    if period == "week":
        return normalize_dt(now) - timedelta(days=7)
    if period == "month":
        return local_month_start(now, tz)
    raise ValueError(f"Unknown period: {period!r}")


def recent_dates(now: datetime, tz: tzinfo, days: int) -> list[str]:
    """The last *days* local dates ending today, newest first, as ISO strings."""
    today = local_date(now, tz)
    return [(today - timedelta(days=i)).isoformat() for i in range(days)]
