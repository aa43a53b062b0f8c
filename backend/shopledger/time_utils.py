from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_timezone() -> ZoneInfo:
    name = "UTC"
    if has_app_context():
        name = current_app.config.get("BUSINESS_TIMEZONE") or "UTC"
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        raise ValueError(f"Unknown BUSINESS_TIMEZONE {name!r}")


def business_date(dt: Optional[datetime] = None) -> date:
    """
    Calendar day an instant belongs to in the business timezone.

    Naive datetimes are treated as UTC (the canonical storage form).
    Income rows are keyed by this day, so a sale made at 23:30 local time
    counts toward that local day even when UTC has already rolled over.
    """
    if dt is None:
        dt = utcnow()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(business_timezone()).date()


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse 'YYYY-MM-DD'. None / '' -> None."""
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def business_day_bounds(day: date) -> tuple[datetime, datetime]:
    """First and last instant of a business day, as UTC-naive datetimes."""
    tz = business_timezone()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time.max, tzinfo=tz)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )
