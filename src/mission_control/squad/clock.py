"""Local-day calendar used by budget enforcement and cost rollups.

Both the ledger reset and the rollup windows use local midnight from this
module, so enforcement and dashboards always agree on what "today" is.

A zone of ``None`` means the host's local zone, resolved on every call so a
long-running process follows daylight-saving changes.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo

from mission_control.storage.common import utc_now


def resolve_timezone(name: str | None = None) -> tzinfo | None:
    """Named IANA zone, or ``None`` (host local zone) when ``name`` is empty."""

    return ZoneInfo(name) if name else None


def local_now(tz: tzinfo | None, now: datetime | None = None) -> datetime:
    return (now or utc_now()).astimezone(tz)


def business_date(tz: tzinfo | None, now: datetime | None = None) -> date:
    """Local calendar date that owns ``now``."""

    return local_now(tz, now).date()


def local_midnight(tz: tzinfo | None, day: date) -> datetime:
    midnight = datetime.combine(day, time.min)
    if tz is None:
        return midnight.astimezone()
    return midnight.replace(tzinfo=tz)


def start_of_day(tz: tzinfo | None, now: datetime | None = None) -> datetime:
    return local_midnight(tz, business_date(tz, now))


def start_of_week(tz: tzinfo | None, now: datetime | None = None) -> datetime:
    """Local midnight of the most recent Sunday."""

    today = business_date(tz, now)
    days_since_sunday = (today.weekday() + 1) % 7
    return local_midnight(tz, today - timedelta(days=days_since_sunday))


def start_of_month(tz: tzinfo | None, now: datetime | None = None) -> datetime:
    return local_midnight(tz, business_date(tz, now).replace(day=1))
