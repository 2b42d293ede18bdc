from __future__ import annotations
from datetime import date, datetime, time, timedelta, timezone as dt_tz
from zoneinfo import ZoneInfo


def local_day(at: datetime, tz_name: str) -> date:
    """Calendar date of the instant `at` as seen in `tz_name`. Naive values are taken as UTC."""
    if at.tzinfo is None:
        at = at.replace(tzinfo=dt_tz.utc)
    return at.astimezone(ZoneInfo(tz_name)).date()


def local_midnight_utc(d: date, tz_name: str) -> datetime:
    """
    UTC instant of local midnight starting date `d` in `tz_name`.

    DST: in zones that skip midnight (e.g. America/Santiago) fold=0 maps the
    nonexistent 00:00 onto the first valid instant after the gap.
    """
    local = datetime.combine(d, time(0, 0), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(dt_tz.utc)


def day_window_utc(at: datetime, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """
    Half-open UTC window [start, end) of the calendar day containing `at`
    in timezone `tz_name`. Daily reward caps count transactions in this window.

    Examples:
        >>> from datetime import datetime, timezone
        >>> s, e = day_window_utc(datetime(2025, 1, 10, 3, 0, tzinfo=timezone.utc), "America/New_York")
        >>> s.isoformat(), e.isoformat()
        ('2025-01-09T05:00:00+00:00', '2025-01-10T05:00:00+00:00')
    """
    d = local_day(at, tz_name)
    return local_midnight_utc(d, tz_name), local_midnight_utc(d + timedelta(days=1), tz_name)
