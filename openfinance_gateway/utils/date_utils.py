"""Date manipulation utilities"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo


def today_local(timezone: str, now: Optional[datetime] = None) -> date:
    """Calendar day in the user's timezone (quota days roll over at local midnight)"""
    now = now or datetime.now(ZoneInfo("UTC"))
    return now.astimezone(ZoneInfo(timezone)).date()


def next_local_midnight(timezone: str, now: Optional[datetime] = None) -> datetime:
    """Instant the user's local calendar day rolls over"""
    tz = ZoneInfo(timezone)
    tomorrow = today_local(timezone, now) + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=tz)


def parse_iso_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Parse the date part of an ISO-8601 value.

    Provider timestamps arrive as "2024-03-15", "2024-03-15T03:00:00.000Z" or
    already-parsed objects. Unparseable input yields None instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def month_key(day: date) -> str:
    """YYYY-MM bucket for a date"""
    return f"{day.year:04d}-{day.month:02d}"
