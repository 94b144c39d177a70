# utils/timeutils.py
# Leaderboard Scoring — Clock and datetime helpers shared by the scoring services.
# Imports from: nothing internal.

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_iso(value: datetime) -> str:
    return ensure_aware(value).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_aware(datetime.fromisoformat(value))


def week_start(day: date) -> date:
    """Monday of the ISO week containing `day`."""
    return day - timedelta(days=day.weekday())


def months_before(value: datetime, months: int) -> datetime:
    """
    Calendar month subtraction; the day is clamped to the target month's
    length (31 May minus 3 months → 28/29 Feb).
    """
    month_index = value.month - 1 - months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
