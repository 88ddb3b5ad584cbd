# sitecpm/utils.py
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_user_date(date_str) -> Optional[date]:
    if not date_str:
        return None
    if isinstance(date_str, datetime):
        return date_str.date()
    if isinstance(date_str, date):
        return date_str
    formats = [
        "%Y-%m-%d %H:%M:%S",  # e.g., "2025-01-06 08:00:00"
        "%Y-%m-%d",           # e.g., "2025-01-06"
        "%d/%m/%Y",           # e.g., "06/01/2025"
        "%m/%d/%y %H:%M",
        "%m/%d/%Y %H:%M",
        "%m/%d/%y",
    ]
    for fmt in formats:
        try:
            return datetime.strptime(str(date_str).strip(), fmt).date()
        except ValueError:
            pass
    return None


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=int(days))


def days_between(start: date, end: date) -> int:
    return (end - start).days


def to_day_offset(day: date, origin: date) -> int:
    return (day - origin).days


def from_day_offset(offset: Union[int, float], origin: date) -> date:
    return origin + timedelta(days=int(offset))
