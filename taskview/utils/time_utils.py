from datetime import date, datetime, time
from typing import Optional


def to_local_naive(dt: datetime) -> datetime:
    # Naive timestamps are already local wall-clock time.
    if dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)


def local_date(value: Optional[datetime]) -> Optional[date]:
    if value is None:
        return None
    return to_local_naive(value).date()


def local_midnight(today: Optional[date] = None) -> datetime:
    return datetime.combine(today or date.today(), time.min)


def is_before_today(value: Optional[datetime], today: Optional[date] = None) -> bool:
    """True when ``value`` falls before local midnight of ``today``."""
    if value is None:
        return False
    return to_local_naive(value) < local_midnight(today)
