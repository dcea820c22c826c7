"""Timestamp normalisation shared by the dimension and fact loaders."""

from datetime import date, datetime, time, timezone
from typing import Optional, Union


def to_naive_utc(value: Optional[Union[datetime, date, str]]) -> Optional[datetime]:
    """
    Warehouse timestamps are stored as naive UTC.

    Aware datetimes are converted, naive ones are taken as UTC already, bare
    dates become midnight and ISO strings are parsed.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def time_key_for(value: Union[datetime, date]) -> int:
    """Integer YYYYMMDD calendar key of a date or timestamp"""
    return value.year * 10000 + value.month * 100 + value.day
