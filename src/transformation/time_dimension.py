"""
Time Dimension Generator

Pure calendar generation for dim_time: one row per day, inclusive, ascending.
Attributes are derived from the date alone, so the same range always yields
the same rows. The holiday flag starts false and is back-filled separately.
"""

from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Dict, List

import polars as pl

from src.dimensions.timestamps import time_key_for

SEASONS: Dict[int, str] = {
    12: "Winter", 1: "Winter", 2: "Winter",
    3: "Spring", 4: "Spring", 5: "Spring",
    6: "Summer", 7: "Summer", 8: "Summer",
    9: "Fall", 10: "Fall", 11: "Fall",
}

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


@dataclass(frozen=True)
class TimeDimensionRow:
    """One dim_time row"""
    time_key: int
    full_date: date
    day_of_week: str
    day_of_month: int
    month_number: int
    month_name: str
    quarter: int
    year: int
    is_weekend: bool
    is_holiday: bool
    season: str

    def to_dict(self) -> dict:
        return asdict(self)


def calendar_row(day: date) -> TimeDimensionRow:
    """Calendar attributes of a single date"""
    return TimeDimensionRow(
        time_key=time_key_for(day),
        full_date=day,
        day_of_week=DAY_NAMES[day.weekday()],
        day_of_month=day.day,
        month_number=day.month,
        month_name=MONTH_NAMES[day.month - 1],
        quarter=(day.month - 1) // 3 + 1,
        year=day.year,
        is_weekend=day.weekday() >= 5,
        is_holiday=False,
        season=SEASONS[day.month],
    )


def generate(start_date: date, end_date: date) -> List[TimeDimensionRow]:
    """
    Generate calendar rows for start_date..end_date inclusive.

    Raises:
        ValueError: start_date is after end_date
    """
    if start_date > end_date:
        raise ValueError(f"start_date {start_date} is after end_date {end_date}")

    days = (end_date - start_date).days
    return [calendar_row(start_date + timedelta(days=offset)) for offset in range(days + 1)]


def to_frame(rows: List[TimeDimensionRow]) -> pl.DataFrame:
    """Calendar rows as a DataFrame, e.g. for bulk export"""
    schema = {
        "time_key": pl.Int64,
        "full_date": pl.Date,
        "day_of_week": pl.Utf8,
        "day_of_month": pl.Int64,
        "month_number": pl.Int64,
        "month_name": pl.Utf8,
        "quarter": pl.Int64,
        "year": pl.Int64,
        "is_weekend": pl.Boolean,
        "is_holiday": pl.Boolean,
        "season": pl.Utf8,
    }
    return pl.DataFrame([row.to_dict() for row in rows], schema=schema)
