"""
Data Transformation Module
"""
from .time_dimension import TimeDimensionRow, calendar_row, generate, to_frame

__all__ = [
    "TimeDimensionRow",
    "calendar_row",
    "generate",
    "to_frame",
]
