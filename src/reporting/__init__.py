"""
Reporting Module
"""
from .queries import daily_charging_summary, fetch_frame, station_performance

__all__ = [
    "daily_charging_summary",
    "fetch_frame",
    "station_performance",
]
