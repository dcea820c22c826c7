"""
Data Generation Module
"""
from .generators import (
    CustomerGenerator,
    DataGenerator,
    SessionGenerator,
    StationChangeGenerator,
    StationGenerator,
    VehicleGenerator,
    flatten_event,
)

__all__ = [
    "CustomerGenerator",
    "DataGenerator",
    "SessionGenerator",
    "StationChangeGenerator",
    "StationGenerator",
    "VehicleGenerator",
    "flatten_event",
]
