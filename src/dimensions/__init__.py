"""
Dimension Maintenance Module
"""
from .exceptions import (
    ContentionTimeout,
    DataQualityError,
    LoadError,
    MissingTimeDimensionError,
    NoVersionAtTimeError,
    ValidationError,
    VersionConflictError,
)
from .locks import KeyedLockRegistry
from .policies import AttributePolicy, DimensionPolicy, PolicyRegistry
from .resolver import DimensionResolver, DimensionVersion
from .unit_of_work import UnitOfWork, open_unit_of_work
from .writer import SCD2Writer

__all__ = [
    "AttributePolicy",
    "ContentionTimeout",
    "DataQualityError",
    "DimensionPolicy",
    "DimensionResolver",
    "DimensionVersion",
    "KeyedLockRegistry",
    "LoadError",
    "MissingTimeDimensionError",
    "NoVersionAtTimeError",
    "PolicyRegistry",
    "SCD2Writer",
    "UnitOfWork",
    "ValidationError",
    "VersionConflictError",
    "open_unit_of_work",
]
