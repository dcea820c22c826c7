"""
Data Ingestion Module
"""
from .batch_loader import BatchFileConfig, BatchLoader, BatchLoadResult, FileFormat, row_to_event
from .dimension_loader import DimensionLoader
from .events import DimensionChangeEvent, SessionEvent
from .fact_loader import FactLoader, LoadOutcome, SessionLoadResult

__all__ = [
    "BatchFileConfig",
    "BatchLoader",
    "BatchLoadResult",
    "DimensionChangeEvent",
    "DimensionLoader",
    "FactLoader",
    "FileFormat",
    "LoadOutcome",
    "SessionEvent",
    "SessionLoadResult",
    "row_to_event",
]
