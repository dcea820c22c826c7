"""
Load Engine Errors

Every rejected event surfaces as one of these. ``retryable`` tells the caller
whether a retry with backoff can succeed without fixing the input.
"""

from datetime import datetime
from typing import Optional


class LoadError(Exception):
    """Base class for dimension and fact load failures"""

    error_type = "load_error"
    retryable = False

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.session_id = session_id
        self.quarantine_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "error_type": self.error_type,
            "field": self.field,
            "session_id": self.session_id,
            "message": self.message,
            "retryable": self.retryable,
            "quarantine_id": self.quarantine_id,
        }


class ValidationError(LoadError):
    """Malformed or missing input; rejected, not retried"""

    error_type = "validation_error"


class MissingTimeDimensionError(LoadError):
    """Session date has no pre-generated calendar row"""

    error_type = "missing_time_dimension"

    def __init__(self, time_key: int, session_id: Optional[str] = None):
        super().__init__(
            f"No dim_time row for time_key {time_key}; extend the calendar first",
            field="session_start_datetime",
            session_id=session_id,
        )
        self.time_key = time_key


class DataQualityError(LoadError):
    """Numeric invariant violation; the row is quarantined"""

    error_type = "data_quality_error"


class NoVersionAtTimeError(LoadError):
    """No dimension version's validity interval covers the requested time"""

    error_type = "no_version_at_time"

    def __init__(
        self,
        dimension_type: str,
        natural_key: str,
        as_of_time: Optional[datetime],
        session_id: Optional[str] = None,
    ):
        when = as_of_time.isoformat() if as_of_time else "now"
        super().__init__(
            f"No {dimension_type} version for '{natural_key}' valid at {when}",
            field=f"{dimension_type}_id",
            session_id=session_id,
        )
        self.dimension_type = dimension_type
        self.natural_key = natural_key
        self.as_of_time = as_of_time


class VersionConflictError(LoadError):
    """An initial version was requested for a natural key that already has one"""

    error_type = "version_conflict"


class ContentionTimeout(LoadError):
    """Per-key lock could not be acquired in time; retry with backoff"""

    error_type = "contention_timeout"
    retryable = True


# Errors recorded in the quarantine table rather than only surfaced
QUARANTINED_ERRORS = (
    ValidationError,
    MissingTimeDimensionError,
    DataQualityError,
    NoVersionAtTimeError,
)
