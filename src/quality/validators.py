"""
Batch Validation

Frame-level data quality profiling of incoming charging batches, run before
rows are handed to the fact loader. Results are reported, never used to drop
rows: each row still goes through the loader's own checks and is quarantined
individually when it fails.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

from src.database.models import SessionStatus

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Result of one validation run"""
    status: ValidationStatus
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def total_checks(self) -> int:
        return len(self.checks)

    @property
    def passed_checks(self) -> int:
        return sum(1 for c in self.checks if c.passed)

    @property
    def failed_checks(self) -> int:
        return sum(1 for c in self.checks if not c.passed and c.severity == ValidationSeverity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for c in self.checks if not c.passed and c.severity == ValidationSeverity.WARNING)

    @property
    def success_rate(self) -> float:
        if not self.checks:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    def failures(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "total_checks": self.total_checks,
            "passed_checks": self.passed_checks,
            "failed_checks": self.failed_checks,
            "warning_count": self.warning_count,
            "failures": [
                {"name": c.name, "severity": c.severity.value, "message": c.message, "failed_rows": c.failed_rows}
                for c in self.failures()
            ],
        }


CheckFunc = Callable[[pl.DataFrame], ValidationCheck]


def _missing(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=False,
        severity=severity,
        message=f"Column '{column}' not found",
    )


def _skipped(name: str, absent: List[str]) -> ValidationCheck:
    # Optional columns: nothing to check when the batch does not carry them
    return ValidationCheck(
        name=name,
        passed=True,
        severity=ValidationSeverity.INFO,
        message=f"Skipped, missing columns {absent}",
    )


class DataValidator:
    """
    Chainable rule set evaluated against a polars DataFrame.

    Example:
        validator = DataValidator()
        validator.add_not_null_check("session_id")
        validator.add_range_check("energy_delivered_kwh", min_value=0)
        result = validator.validate(df)
    """

    def __init__(self, strict_mode: bool = False):
        # Strict mode turns warnings into a failed status
        self.strict_mode = strict_mode
        self._checks: List[CheckFunc] = []

    def reset(self) -> None:
        self._checks = []

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Column must have no nulls"""
        name = f"not_null_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return _missing(name, column, severity)
            nulls = df[column].null_count()
            return ValidationCheck(
                name=name,
                passed=nulls == 0,
                severity=severity,
                message=f"Column '{column}' has {nulls} null values",
                details={"null_count": nulls},
                failed_rows=nulls,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Column values must not repeat within the frame"""
        name = f"unique_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return _missing(name, column, severity)
            values = df[column].drop_nulls()
            duplicates = len(values) - values.n_unique()
            return ValidationCheck(
                name=name,
                passed=duplicates == 0,
                severity=severity,
                message=f"Column '{column}' has {duplicates} duplicate values",
                details={"duplicate_count": duplicates},
                failed_rows=duplicates,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Non-null values must fall in [min_value, max_value]"""
        name = f"range_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return _skipped(name, [column])
            outside = pl.lit(False)
            if min_value is not None:
                outside = outside | (pl.col(column) < min_value)
            if max_value is not None:
                outside = outside | (pl.col(column) > max_value)
            count = df.filter(outside.fill_null(False)).height
            return ValidationCheck(
                name=name,
                passed=count == 0,
                severity=severity,
                message=f"Column '{column}' has {count} values outside [{min_value}, {max_value}]",
                details={"min": min_value, "max": max_value, "out_of_range_count": count},
                failed_rows=count,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Non-null values must come from allowed_values"""
        name = f"enum_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return _skipped(name, [column])
            invalid = df.filter(
                pl.col(column).is_not_null() & ~pl.col(column).is_in(allowed_values)
            ).height
            return ValidationCheck(
                name=name,
                passed=invalid == 0,
                severity=severity,
                message=f"Column '{column}' has {invalid} invalid values",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_row_check(
        self,
        name: str,
        violation: pl.Expr,
        columns: List[str],
        message: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Rows matching violation fail; skipped when a needed column is absent"""

        def check(df: pl.DataFrame) -> ValidationCheck:
            absent = [c for c in columns if c not in df.columns]
            if absent:
                return _skipped(name, absent)
            count = df.filter(violation.fill_null(False)).height
            return ValidationCheck(
                name=name,
                passed=count == 0,
                severity=severity,
                message=f"{count} rows: {message}",
                failed_rows=count,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """Run every check against df"""
        started_at = datetime.utcnow()
        checks = [check(df) for check in self._checks]

        for result in checks:
            if not result.passed:
                logger.warning(
                    f"Validation failed: {result.name}",
                    message=result.message,
                    severity=result.severity.value,
                )

        failed = any(not c.passed and c.severity == ValidationSeverity.ERROR for c in checks)
        warned = any(not c.passed and c.severity == ValidationSeverity.WARNING for c in checks)
        if failed or (warned and self.strict_mode):
            status = ValidationStatus.FAILED
        elif warned:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        result = ValidationResult(
            status=status,
            checks=checks,
            started_at=started_at,
            completed_at=datetime.utcnow(),
        )
        logger.info(
            f"Validation complete: {status.value}",
            rows=len(df),
            passed=result.passed_checks,
            failed=result.failed_checks,
            warnings=result.warning_count,
        )
        return result


def create_sessions_validator() -> DataValidator:
    """Validator for a batch of charging session events"""
    return (
        DataValidator()
        .add_not_null_check("session_id")
        .add_not_null_check("station_id")
        .add_not_null_check("customer_id")
        .add_not_null_check("vehicle_id")
        .add_not_null_check("session_start_datetime")
        .add_unique_check("session_id", severity=ValidationSeverity.WARNING)
        .add_enum_check("session_status", [s.value for s in SessionStatus])
        .add_range_check("energy_delivered_kwh", min_value=0)
        .add_range_check("charging_duration_minutes", min_value=0)
        .add_range_check("peak_power_kw", min_value=0)
        .add_row_check(
            "completed_cost_non_negative",
            (pl.col("session_status") == SessionStatus.COMPLETED.value) & (pl.col("total_cost") < 0),
            ["session_status", "total_cost"],
            "completed sessions with negative total_cost",
        )
        .add_row_check(
            "end_after_start",
            pl.col("session_end_datetime") < pl.col("session_start_datetime"),
            ["session_start_datetime", "session_end_datetime"],
            "session ends before it starts",
        )
    )


def create_stations_validator() -> DataValidator:
    """Validator for a station dimension change frame"""
    return (
        DataValidator()
        .add_not_null_check("station_id")
        .add_range_check("max_power_kw", min_value=0)
        .add_range_check("latitude", min_value=-90, max_value=90)
        .add_range_check("longitude", min_value=-180, max_value=180)
    )
