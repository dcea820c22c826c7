"""
Unit Tests - Data Quality
"""
from datetime import datetime

import polars as pl
import pytest

from src.quality.validators import (
    DataValidator,
    ValidationSeverity,
    ValidationStatus,
    create_sessions_validator,
    create_stations_validator,
)


class TestDataValidator:
    """Tests for DataValidator"""

    def test_not_null_check_passes(self):
        """Test not null check with valid data"""
        df = pl.DataFrame({"id": [1, 2, 3], "name": ["a", "b", "c"]})

        validator = DataValidator()
        validator.add_not_null_check("id")

        result = validator.validate(df)

        assert result.status == ValidationStatus.PASSED
        assert result.passed_checks == 1

    def test_not_null_check_fails(self):
        """Test not null check with null values"""
        df = pl.DataFrame({"id": [1, None, 3]})

        result = DataValidator().add_not_null_check("id").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.failed_checks == 1
        assert result.failures()[0].failed_rows == 1

    def test_not_null_missing_column_fails(self):
        df = pl.DataFrame({"other": [1]})

        result = DataValidator().add_not_null_check("id").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert "not found" in result.failures()[0].message

    def test_unique_check_ignores_nulls(self):
        df = pl.DataFrame({"id": [1, 2, None, None]})

        result = DataValidator().add_unique_check("id").validate(df)

        assert result.status == ValidationStatus.PASSED

    def test_unique_check_fails(self):
        """Test unique check with duplicates"""
        df = pl.DataFrame({"id": [1, 2, 2, 3]})

        result = DataValidator().add_unique_check("id").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].details["duplicate_count"] == 1

    def test_range_check(self):
        """Test range check"""
        df = pl.DataFrame({"value": [10, 50, 150, None]})

        result = DataValidator().add_range_check("value", min_value=0, max_value=100).validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 1

    def test_range_check_skips_absent_optional_column(self):
        df = pl.DataFrame({"id": [1]})

        result = DataValidator().add_range_check("peak_power_kw", min_value=0).validate(df)

        assert result.status == ValidationStatus.PASSED
        assert result.checks[0].severity == ValidationSeverity.INFO

    def test_enum_check(self):
        """Test enum check"""
        df = pl.DataFrame({"status": ["completed", "failed", "paused"]})

        result = DataValidator().add_enum_check("status", ["completed", "failed"]).validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 1

    def test_warning_gives_partial(self):
        df = pl.DataFrame({"id": [1, 1]})

        result = DataValidator().add_unique_check("id", severity=ValidationSeverity.WARNING).validate(df)

        assert result.status == ValidationStatus.PARTIAL
        assert result.warning_count == 1
        assert result.failed_checks == 0

    def test_strict_mode_fails_on_warning(self):
        df = pl.DataFrame({"id": [1, 1]})

        validator = DataValidator(strict_mode=True)
        result = validator.add_unique_check("id", severity=ValidationSeverity.WARNING).validate(df)

        assert result.status == ValidationStatus.FAILED

    def test_reset(self):
        validator = DataValidator().add_not_null_check("id")
        validator.reset()

        result = validator.validate(pl.DataFrame({"id": [None]}))

        assert result.total_checks == 0
        assert result.success_rate == 100.0


class TestSessionsValidator:
    """Tests for the charging session batch validator"""

    @pytest.fixture
    def sessions(self) -> pl.DataFrame:
        return pl.DataFrame({
            "session_id": ["S-1", "S-2", "S-3"],
            "station_id": ["STN_DE001", "STN_DE001", "STN_FR001"],
            "customer_id": ["CUST_001", "CUST_002", "CUST_001"],
            "vehicle_id": ["VEH_001", "VEH_002", "VEH_001"],
            "session_start_datetime": [datetime(2024, 9, 15, 8), datetime(2024, 9, 15, 9), datetime(2024, 9, 15, 10)],
            "session_end_datetime": [datetime(2024, 9, 15, 9), datetime(2024, 9, 15, 10), datetime(2024, 9, 15, 11)],
            "energy_delivered_kwh": [30.0, 20.0, 10.0],
            "total_cost": [15.0, 10.0, 0.0],
            "session_status": ["completed", "completed", "failed"],
        })

    def test_clean_batch_passes(self, sessions):
        result = create_sessions_validator().validate(sessions)

        assert result.status == ValidationStatus.PASSED

    def test_negative_cost_only_matters_when_completed(self, sessions):
        refunded = sessions.with_columns(pl.Series("total_cost", [15.0, 10.0, -3.0]))
        assert create_sessions_validator().validate(refunded).status == ValidationStatus.PASSED

        negative = sessions.with_columns(pl.Series("total_cost", [-15.0, 10.0, 0.0]))
        result = create_sessions_validator().validate(negative)

        assert result.status == ValidationStatus.FAILED
        assert [c.name for c in result.failures()] == ["completed_cost_non_negative"]

    def test_end_before_start(self, sessions):
        swapped = sessions.with_columns(
            pl.Series("session_end_datetime", [datetime(2024, 9, 15, 7), datetime(2024, 9, 15, 10), None])
        )

        result = create_sessions_validator().validate(swapped)

        [failure] = result.failures()
        assert failure.name == "end_after_start"
        assert failure.failed_rows == 1

    def test_duplicate_session_ids_warn(self, sessions):
        duplicated = sessions.with_columns(pl.Series("session_id", ["S-1", "S-1", "S-3"]))

        result = create_sessions_validator().validate(duplicated)

        assert result.status == ValidationStatus.PARTIAL

    def test_to_dict(self, sessions):
        summary = create_sessions_validator().validate(sessions.with_columns(pl.lit(None).alias("vehicle_id"))).to_dict()

        assert summary["status"] == "failed"
        assert summary["failures"][0]["name"] == "not_null_vehicle_id"
        assert summary["failures"][0]["failed_rows"] == 3


class TestStationsValidator:
    """Tests for the station change validator"""

    def test_coordinates_in_range(self):
        df = pl.DataFrame({
            "station_id": ["STN_DE001", "STN_US001"],
            "max_power_kw": [150.0, 350.0],
            "latitude": [52.52, 95.0],
            "longitude": [13.40, -122.42],
        })

        result = create_stations_validator().validate(df)

        assert [c.name for c in result.failures()] == ["range_latitude"]
