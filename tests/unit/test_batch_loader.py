"""
Unit Tests - Batch and Dimension Loading
"""
from datetime import datetime
from decimal import Decimal

import polars as pl
import pytest

from src.dimensions import ContentionTimeout
from src.ingestion.batch_loader import (
    BatchFileConfig,
    BatchLoader,
    FileFormat,
    LoadStatus,
    row_to_event,
)
from src.ingestion.dimension_loader import DimensionLoader
from src.ingestion.fact_loader import LoadOutcome, SessionLoadResult


@pytest.fixture
def batch_loader(fact_loader, tmp_path) -> BatchLoader:
    return BatchLoader(
        fact_loader=fact_loader,
        max_workers=3,
        max_retries=2,
        retry_backoff_seconds=0.01,
        dead_letter_path=tmp_path / "dead_letter",
    )


class TestRowToEvent:
    """Tests for flat row mapping"""

    def test_dotted_columns_nest(self):
        event = row_to_event({
            "session_id": "S-1",
            "station.max_power_kw": 150.0,
            "station.city": None,
            "vehicle.make": None,
        })

        assert event == {"session_id": "S-1", "station": {"max_power_kw": 150.0}}

    def test_struct_values_nest(self):
        event = row_to_event({"session_id": "S-1", "customer": {"customer_type": "Premium", "home_country": None}})

        assert event["customer"] == {"customer_type": "Premium"}

    def test_nulls_are_dropped(self):
        assert row_to_event({"session_id": "S-1", "total_cost": None}) == {"session_id": "S-1"}


class TestBatchLoader:
    """Tests for BatchLoader"""

    async def test_load_frame_summary(self, batch_loader, known_dimensions, sample_sessions_df, tmp_path):
        result = await batch_loader.load_frame(sample_sessions_df, source="march")

        assert result.status == LoadStatus.PARTIAL
        assert result.rows_read == 4
        assert result.loaded == 3
        assert result.quarantined == 1
        assert result.validation["status"] == "failed"

        dead = pl.read_parquet(result.dead_letter_file)
        assert dead["session_id"].to_list() == ["S-3"]
        assert dead["_error_type"].to_list() == ["data_quality_error"]

    async def test_reload_counts_duplicates(self, batch_loader, known_dimensions, sample_sessions_df):
        await batch_loader.load_frame(sample_sessions_df)
        result = await batch_loader.load_frame(sample_sessions_df.filter(pl.col("session_id") != "S-3"))

        assert result.status == LoadStatus.COMPLETED
        assert result.duplicates == 3
        assert result.loaded == 0
        assert result.dead_letter_file is None

    async def test_load_csv_file(self, batch_loader, known_dimensions, sample_sessions_df, tmp_path):
        path = tmp_path / "sessions.csv"
        sample_sessions_df.write_csv(path)

        result = await batch_loader.load(BatchFileConfig(file_path=path, file_format=FileFormat.CSV))

        assert result.source == str(path)
        assert result.file_hash is not None
        assert result.loaded == 3
        assert result.quarantined == 1

    async def test_load_jsonl_file(self, batch_loader, known_dimensions, sample_sessions_df, tmp_path):
        path = tmp_path / "sessions.jsonl"
        sample_sessions_df.drop("station.station_status").write_ndjson(path)

        result = await batch_loader.load(BatchFileConfig(file_path=path, file_format=FileFormat.JSONL))

        assert result.loaded == 3

    async def test_missing_file(self, batch_loader, tmp_path):
        result = await batch_loader.load(
            BatchFileConfig(file_path=tmp_path / "nope.csv", file_format=FileFormat.CSV)
        )

        assert result.status == LoadStatus.FAILED
        assert "not found" in result.error_message

    async def test_load_directory(self, batch_loader, known_dimensions, sample_sessions_df, tmp_path):
        source = tmp_path / "incoming"
        source.mkdir()
        sample_sessions_df.head(2).write_csv(source / "sessions_1.csv")
        sample_sessions_df.tail(1).write_csv(source / "sessions_2.csv")

        results = await batch_loader.load_directory(source, FileFormat.CSV, pattern="sessions_*")

        assert [r.loaded for r in results] == [2, 1]


class FlakyLoader:
    """Fact loader stand-in that reports contention a fixed number of times"""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def try_load_session(self, event):
        self.calls += 1
        if self.calls <= self.failures:
            return SessionLoadResult.from_error(ContentionTimeout("busy", session_id=event["session_id"]))
        return SessionLoadResult(session_id=event["session_id"], status=LoadOutcome.LOADED, fact_key=1)


class TestRetries:
    """Tests for contention retries"""

    async def test_retries_until_loaded(self, tmp_path):
        flaky = FlakyLoader(failures=2)
        loader = BatchLoader(fact_loader=flaky, max_retries=3, retry_backoff_seconds=0.001, dead_letter_path=tmp_path)

        [result] = await loader.load_events([{"session_id": "S-1"}])

        assert result.status == LoadOutcome.LOADED
        assert flaky.calls == 3

    async def test_gives_up_after_max_retries(self, tmp_path):
        flaky = FlakyLoader(failures=10)
        loader = BatchLoader(fact_loader=flaky, max_retries=2, retry_backoff_seconds=0.001, dead_letter_path=tmp_path)

        [result] = await loader.load_events([{"session_id": "S-1"}])

        assert result.status == LoadOutcome.RETRYABLE
        assert result.retryable is True
        assert flaky.calls == 3


class TestDimensionLoader:
    """Tests for dimension change events"""

    async def test_load_change(self, session_factory, resolver):
        loader = DimensionLoader(session_factory, resolver)

        first = await loader.load_change({
            "dimension_type": "station",
            "natural_key": "STN_DE001",
            "attributes": {"max_power_kw": 150},
            "effective_time": "2024-01-01T00:00:00",
        })
        second = await loader.load_change({
            "dimension_type": "station",
            "natural_key": "STN_DE001",
            "attributes": {"max_power_kw": 300},
            "effective_time": "2024-06-01T00:00:00",
        })

        assert first != second
        assert await resolver.lookup("station", "STN_DE001", datetime(2024, 3, 1)) == first

    async def test_load_frame(self, session_factory, resolver):
        loader = DimensionLoader(session_factory, resolver)
        df = pl.DataFrame({
            "station_id": ["STN_DE001", "STN_DE001", "STN_FR001"],
            "max_power_kw": [300.0, 150.0, 175.0],
            "effective_time": [datetime(2024, 6, 1), datetime(2024, 1, 1), datetime(2024, 1, 1)],
        })

        summary = await loader.load_frame("station", df)

        assert summary == {"rows": 3, "loaded": 3, "errors": []}
        current = await resolver.version_at("station", "STN_DE001")
        assert current.attributes["max_power_kw"] == Decimal("300.00")

    async def test_load_frame_ignores_unknown_columns(self, session_factory, resolver):
        loader = DimensionLoader(session_factory, resolver)
        df = pl.DataFrame({"station_id": ["STN_DE001"], "colour": ["green"], "max_power_kw": [150.0]})

        summary = await loader.load_frame("station", df, effective_time=datetime(2024, 1, 1))

        assert summary["loaded"] == 1
        version = await resolver.version_at("station", "STN_DE001")
        assert "colour" not in version.attributes

    async def test_load_frame_reports_errors(self, session_factory, resolver):
        loader = DimensionLoader(session_factory, resolver)
        df = pl.DataFrame({
            "station_id": ["STN_DE001", "STN_DE001"],
            "max_power_kw": [150.0, 300.0],
            "effective_time": [datetime(2024, 6, 1), datetime(2024, 6, 1)],
        })

        summary = await loader.load_frame("station", df)

        # The second change lands on the first version's start instant
        assert summary["loaded"] == 1
        [error] = summary["errors"]
        assert error["natural_key"] == "STN_DE001"
        assert error["error_type"] == "validation_error"

    async def test_load_frame_needs_natural_key(self, session_factory, resolver):
        loader = DimensionLoader(session_factory, resolver)

        with pytest.raises(ValueError):
            await loader.load_frame("station", pl.DataFrame({"max_power_kw": [150.0]}), datetime(2024, 1, 1))
