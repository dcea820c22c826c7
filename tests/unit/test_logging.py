"""
Unit Tests - Load Context Logging
"""
import pytest
import structlog
from structlog.testing import LogCapture

from src.config.logging import load_context
from src.ingestion.batch_loader import BatchLoader
from src.ingestion.dimension_loader import DimensionLoader


@pytest.fixture
def log_entries():
    capture = LogCapture()
    structlog.configure(processors=[structlog.contextvars.merge_contextvars, capture])
    yield capture.entries
    structlog.reset_defaults()


def events_named(entries, name):
    return [e for e in entries if e["event"] == name]


class TestLoadContext:
    """Tests for load_context"""

    def test_binds_and_restores(self, log_entries):
        logger = structlog.get_logger()

        with load_context(batch_source="march"):
            with load_context(session_id="S-1", ignored=None):
                logger.info("inner")
            logger.info("outer")
        logger.info("after")

        inner, outer, after = log_entries
        assert inner["batch_source"] == "march"
        assert inner["session_id"] == "S-1"
        assert "ignored" not in inner
        assert "session_id" not in outer
        assert "batch_source" not in after
        assert structlog.contextvars.get_contextvars() == {}

    def test_restored_after_error(self, log_entries):
        with pytest.raises(RuntimeError):
            with load_context(session_id="S-1"):
                raise RuntimeError("boom")

        assert structlog.contextvars.get_contextvars() == {}


class TestLoaderContext:
    """Loader log lines carry the event being loaded"""

    async def test_session_id_on_writer_lines(self, log_entries, fact_loader, known_dimensions, session_event):
        session_event["station"] = {"max_power_kw": 300}

        await fact_loader.load_session(session_event)

        [closed] = events_named(log_entries, "Dimension version closed")
        assert closed["session_id"] == "SESS-0001"
        [loaded] = events_named(log_entries, "Charging session loaded")
        assert loaded["session_id"] == "SESS-0001"
        assert structlog.contextvars.get_contextvars() == {}

    async def test_batch_source_on_every_session(self, log_entries, fact_loader, known_dimensions,
                                                 sample_sessions_df, tmp_path):
        loader = BatchLoader(
            fact_loader=fact_loader,
            max_workers=3,
            max_retries=1,
            retry_backoff_seconds=0.01,
            dead_letter_path=tmp_path / "dead_letter",
        )

        await loader.load_frame(sample_sessions_df, source="march")

        loaded = events_named(log_entries, "Charging session loaded")
        assert sorted(e["session_id"] for e in loaded) == ["S-1", "S-2", "S-4"]
        assert {e["batch_source"] for e in loaded} == {"march"}

    async def test_dimension_change_context(self, log_entries, session_factory, resolver, known_dimensions):
        loader = DimensionLoader(session_factory, resolver)

        await loader.load_change({
            "dimension_type": "station",
            "natural_key": "STN_DE001",
            "attributes": {"max_power_kw": 350},
            "effective_time": "2024-06-01T00:00:00",
        })

        [closed] = events_named(log_entries, "Dimension version closed")
        assert closed["change_dimension"] == "station"
        assert closed["change_key"] == "STN_DE001"
