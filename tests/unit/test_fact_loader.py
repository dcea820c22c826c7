"""
Unit Tests - Fact Loader
"""
import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from src.database.models import FactChargingSession, QuarantinedSession
from src.dimensions import (
    ContentionTimeout,
    DataQualityError,
    MissingTimeDimensionError,
    NoVersionAtTimeError,
    ValidationError,
)
from src.ingestion.fact_loader import FactLoader, LoadOutcome


async def count_facts(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(FactChargingSession))


async def quarantine_rows(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(QuarantinedSession).order_by(QuarantinedSession.quarantine_id))
        return list(result.scalars())


class TestLoadSession:
    """Tests for FactLoader.load_session"""

    async def test_loads_one_fact(self, fact_loader, known_dimensions, session_event, session_factory):
        key = await fact_loader.load_session(session_event)

        async with session_factory() as session:
            fact = await session.get(FactChargingSession, key)

        assert fact.session_id == "SESS-0001"
        assert fact.station_key == known_dimensions["station"]
        assert fact.customer_key == known_dimensions["customer"]
        assert fact.vehicle_key == known_dimensions["vehicle"]
        assert fact.time_key == 20240915
        assert fact.energy_delivered_kwh == Decimal("45.200")
        assert fact.session_status == "completed"

    async def test_duration_derived_from_timestamps(self, fact_loader, known_dimensions, session_event, session_factory):
        session_event["session_end_datetime"] = "2024-09-15T09:15:59"
        key = await fact_loader.load_session(session_event)

        async with session_factory() as session:
            fact = await session.get(FactChargingSession, key)
        assert fact.charging_duration_minutes == 45

    async def test_explicit_duration_kept(self, fact_loader, known_dimensions, session_event, session_factory):
        session_event["charging_duration_minutes"] = 40
        key = await fact_loader.load_session(session_event)

        async with session_factory() as session:
            fact = await session.get(FactChargingSession, key)
        assert fact.charging_duration_minutes == 40

    async def test_duplicate_returns_existing_key(self, fact_loader, known_dimensions, session_event, session_factory):
        first = await fact_loader.load_session(session_event)
        second = await fact_loader.load_session(session_event)

        assert first == second
        assert await count_facts(session_factory) == 1

    async def test_concurrent_duplicates(self, fact_loader, known_dimensions, session_event, session_factory):
        keys = await asyncio.gather(*(fact_loader.load_session(dict(session_event)) for _ in range(4)))

        assert len(set(keys)) == 1
        assert await count_facts(session_factory) == 1

    async def test_session_resolves_to_version_at_start(self, fact_loader, writer, known_dimensions, session_event, session_factory):
        upgraded = await writer.apply_change("station", "STN_DE001", {"max_power_kw": 300}, datetime(2024, 10, 1))

        key = await fact_loader.load_session(session_event)

        async with session_factory() as session:
            fact = await session.get(FactChargingSession, key)
        assert fact.station_key == known_dimensions["station"]
        assert fact.station_key != upgraded

    async def test_snapshot_change_versions_dimension(self, fact_loader, resolver, known_dimensions, session_event):
        session_event["station"] = {"max_power_kw": 300}

        await fact_loader.load_session(session_event)

        history = await resolver.history("station", "STN_DE001")
        assert len(history) == 2
        assert history[1].effective_date == datetime(2024, 9, 15, 8, 30)

    async def test_timezone_aware_start(self, fact_loader, known_dimensions, session_event, session_factory):
        # 00:30 in Berlin on the 16th is still the 15th in UTC
        session_event["session_start_datetime"] = "2024-09-16T00:30:00+02:00"
        session_event["session_end_datetime"] = "2024-09-16T01:00:00+02:00"

        key = await fact_loader.load_session(session_event)

        async with session_factory() as session:
            fact = await session.get(FactChargingSession, key)
        assert fact.time_key == 20240915
        assert fact.session_start_datetime == datetime(2024, 9, 15, 22, 30)


class TestRejections:
    """Tests for rejected and quarantined sessions"""

    async def test_missing_natural_key(self, fact_loader, known_dimensions, session_event, session_factory):
        del session_event["vehicle_id"]

        with pytest.raises(ValidationError) as exc:
            await fact_loader.load_session(session_event)

        assert exc.value.field == "vehicle_id"
        assert exc.value.quarantine_id is not None
        assert await count_facts(session_factory) == 0

    async def test_end_before_start(self, fact_loader, known_dimensions, session_event, session_factory):
        session_event["session_end_datetime"] = "2024-09-15T08:00:00"

        with pytest.raises(DataQualityError) as exc:
            await fact_loader.load_session(session_event)

        assert exc.value.field == "session_end_datetime"
        [row] = await quarantine_rows(session_factory)
        assert row.error_type == "data_quality_error"
        assert row.session_id == "SESS-0001"
        assert row.payload["station_id"] == "STN_DE001"

    @pytest.mark.parametrize("field", ["energy_delivered_kwh", "peak_power_kw", "total_cost"])
    async def test_negative_measure(self, fact_loader, known_dimensions, session_event, session_factory, field):
        session_event[field] = -1

        with pytest.raises(DataQualityError) as exc:
            await fact_loader.load_session(session_event)
        assert exc.value.field == field
        assert await count_facts(session_factory) == 0

    async def test_negative_cost_allowed_when_not_completed(self, fact_loader, known_dimensions, session_event):
        session_event["session_status"] = "cancelled"
        session_event["total_cost"] = -2.5

        assert await fact_loader.load_session(session_event) > 0

    async def test_missing_time_dimension(self, fact_loader, known_dimensions, session_event, session_factory):
        session_event["session_start_datetime"] = "2026-01-01T08:00:00"
        session_event["session_end_datetime"] = "2026-01-01T09:00:00"

        with pytest.raises(MissingTimeDimensionError) as exc:
            await fact_loader.load_session(session_event)

        assert exc.value.time_key == 20260101
        assert await count_facts(session_factory) == 0

    async def test_unknown_dimension_key(self, fact_loader, known_dimensions, session_event, session_factory):
        session_event["vehicle_id"] = "VEH_404"

        with pytest.raises(NoVersionAtTimeError) as exc:
            await fact_loader.load_session(session_event)

        assert exc.value.session_id == "SESS-0001"
        assert await count_facts(session_factory) == 0

    async def test_failure_rolls_back_dimension_writes(self, fact_loader, resolver, known_dimensions, session_event, session_factory):
        session_event["station"] = {"max_power_kw": 300}
        session_event["vehicle_id"] = "VEH_404"

        with pytest.raises(NoVersionAtTimeError):
            await fact_loader.load_session(session_event)

        assert len(await resolver.history("station", "STN_DE001")) == 1

    async def test_quarantine_disabled(self, session_factory, resolver, calendar, known_dimensions, session_event):
        loader = FactLoader(session_factory, resolver, quarantine_enabled=False)
        session_event["energy_delivered_kwh"] = -5

        with pytest.raises(DataQualityError):
            await loader.load_session(session_event)

        assert await quarantine_rows(session_factory) == []
        assert await count_facts(session_factory) == 0

    async def test_contention_is_not_quarantined(self, fact_loader, locks, known_dimensions, session_event, session_factory):
        session_event["station"] = {"max_power_kw": 300}

        async with locks.hold(("station", "STN_DE001")):
            with pytest.raises(ContentionTimeout):
                await fact_loader.load_session(session_event, timeout=0.05)

        assert await quarantine_rows(session_factory) == []
        assert await count_facts(session_factory) == 0


class TestCancellation:
    """A cancelled load leaves the session either fully loaded or not at all"""

    async def test_cancelled_while_waiting_for_lock(self, fact_loader, locks, resolver, known_dimensions,
                                                    session_event, session_factory):
        session_event["station"] = {"max_power_kw": 300}

        async with locks.hold(("station", "STN_DE001")):
            task = asyncio.create_task(fact_loader.load_session(session_event))
            await asyncio.sleep(0.1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        history = await resolver.history("station", "STN_DE001")
        assert len(history) == 1
        assert [v.is_current for v in history] == [True]
        assert await count_facts(session_factory) == 0
        assert len(locks) == 0

    @pytest.mark.parametrize("yields", [1, 3, 6, 12])
    async def test_cancelled_mid_flight(self, fact_loader, locks, resolver, known_dimensions,
                                        session_event, session_factory, yields):
        session_event["station"] = {"max_power_kw": 300}

        task = asyncio.create_task(fact_loader.load_session(session_event))
        for _ in range(yields):
            await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        history = await resolver.history("station", "STN_DE001")
        facts = await count_facts(session_factory)
        assert sum(v.is_current for v in history) == 1
        assert (facts, len(history)) in [(0, 1), (1, 2)]
        assert len(locks) == 0


class TestTryLoadAndReplay:
    """Tests for try_load_session and quarantine replay"""

    async def test_outcomes(self, fact_loader, known_dimensions, session_event):
        loaded = await fact_loader.try_load_session(session_event)
        duplicate = await fact_loader.try_load_session(session_event)
        bad = await fact_loader.try_load_session({**session_event, "session_id": "SESS-BAD", "energy_delivered_kwh": -1})

        assert loaded.status == LoadOutcome.LOADED
        assert duplicate.status == LoadOutcome.DUPLICATE
        assert duplicate.fact_key == loaded.fact_key
        assert bad.status == LoadOutcome.QUARANTINED
        assert bad.error_type == "data_quality_error"
        assert bad.quarantine_id is not None

    async def test_replay_after_dimension_arrives(self, fact_loader, writer, known_dimensions, session_event, session_factory):
        session_event["vehicle_id"] = "VEH_002"
        result = await fact_loader.try_load_session(session_event)
        assert result.status == LoadOutcome.QUARANTINED

        await writer.create_initial_version("vehicle", "VEH_002", {"make": "BMW"}, datetime(2024, 1, 1))
        replayed = await fact_loader.replay_quarantined()

        assert [r.status for r in replayed] == [LoadOutcome.LOADED]
        [row] = await quarantine_rows(session_factory)
        assert row.replayed is True
        assert await count_facts(session_factory) == 1

        # Replayed rows are not attempted again
        assert await fact_loader.replay_quarantined() == []


class TestCorrections:
    """Tests for correcting a loaded session"""

    async def test_correction_references_original(self, fact_loader, known_dimensions, session_event, session_factory):
        original = await fact_loader.load_session(session_event)
        correction = await fact_loader.load_session({
            **session_event,
            "session_id": "SESS-0001-C1",
            "energy_delivered_kwh": 47.0,
            "corrects_session_id": "SESS-0001",
        })

        async with session_factory() as session:
            fact = await session.get(FactChargingSession, correction)
        assert fact.corrects_session_key == original

    async def test_correction_of_unknown_session(self, fact_loader, known_dimensions, session_event):
        session_event["corrects_session_id"] = "SESS-404"

        with pytest.raises(ValidationError) as exc:
            await fact_loader.load_session(session_event)
        assert exc.value.field == "corrects_session_id"
