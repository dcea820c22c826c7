"""
Test Suite Configuration
"""
from datetime import date, datetime

import polars as pl
import pytest

from src.config import Settings
from src.database.connection import create_engine, create_schema, create_session_factory
from src.dimensions import DimensionResolver, KeyedLockRegistry
from src.ingestion.fact_loader import FactLoader
from src.ingestion.seed_db import seed_time_dimension

T0 = datetime(2024, 1, 1)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite warehouse, so concurrent sessions see each other's commits"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'warehouse.db'}", echo=False)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def locks() -> KeyedLockRegistry:
    return KeyedLockRegistry(default_timeout=2.0)


@pytest.fixture
def resolver(session_factory, locks) -> DimensionResolver:
    return DimensionResolver(session_factory, locks)


@pytest.fixture
def writer(resolver):
    return resolver.writer


@pytest.fixture
async def calendar(session_factory) -> int:
    """dim_time seeded for 2024"""
    return await seed_time_dimension(date(2024, 1, 1), date(2024, 12, 31), session_factory)


@pytest.fixture
def fact_loader(session_factory, resolver, calendar) -> FactLoader:
    return FactLoader(session_factory, resolver, quarantine_enabled=True)


@pytest.fixture
async def known_dimensions(writer) -> dict:
    """One station, customer and vehicle, each with a version from T0"""
    return {
        "station": await writer.create_initial_version(
            "station", "STN_DE001",
            {"station_name": "Berlin Central Station", "max_power_kw": 150, "city": "Berlin",
             "country": "Germany", "station_status": "Active"},
            T0,
        ),
        "customer": await writer.create_initial_version(
            "customer", "CUST_001",
            {"customer_type": "Premium", "subscription_plan": "Unlimited Monthly",
             "home_country": "Germany", "is_business_customer": False},
            T0,
        ),
        "vehicle": await writer.create_initial_version(
            "vehicle", "VEH_001",
            {"make": "Tesla", "model": "Model 3", "model_year": 2024,
             "battery_capacity_kwh": 75, "max_charging_power_kw": 250},
            T0,
        ),
    }


@pytest.fixture
def session_event() -> dict:
    """A valid key-only completed session"""
    return {
        "session_id": "SESS-0001",
        "station_id": "STN_DE001",
        "customer_id": "CUST_001",
        "vehicle_id": "VEH_001",
        "session_start_datetime": "2024-09-15T08:30:00",
        "session_end_datetime": "2024-09-15T09:15:00",
        "energy_delivered_kwh": 45.2,
        "peak_power_kw": 135.0,
        "total_cost": 22.60,
        "session_status": "completed",
    }


@pytest.fixture
def sample_sessions_df() -> pl.DataFrame:
    """Flat session batch with one dotted snapshot column"""
    return pl.DataFrame({
        "session_id": ["S-1", "S-2", "S-3", "S-4"],
        "station_id": ["STN_DE001", "STN_DE001", "STN_DE001", "STN_DE001"],
        "customer_id": ["CUST_001", "CUST_001", "CUST_001", "CUST_001"],
        "vehicle_id": ["VEH_001", "VEH_001", "VEH_001", "VEH_001"],
        "session_start_datetime": [
            datetime(2024, 3, 1, 8, 0),
            datetime(2024, 3, 2, 9, 0),
            datetime(2024, 3, 3, 10, 0),
            datetime(2024, 3, 4, 11, 0),
        ],
        "session_end_datetime": [
            datetime(2024, 3, 1, 8, 40),
            datetime(2024, 3, 2, 9, 30),
            datetime(2024, 3, 3, 9, 0),
            datetime(2024, 3, 4, 11, 50),
        ],
        "energy_delivered_kwh": [30.5, 22.0, 10.0, 41.3],
        "total_cost": [15.25, 11.0, 5.0, 20.65],
        "session_status": ["completed", "completed", "completed", "completed"],
        "station.station_status": ["Active", None, None, None],
    })
