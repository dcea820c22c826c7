"""
Warehouse Seeding

Fills dim_time for the configured calendar range and loads the reference
stations, customers, vehicles and sessions. Every step is idempotent and can
be re-run against a populated warehouse.

Usage:
    python -m src.ingestion.seed_db
"""

import asyncio
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import get_settings
from src.config.logging import configure_logging
from src.database.connection import close_database, get_db, init_database
from src.database.models import DimensionType, DimTime
from src.dimensions.resolver import DimensionResolver
from src.dimensions.timestamps import time_key_for
from src.transformation.time_dimension import generate
from .fact_loader import FactLoader

logger = structlog.get_logger(__name__)

SAMPLE_STATIONS: List[Dict[str, Any]] = [
    {"station_id": "STN_DE001", "station_name": "Berlin Central Station", "operator_name": "Elvah GmbH",
     "connector_type": "CCS2", "max_power_kw": 150.0, "city": "Berlin", "country": "Germany",
     "latitude": 52.5200, "longitude": 13.4050, "station_status": "Active"},
    {"station_id": "STN_DE002", "station_name": "Munich Airport Hub", "operator_name": "Elvah GmbH",
     "connector_type": "CCS2", "max_power_kw": 300.0, "city": "Munich", "country": "Germany",
     "latitude": 48.1351, "longitude": 11.5820, "station_status": "Active"},
    {"station_id": "STN_FR001", "station_name": "Paris Nord Terminal", "operator_name": "Elvah France",
     "connector_type": "CCS2", "max_power_kw": 175.0, "city": "Paris", "country": "France",
     "latitude": 48.8566, "longitude": 2.3522, "station_status": "Active"},
    {"station_id": "STN_NL001", "station_name": "Amsterdam Port", "operator_name": "Elvah Nederland",
     "connector_type": "CCS2", "max_power_kw": 250.0, "city": "Amsterdam", "country": "Netherlands",
     "latitude": 52.3676, "longitude": 4.9041, "station_status": "Active"},
    {"station_id": "STN_DE003", "station_name": "Hamburg Industrial", "operator_name": "Elvah GmbH",
     "connector_type": "CHAdeMO", "max_power_kw": 100.0, "city": "Hamburg", "country": "Germany",
     "latitude": 53.5511, "longitude": 9.9937, "station_status": "Maintenance"},
]

SAMPLE_CUSTOMERS: List[Dict[str, Any]] = [
    {"customer_id": "CUST_001", "customer_type": "Premium", "subscription_plan": "Unlimited Monthly",
     "registration_date": date(2024, 1, 15), "home_country": "Germany",
     "customer_segment": "Frequent User", "is_business_customer": False},
    {"customer_id": "CUST_002", "customer_type": "Standard", "subscription_plan": "Pay Per Use",
     "registration_date": date(2024, 2, 20), "home_country": "France",
     "customer_segment": "Occasional User", "is_business_customer": False},
    {"customer_id": "CUST_003", "customer_type": "Business", "subscription_plan": "Fleet Enterprise",
     "registration_date": date(2024, 1, 10), "home_country": "Germany",
     "customer_segment": "Corporate", "is_business_customer": True},
    {"customer_id": "CUST_004", "customer_type": "Premium", "subscription_plan": "Unlimited Annual",
     "registration_date": date(2024, 3, 5), "home_country": "Netherlands",
     "customer_segment": "Frequent User", "is_business_customer": False},
    {"customer_id": "CUST_005", "customer_type": "Standard", "subscription_plan": "Monthly Basic",
     "registration_date": date(2024, 2, 28), "home_country": "Germany",
     "customer_segment": "Regular User", "is_business_customer": False},
]

SAMPLE_VEHICLES: List[Dict[str, Any]] = [
    {"vehicle_id": "VEH_001", "make": "Tesla", "model": "Model 3", "model_year": 2024,
     "battery_capacity_kwh": 75.0, "max_charging_power_kw": 250.0, "connector_type": "CCS2",
     "vehicle_category": "Sedan"},
    {"vehicle_id": "VEH_002", "make": "BMW", "model": "iX3", "model_year": 2024,
     "battery_capacity_kwh": 80.0, "max_charging_power_kw": 150.0, "connector_type": "CCS2",
     "vehicle_category": "SUV"},
    {"vehicle_id": "VEH_003", "make": "Volkswagen", "model": "ID.4", "model_year": 2024,
     "battery_capacity_kwh": 82.0, "max_charging_power_kw": 135.0, "connector_type": "CCS2",
     "vehicle_category": "SUV"},
    {"vehicle_id": "VEH_004", "make": "Audi", "model": "e-tron GT", "model_year": 2024,
     "battery_capacity_kwh": 93.4, "max_charging_power_kw": 270.0, "connector_type": "CCS2",
     "vehicle_category": "Sports Car"},
    {"vehicle_id": "VEH_005", "make": "Mercedes", "model": "EQS", "model_year": 2024,
     "battery_capacity_kwh": 107.8, "max_charging_power_kw": 200.0, "connector_type": "CCS2",
     "vehicle_category": "Luxury Sedan"},
]

SAMPLE_SESSIONS: List[Dict[str, Any]] = [
    {"session_id": "SEED-0001", "station_id": "STN_DE001", "customer_id": "CUST_001", "vehicle_id": "VEH_001",
     "session_start_datetime": "2024-09-15T08:30:00", "session_end_datetime": "2024-09-15T09:15:00",
     "energy_delivered_kwh": 45.2, "charging_duration_minutes": 45, "peak_power_kw": 135.0,
     "total_cost": 22.60, "session_status": "completed"},
    {"session_id": "SEED-0002", "station_id": "STN_DE002", "customer_id": "CUST_002", "vehicle_id": "VEH_002",
     "session_start_datetime": "2024-09-15T10:00:00", "session_end_datetime": "2024-09-15T10:40:00",
     "energy_delivered_kwh": 32.1, "charging_duration_minutes": 40, "peak_power_kw": 120.0,
     "total_cost": 18.75, "session_status": "completed"},
    {"session_id": "SEED-0003", "station_id": "STN_FR001", "customer_id": "CUST_003", "vehicle_id": "VEH_003",
     "session_start_datetime": "2024-09-15T14:20:00", "session_end_datetime": "2024-09-15T15:30:00",
     "energy_delivered_kwh": 58.7, "charging_duration_minutes": 70, "peak_power_kw": 100.0,
     "total_cost": 31.20, "session_status": "completed"},
    {"session_id": "SEED-0004", "station_id": "STN_DE001", "customer_id": "CUST_004", "vehicle_id": "VEH_004",
     "session_start_datetime": "2024-09-16T07:45:00", "session_end_datetime": "2024-09-16T08:20:00",
     "energy_delivered_kwh": 28.4, "charging_duration_minutes": 35, "peak_power_kw": 150.0,
     "total_cost": 16.90, "session_status": "completed"},
    {"session_id": "SEED-0005", "station_id": "STN_NL001", "customer_id": "CUST_005", "vehicle_id": "VEH_005",
     "session_start_datetime": "2024-09-16T11:30:00", "session_end_datetime": "2024-09-16T12:45:00",
     "energy_delivered_kwh": 72.8, "charging_duration_minutes": 75, "peak_power_kw": 180.0,
     "total_cost": 42.15, "session_status": "completed"},
]


async def execute_batch_insert(
    db: AsyncSession,
    model: Any,
    records: List[Dict[str, Any]],
    chunk_size: int = 1000,
) -> None:
    """Insert records with Core INSERT in chunks"""
    for i in range(0, len(records), chunk_size):
        await db.execute(insert(model), records[i:i + chunk_size])


async def seed_time_dimension(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> int:
    """
    Insert calendar rows for start_date..end_date that are not present yet.

    Existing rows, including their holiday flags, are left untouched.

    Returns:
        Number of rows inserted
    """
    calendar = get_settings().calendar
    rows = generate(start_date or calendar.start_date, end_date or calendar.end_date)

    async with get_db(session_factory) as db:
        result = await db.execute(
            select(DimTime.time_key).where(
                DimTime.time_key.between(rows[0].time_key, rows[-1].time_key)
            )
        )
        existing = set(result.scalars())
        missing = [row.to_dict() for row in rows if row.time_key not in existing]
        await execute_batch_insert(db, DimTime, missing)

    logger.info(
        "Time dimension seeded",
        start=rows[0].full_date.isoformat(),
        end=rows[-1].full_date.isoformat(),
        inserted=len(missing),
        existing=len(existing),
    )
    return len(missing)


async def mark_holidays(
    dates: Iterable[date],
    is_holiday: bool = True,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> int:
    """
    Back-fill the holiday flag; the only dim_time attribute that changes.

    Returns:
        Number of calendar rows updated
    """
    keys = sorted({time_key_for(d) for d in dates})
    if not keys:
        return 0

    async with get_db(session_factory) as db:
        result = await db.execute(
            update(DimTime).where(DimTime.time_key.in_(keys)).values(is_holiday=is_holiday)
        )
    logger.info("Holiday flags updated", requested=len(keys), updated=result.rowcount, is_holiday=is_holiday)
    return result.rowcount


async def seed_dimensions(
    resolver: Optional[DimensionResolver] = None,
    effective_date: Optional[date] = None,
) -> Dict[str, int]:
    """Resolve the sample stations, customers and vehicles as of effective_date"""
    resolver = resolver or DimensionResolver()
    effective = datetime.combine(effective_date or get_settings().calendar.seed_effective_date, datetime.min.time())

    samples = {
        DimensionType.STATION: SAMPLE_STATIONS,
        DimensionType.CUSTOMER: SAMPLE_CUSTOMERS,
        DimensionType.VEHICLE: SAMPLE_VEHICLES,
    }
    counts = {}
    for dimension_type, records in samples.items():
        natural_key = resolver.policies.get(dimension_type).natural_key
        for record in records:
            attributes = {k: v for k, v in record.items() if k != natural_key}
            await resolver.resolve(dimension_type, record[natural_key], attributes, effective)
        counts[dimension_type.value] = len(records)

    logger.info("Sample dimensions seeded", effective_date=effective.isoformat(), **counts)
    return counts


async def seed_sessions(loader: Optional[FactLoader] = None) -> List[int]:
    """Load the sample charging sessions; re-running returns the same keys"""
    loader = loader or FactLoader()
    keys = [await loader.load_session(event) for event in SAMPLE_SESSIONS]
    logger.info("Sample sessions seeded", sessions=len(keys))
    return keys


async def main():
    configure_logging()
    logger.info("Starting warehouse seeding...")
    await init_database(create_tables=True)

    try:
        await seed_time_dimension()
        resolver = DimensionResolver()
        await seed_dimensions(resolver)
        await seed_sessions(FactLoader(resolver=resolver))
        logger.info("Warehouse seeding completed successfully!")
    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        raise
    finally:
        await close_database()


def run():
    """Console entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
