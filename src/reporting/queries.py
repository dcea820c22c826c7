"""
Reporting Queries

SQLAlchemy equivalents of the warehouse's summary views. Facts are joined
through their stored surrogate keys, so every session is reported against
the dimension version that was valid when it started. Sessions superseded by
a correction are left out.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

import polars as pl
from sqlalchemy import Select, distinct, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.database.models import (
    DimCustomer,
    DimStation,
    DimTime,
    FactChargingSession,
    SessionStatus,
)


def not_corrected():
    """Filter keeping facts that no later correction points at"""
    correction = aliased(FactChargingSession)
    return ~exists().where(correction.corrects_session_key == FactChargingSession.session_key)


def daily_charging_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Select:
    """Completed sessions per calendar day"""
    fact = FactChargingSession
    stmt = (
        select(
            DimTime.full_date,
            DimTime.day_of_week,
            func.count(fact.session_key).label("total_sessions"),
            func.sum(fact.energy_delivered_kwh).label("total_energy_kwh"),
            func.avg(fact.charging_duration_minutes).label("avg_duration_minutes"),
            func.sum(fact.total_cost).label("total_revenue"),
            func.count(distinct(DimStation.station_id)).label("active_stations"),
            func.count(distinct(DimCustomer.customer_id)).label("unique_customers"),
        )
        .select_from(fact)
        .join(DimTime, fact.time_key == DimTime.time_key)
        .join(DimStation, fact.station_key == DimStation.station_key)
        .join(DimCustomer, fact.customer_key == DimCustomer.customer_key)
        .where(fact.session_status == SessionStatus.COMPLETED.value, not_corrected())
        .group_by(DimTime.full_date, DimTime.day_of_week)
        .order_by(DimTime.full_date)
    )
    if start_date is not None:
        stmt = stmt.where(DimTime.full_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(DimTime.full_date <= end_date)
    return stmt


def station_performance(country: Optional[str] = None) -> Select:
    """
    Completed-session totals per station and location.

    Sessions are grouped by the station version their fact row points at, so
    a station that moved reports its earlier sessions under the old city and
    country. versions_used counts the versions within each group.
    """
    fact = FactChargingSession
    station = DimStation
    stmt = (
        select(
            station.station_id,
            station.station_name,
            station.city,
            station.country,
            func.count(fact.session_key).label("total_sessions"),
            func.sum(fact.energy_delivered_kwh).label("total_energy_delivered"),
            func.avg(fact.energy_delivered_kwh).label("avg_energy_per_session"),
            func.sum(fact.total_cost).label("total_revenue"),
            func.avg(fact.charging_duration_minutes).label("avg_session_duration"),
            func.count(distinct(station.station_key)).label("versions_used"),
        )
        .select_from(fact)
        .join(station, fact.station_key == station.station_key)
        .where(fact.session_status == SessionStatus.COMPLETED.value, not_corrected())
        .group_by(station.station_id, station.station_name, station.city, station.country)
        .order_by(station.station_id, station.country, station.city)
    )
    if country is not None:
        stmt = stmt.where(station.country == country)
    return stmt


def _plain(value: Any) -> Any:
    return float(value) if isinstance(value, Decimal) else value


async def fetch_frame(session: AsyncSession, stmt: Select) -> pl.DataFrame:
    """Execute a reporting query into a polars DataFrame"""
    result = await session.execute(stmt)
    columns = list(result.keys())
    rows = [[_plain(v) for v in row] for row in result.all()]
    if not rows:
        return pl.DataFrame(schema=columns)
    return pl.DataFrame(rows, schema=columns, orient="row", infer_schema_length=None)
