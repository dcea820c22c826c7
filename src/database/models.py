"""
Database Models - Star Schema Design

This module defines the EV charging warehouse following a star schema design
pattern optimized for analytical workloads. The schema consists of:

Fact Tables:
- FactChargingSession: One row per charging session with session measures

Dimension Tables:
- DimStation: Charging stations (SCD Type 2)
- DimCustomer: Customers and subscriptions (SCD Type 2)
- DimVehicle: Vehicles and charging capabilities (SCD Type 2)
- DimTime: Pre-generated calendar dimension

Operational Tables:
- QuarantinedSession: Rejected events kept for replay or manual review
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# SQLite only autoincrements INTEGER primary keys
SurrogateKey = BigInteger().with_variant(Integer, "sqlite")


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SessionStatus(str, Enum):
    """Charging session status enumeration"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DimensionType(str, Enum):
    """Versioned dimensions maintained by the load engine"""
    STATION = "station"
    CUSTOMER = "customer"
    VEHICLE = "vehicle"


# =============================================================================
# DIMENSION TABLES
# =============================================================================

class SCD2Mixin:
    """
    Slowly Changing Dimension Type 2 bookkeeping.

    Versions of one natural key cover [effective_date, expiry_date); the open
    version (expiry_date NULL) is the only one with is_current set. These
    columns are written exclusively by the SCD2 writer.
    """

    effective_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


def scd2_indexes(table: str, natural_key: str) -> tuple:
    """
    Temporal-validity indexes shared by every versioned dimension.

    The partial unique index makes a second current version per natural key
    impossible at the storage layer.
    """
    return (
        Index(f"ix_{table}_nk_effective", natural_key, "effective_date"),
        Index(
            f"uq_{table}_current",
            natural_key,
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )


class DimStation(SCD2Mixin, Base):
    """
    Station Dimension Table

    Charging stations with location and hardware attributes.
    """
    __tablename__ = "dim_station"

    station_key: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    station_id: Mapped[str] = mapped_column(String(50), nullable=False)

    station_name: Mapped[Optional[str]] = mapped_column(String(200))
    operator_name: Mapped[Optional[str]] = mapped_column(String(100))
    connector_type: Mapped[Optional[str]] = mapped_column(String(50))
    max_power_kw: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))

    # Geographic
    location_address: Mapped[Optional[str]] = mapped_column(String(500))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(50))
    latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 6))
    longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 6))

    station_status: Mapped[Optional[str]] = mapped_column(String(50))

    __table_args__ = scd2_indexes("dim_station", "station_id") + (
        Index("ix_dim_station_location", "latitude", "longitude"),
        Index("ix_dim_station_city_country", "city", "country"),
    )


class DimCustomer(SCD2Mixin, Base):
    """
    Customer Dimension Table

    Customer type, subscription plan and segment.
    """
    __tablename__ = "dim_customer"

    customer_key: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_type: Mapped[Optional[str]] = mapped_column(String(50))
    subscription_plan: Mapped[Optional[str]] = mapped_column(String(100))
    registration_date: Mapped[Optional[date]] = mapped_column(Date)
    home_country: Mapped[Optional[str]] = mapped_column(String(50))
    customer_segment: Mapped[Optional[str]] = mapped_column(String(50))
    is_business_customer: Mapped[Optional[bool]] = mapped_column(Boolean)

    __table_args__ = scd2_indexes("dim_customer", "customer_id") + (
        Index("ix_dim_customer_segment", "customer_segment"),
        Index("ix_dim_customer_type", "customer_type"),
    )


class DimVehicle(SCD2Mixin, Base):
    """
    Vehicle Dimension Table

    Vehicle make/model and charging capabilities.
    """
    __tablename__ = "dim_vehicle"

    vehicle_key: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    vehicle_id: Mapped[str] = mapped_column(String(50), nullable=False)

    make: Mapped[Optional[str]] = mapped_column(String(50))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    model_year: Mapped[Optional[int]] = mapped_column(Integer)
    battery_capacity_kwh: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    max_charging_power_kw: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    connector_type: Mapped[Optional[str]] = mapped_column(String(50))
    vehicle_category: Mapped[Optional[str]] = mapped_column(String(50))

    __table_args__ = scd2_indexes("dim_vehicle", "vehicle_id") + (
        Index("ix_dim_vehicle_make_model", "make", "model"),
        Index("ix_dim_vehicle_category", "vehicle_category"),
    )


class DimTime(Base):
    """
    Time Dimension Table

    Pre-populated calendar dimension. Rows are generated ahead of time and
    never created by the fact loader; only is_holiday may be back-filled.
    """
    __tablename__ = "dim_time"

    time_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)  # YYYYMMDD
    full_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    day_of_week: Mapped[str] = mapped_column(String(20), nullable=False)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    month_number: Mapped[int] = mapped_column(Integer, nullable=False)
    month_name: Mapped[str] = mapped_column(String(20), nullable=False)
    quarter: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_weekend: Mapped[bool] = mapped_column(Boolean, default=False)
    is_holiday: Mapped[bool] = mapped_column(Boolean, default=False)
    season: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        Index("ix_dim_time_year_month", "year", "month_number"),
    )


DIMENSION_MODELS = {
    DimensionType.STATION: DimStation,
    DimensionType.CUSTOMER: DimCustomer,
    DimensionType.VEHICLE: DimVehicle,
}


# =============================================================================
# FACT TABLES
# =============================================================================

class FactChargingSession(Base):
    """
    Charging Session Fact Table

    Grain: one charging session. Dimension keys point at the version that was
    valid at session start. Completed rows are never updated; corrections
    arrive as new rows referencing the corrected row.
    """
    __tablename__ = "fact_charging_session"

    session_key: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    # Dimension foreign keys
    station_key: Mapped[int] = mapped_column(SurrogateKey, ForeignKey("dim_station.station_key"), nullable=False)
    customer_key: Mapped[int] = mapped_column(SurrogateKey, ForeignKey("dim_customer.customer_key"), nullable=False)
    vehicle_key: Mapped[int] = mapped_column(SurrogateKey, ForeignKey("dim_vehicle.vehicle_key"), nullable=False)
    time_key: Mapped[int] = mapped_column(ForeignKey("dim_time.time_key"), nullable=False)

    # Timestamps
    session_start_datetime: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    session_end_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Measures
    energy_delivered_kwh: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 3))
    charging_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    peak_power_kw: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    total_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))

    session_status: Mapped[str] = mapped_column(String(50), nullable=False)

    # Compensating rows
    corrects_session_key: Mapped[Optional[int]] = mapped_column(
        SurrogateKey, ForeignKey("fact_charging_session.session_key")
    )

    # Audit
    loaded_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_fact_charging_time_station", "time_key", "station_key"),
        Index("ix_fact_charging_customer_date", "customer_key", "session_start_datetime"),
        Index("ix_fact_charging_status_date", "session_status", "time_key"),
        Index("ix_fact_charging_corrects", "corrects_session_key"),
    )


# =============================================================================
# OPERATIONAL TABLES
# =============================================================================

class QuarantinedSession(Base):
    """
    Quarantine Table

    One row per rejected or quarantined event, with the raw payload so the
    event can be replayed once the underlying problem is fixed.
    """
    __tablename__ = "etl_quarantine"

    quarantine_id: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100))
    error_type: Mapped[str] = mapped_column(String(50), nullable=False)
    error_field: Mapped[Optional[str]] = mapped_column(String(100))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSON)
    replayed: Mapped[bool] = mapped_column(Boolean, default=False)
    quarantined_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_etl_quarantine_session", "session_id"),
        Index("ix_etl_quarantine_error_type", "error_type"),
    )
