"""
Upstream Event Models

Plain structured records emitted by upstream producers: charging session
events and dimension change events. No wire format is implied; batch files,
queues and direct calls all end up as these models.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from src.database.models import DimensionType, SessionStatus
from src.dimensions.exceptions import ValidationError
from src.dimensions.timestamps import to_naive_utc


class AttributeSnapshot(BaseModel):
    """Dimension attributes carried on an event; unset fields are not compared"""

    model_config = ConfigDict(extra="forbid")

    def supplied(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class StationAttributes(AttributeSnapshot):
    station_name: Optional[str] = None
    operator_name: Optional[str] = None
    connector_type: Optional[str] = None
    max_power_kw: Optional[Decimal] = None
    location_address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    station_status: Optional[str] = None


class CustomerAttributes(AttributeSnapshot):
    customer_type: Optional[str] = None
    subscription_plan: Optional[str] = None
    registration_date: Optional[date] = None
    home_country: Optional[str] = None
    customer_segment: Optional[str] = None
    is_business_customer: Optional[bool] = None


class VehicleAttributes(AttributeSnapshot):
    make: Optional[str] = None
    model: Optional[str] = None
    model_year: Optional[int] = None
    battery_capacity_kwh: Optional[Decimal] = None
    max_charging_power_kw: Optional[Decimal] = None
    connector_type: Optional[str] = None
    vehicle_category: Optional[str] = None


ATTRIBUTE_MODELS = {
    DimensionType.STATION: StationAttributes,
    DimensionType.CUSTOMER: CustomerAttributes,
    DimensionType.VEHICLE: VehicleAttributes,
}


class SessionEvent(BaseModel):
    """One charging session as reported upstream"""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    session_id: str = Field(min_length=1)
    station_id: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)
    vehicle_id: str = Field(min_length=1)
    session_start_datetime: datetime
    session_end_datetime: Optional[datetime] = None
    session_status: SessionStatus

    # Measures
    energy_delivered_kwh: Optional[Decimal] = None
    charging_duration_minutes: Optional[int] = None
    peak_power_kw: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None

    # Optional attribute snapshots; key-only events resolve read-only
    station: Optional[StationAttributes] = None
    customer: Optional[CustomerAttributes] = None
    vehicle: Optional[VehicleAttributes] = None

    corrects_session_id: Optional[str] = None

    @field_validator("session_id", "station_id", "customer_id", "vehicle_id", mode="before")
    @classmethod
    def strip_keys(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("session_status", mode="before")
    @classmethod
    def lower_status(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("session_start_datetime", "session_end_datetime")
    @classmethod
    def naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    def attributes_for(self, dimension_type: DimensionType) -> Optional[Dict[str, Any]]:
        snapshot = getattr(self, dimension_type.value)
        return snapshot.supplied() if snapshot is not None else None

    def natural_key_for(self, dimension_type: DimensionType) -> str:
        return getattr(self, f"{dimension_type.value}_id")


class DimensionChangeEvent(BaseModel):
    """New attribute values for one natural key, effective from a point in time"""

    dimension_type: DimensionType
    natural_key: str = Field(min_length=1)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    effective_time: datetime

    @field_validator("effective_time")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


def parse_event(model: type, event: Union[BaseModel, Dict[str, Any]]) -> Any:
    """
    Build model from a raw record, mapping pydantic errors onto the load
    engine's ValidationError with the offending field.
    """
    if isinstance(event, model):
        return event
    if isinstance(event, BaseModel):
        event = event.model_dump()
    try:
        return model.model_validate(event)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        session_id = event.get("session_id") if isinstance(event, dict) else None
        raise ValidationError(
            f"{field}: {first['msg']}" if field else first["msg"],
            field=field,
            session_id=str(session_id) if session_id is not None else None,
        ) from e
