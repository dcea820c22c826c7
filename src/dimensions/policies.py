"""
Dimension Attribute Policies

Every descriptive attribute of a versioned dimension is declared explicitly as
either Type 2 (a change opens a new version) or Type 1 (overwritten in place,
no history). Nothing is inferred: an attribute without a policy is rejected.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type

from sqlalchemy import Boolean, Date, Integer, Numeric

from src.database.models import DIMENSION_MODELS, DimensionType
from .exceptions import ValidationError


class AttributePolicy(str, Enum):
    """How a change to one attribute is applied"""
    TYPE1 = "type1"  # overwrite in place
    TYPE2 = "type2"  # version


@dataclass(frozen=True)
class DimensionPolicy:
    """Natural key and attribute policies of one dimension type"""
    dimension_type: DimensionType
    natural_key: str
    surrogate_key: str
    attributes: Dict[str, AttributePolicy] = field(default_factory=dict)

    @property
    def model(self) -> Type:
        return DIMENSION_MODELS[self.dimension_type]

    @property
    def tracked(self) -> frozenset:
        return frozenset(
            name for name, policy in self.attributes.items() if policy == AttributePolicy.TYPE2
        )

    @property
    def overwritten(self) -> frozenset:
        return frozenset(
            name for name, policy in self.attributes.items() if policy == AttributePolicy.TYPE1
        )

    def normalize(self, attributes: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Check attribute names against the policy and coerce values to the
        column types so stored and incoming values compare equal.

        Raises:
            ValidationError: Unknown attribute or uncoercible value
        """
        unknown = sorted(set(attributes) - set(self.attributes))
        if unknown:
            raise ValidationError(
                f"Attributes without a {self.dimension_type.value} policy: {unknown}",
                field=unknown[0],
            )

        columns = self.model.__table__.c
        return {
            name: _coerce(name, value, columns[name].type)
            for name, value in attributes.items()
        }

    def split_changes(self, current: Any, incoming: Mapping[str, Any]) -> tuple:
        """
        Compare normalized incoming attributes with a stored version.

        Returns:
            (type2_changes, type1_changes) as dicts of attribute -> new value
        """
        type2, type1 = {}, {}
        for name, value in incoming.items():
            if getattr(current, name) == value:
                continue
            if self.attributes[name] == AttributePolicy.TYPE2:
                type2[name] = value
            else:
                type1[name] = value
        return type2, type1


def _coerce(name: str, value: Any, column_type: Any) -> Any:
    if value is None:
        return None
    try:
        if isinstance(column_type, Numeric):
            number = value if isinstance(value, Decimal) else Decimal(str(value))
            if column_type.scale is not None:
                number = number.quantize(Decimal(1).scaleb(-column_type.scale))
            return number
        if isinstance(column_type, Boolean):
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered not in ("true", "false", "1", "0", "yes", "no"):
                    raise ValueError(value)
                return lowered in ("true", "1", "yes")
            return bool(value)
        if isinstance(column_type, Integer):
            return int(value)
        if isinstance(column_type, Date):
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid value for {name}: {value!r}", field=name) from e
    return value


# Default policies. Renames and data-entry corrections are Type 1; anything a
# historical report should attribute to the version in force is Type 2.
DEFAULT_POLICIES: Dict[DimensionType, DimensionPolicy] = {
    DimensionType.STATION: DimensionPolicy(
        dimension_type=DimensionType.STATION,
        natural_key="station_id",
        surrogate_key="station_key",
        attributes={
            "station_name": AttributePolicy.TYPE1,
            "operator_name": AttributePolicy.TYPE2,
            "connector_type": AttributePolicy.TYPE2,
            "max_power_kw": AttributePolicy.TYPE2,
            "location_address": AttributePolicy.TYPE2,
            "city": AttributePolicy.TYPE2,
            "country": AttributePolicy.TYPE2,
            "latitude": AttributePolicy.TYPE2,
            "longitude": AttributePolicy.TYPE2,
            "station_status": AttributePolicy.TYPE2,
        },
    ),
    DimensionType.CUSTOMER: DimensionPolicy(
        dimension_type=DimensionType.CUSTOMER,
        natural_key="customer_id",
        surrogate_key="customer_key",
        attributes={
            "customer_type": AttributePolicy.TYPE2,
            "subscription_plan": AttributePolicy.TYPE2,
            "registration_date": AttributePolicy.TYPE1,
            "home_country": AttributePolicy.TYPE2,
            "customer_segment": AttributePolicy.TYPE2,
            "is_business_customer": AttributePolicy.TYPE2,
        },
    ),
    DimensionType.VEHICLE: DimensionPolicy(
        dimension_type=DimensionType.VEHICLE,
        natural_key="vehicle_id",
        surrogate_key="vehicle_key",
        attributes={
            "make": AttributePolicy.TYPE1,
            "model": AttributePolicy.TYPE1,
            "model_year": AttributePolicy.TYPE1,
            "battery_capacity_kwh": AttributePolicy.TYPE2,
            "max_charging_power_kw": AttributePolicy.TYPE2,
            "connector_type": AttributePolicy.TYPE2,
            "vehicle_category": AttributePolicy.TYPE2,
        },
    ),
}


class PolicyRegistry:
    """
    Dimension policies in force for one load engine.

    Example:
        registry = PolicyRegistry(overrides={
            DimensionType.STATION: {"station_name": AttributePolicy.TYPE2},
        })
    """

    def __init__(
        self,
        overrides: Optional[Mapping[DimensionType, Mapping[str, AttributePolicy]]] = None,
    ):
        self._policies = dict(DEFAULT_POLICIES)
        for dimension_type, changes in (overrides or {}).items():
            dimension_type = DimensionType(dimension_type)
            base = self._policies[dimension_type]
            unknown = sorted(set(changes) - set(base.attributes))
            if unknown:
                raise ValueError(f"Unknown {dimension_type.value} attributes: {unknown}")
            attributes = dict(base.attributes)
            attributes.update({k: AttributePolicy(v) for k, v in changes.items()})
            self._policies[dimension_type] = DimensionPolicy(
                dimension_type=dimension_type,
                natural_key=base.natural_key,
                surrogate_key=base.surrogate_key,
                attributes=attributes,
            )

    def get(self, dimension_type: Any) -> DimensionPolicy:
        try:
            return self._policies[DimensionType(dimension_type)]
        except ValueError as e:
            raise ValidationError(
                f"Unknown dimension type: {dimension_type!r}", field="dimension_type"
            ) from e
