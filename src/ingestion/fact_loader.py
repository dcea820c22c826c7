"""
Fact Loader

Validates charging session events and writes fact_charging_session rows.

Per event:
1. Parse and validate required fields (ValidationError)
2. Deduplicate on the external session_id
3. Derive missing measures and check numeric invariants (DataQualityError)
4. Resolve time_key from the pre-generated calendar (MissingTimeDimensionError)
5. Resolve station/customer/vehicle as of session start (DimensionResolver)
6. Insert exactly one fact row

Steps 4-6 form one unit of work: the transaction commits before the per-key
locks are released, and any failure or cancellation rolls everything back.
Rejected events are recorded in etl_quarantine before the error is raised.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import get_settings
from src.config.logging import load_context
from src.database.connection import get_db, get_session_factory
from src.database.models import (
    DimensionType,
    DimTime,
    FactChargingSession,
    QuarantinedSession,
    SessionStatus,
)
from src.dimensions.exceptions import (
    QUARANTINED_ERRORS,
    ContentionTimeout,
    DataQualityError,
    LoadError,
    MissingTimeDimensionError,
    ValidationError,
)
from src.dimensions.resolver import DimensionResolver
from src.dimensions.timestamps import time_key_for
from src.dimensions.unit_of_work import UnitOfWork, open_unit_of_work
from .events import SessionEvent, parse_event

logger = structlog.get_logger(__name__)

# Resolution order is fixed so concurrent loads take key locks in the same order
DIMENSION_ORDER = (DimensionType.STATION, DimensionType.CUSTOMER, DimensionType.VEHICLE)


class LoadOutcome(str, Enum):
    """Outcome of loading one session event"""
    LOADED = "loaded"
    DUPLICATE = "duplicate"
    QUARANTINED = "quarantined"
    REJECTED = "rejected"
    RETRYABLE = "retryable"


class SessionLoadResult(BaseModel):
    """Result of a single session load, never raised"""
    session_id: Optional[str] = None
    status: LoadOutcome
    fact_key: Optional[int] = None
    error_type: Optional[str] = None
    error_field: Optional[str] = None
    message: Optional[str] = None
    quarantine_id: Optional[int] = None
    retryable: bool = False

    @classmethod
    def from_error(cls, error: LoadError) -> "SessionLoadResult":
        if error.retryable:
            status = LoadOutcome.RETRYABLE
        elif error.quarantine_id is not None:
            status = LoadOutcome.QUARANTINED
        else:
            status = LoadOutcome.REJECTED
        return cls(
            session_id=error.session_id,
            status=status,
            error_type=error.error_type,
            error_field=error.field,
            message=error.message,
            quarantine_id=error.quarantine_id,
            retryable=error.retryable,
        )


class FactLoader:
    """
    Loads charging session events into the fact table.

    Example:
        loader = FactLoader()
        session_key = await loader.load_session({
            "session_id": "SESS-0001",
            "station_id": "STN_DE001",
            "customer_id": "CUST_001",
            "vehicle_id": "VEH_001",
            "session_start_datetime": "2024-09-15T08:30:00",
            "session_end_datetime": "2024-09-15T09:15:00",
            "energy_delivered_kwh": 45.2,
            "session_status": "completed",
        })
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        resolver: Optional[DimensionResolver] = None,
        quarantine_enabled: Optional[bool] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.resolver = resolver or DimensionResolver(self.session_factory)
        self.quarantine_enabled = (
            get_settings().loader.quarantine_enabled
            if quarantine_enabled is None
            else quarantine_enabled
        )

    async def load_session(
        self,
        event: Union[SessionEvent, Dict[str, Any]],
        timeout: Optional[float] = None,
    ) -> int:
        """
        Load one session event and return its fact surrogate key.

        Loading a session_id that is already present returns the existing key.

        Raises:
            ValidationError, DataQualityError, MissingTimeDimensionError,
            NoVersionAtTimeError: quarantined, not retryable
            ContentionTimeout: retryable with backoff
        """
        fact_key, _ = await self._load(event, timeout, quarantine=self.quarantine_enabled)
        return fact_key

    async def try_load_session(
        self,
        event: Union[SessionEvent, Dict[str, Any]],
        timeout: Optional[float] = None,
    ) -> SessionLoadResult:
        """Load one session event, reporting load errors in the result"""
        try:
            fact_key, created = await self._load(event, timeout, quarantine=self.quarantine_enabled)
        except LoadError as e:
            return SessionLoadResult.from_error(e)
        return SessionLoadResult(
            session_id=_raw_session_id(event),
            status=LoadOutcome.LOADED if created else LoadOutcome.DUPLICATE,
            fact_key=fact_key,
        )

    async def replay_quarantined(self, limit: int = 100) -> List[SessionLoadResult]:
        """
        Re-attempt quarantined events, oldest first.

        Rows that load (or turn out to be duplicates) are marked replayed;
        failures stay in quarantine without adding new rows.
        """
        async with get_db(self.session_factory) as db:
            result = await db.execute(
                select(QuarantinedSession)
                .where(QuarantinedSession.replayed.is_(False))
                .order_by(QuarantinedSession.quarantine_id)
                .limit(limit)
            )
            pending = [(row.quarantine_id, row.payload) for row in result.scalars()]

        results = []
        for quarantine_id, payload in pending:
            try:
                fact_key, created = await self._load(payload or {}, None, quarantine=False)
            except LoadError as e:
                outcome = SessionLoadResult.from_error(e)
                outcome.quarantine_id = quarantine_id
                results.append(outcome)
                continue

            async with get_db(self.session_factory) as db:
                await db.execute(
                    update(QuarantinedSession)
                    .where(QuarantinedSession.quarantine_id == quarantine_id)
                    .values(replayed=True)
                )
            results.append(SessionLoadResult(
                session_id=_raw_session_id(payload),
                status=LoadOutcome.LOADED if created else LoadOutcome.DUPLICATE,
                fact_key=fact_key,
                quarantine_id=quarantine_id,
            ))

        logger.info(
            "Quarantine replay finished",
            attempted=len(results),
            loaded=sum(1 for r in results if r.fact_key is not None),
        )
        return results

    async def _load(
        self,
        event: Union[SessionEvent, Dict[str, Any]],
        timeout: Optional[float],
        quarantine: bool,
    ) -> Tuple[int, bool]:
        with load_context(session_id=_raw_session_id(event)):
            return await self._load_event(event, timeout, quarantine)

    async def _load_event(
        self,
        event: Union[SessionEvent, Dict[str, Any]],
        timeout: Optional[float],
        quarantine: bool,
    ) -> Tuple[int, bool]:
        try:
            parsed = parse_event(SessionEvent, event)

            existing = await self._existing_key(parsed.session_id)
            if existing is not None:
                logger.info("Duplicate session ignored", session_id=parsed.session_id, fact_key=existing)
                return existing, False

            measures = self._check_measures(parsed)
            return await self._insert(parsed, measures, timeout)

        except QUARANTINED_ERRORS as e:
            if e.session_id is None:
                e.session_id = _raw_session_id(event)
            if quarantine:
                await self._quarantine(e, event)
            raise
        except ContentionTimeout as e:
            if e.session_id is None:
                e.session_id = _raw_session_id(event)
            logger.warning("Session load hit lock contention", session_id=e.session_id, error=e.message)
            raise

    def _check_measures(self, event: SessionEvent) -> Dict[str, Any]:
        """Derive missing measures and enforce non-negative invariants"""
        start, end = event.session_start_datetime, event.session_end_datetime
        duration = event.charging_duration_minutes

        if end is not None and end < start:
            raise DataQualityError(
                f"Session ends before it starts ({end.isoformat()} < {start.isoformat()})",
                field="session_end_datetime",
                session_id=event.session_id,
            )
        if duration is None and end is not None:
            duration = int((end - start).total_seconds() // 60)

        measures = {
            "energy_delivered_kwh": event.energy_delivered_kwh,
            "charging_duration_minutes": duration,
            "peak_power_kw": event.peak_power_kw,
            "total_cost": event.total_cost,
        }
        for field in ("energy_delivered_kwh", "charging_duration_minutes", "peak_power_kw"):
            value = measures[field]
            if value is not None and value < 0:
                raise DataQualityError(
                    f"{field} must be non-negative, got {value}",
                    field=field,
                    session_id=event.session_id,
                )

        cost = measures["total_cost"]
        if event.session_status == SessionStatus.COMPLETED and cost is not None and cost < 0:
            raise DataQualityError(
                f"total_cost must be non-negative for completed sessions, got {cost}",
                field="total_cost",
                session_id=event.session_id,
            )
        return measures

    async def _insert(
        self,
        event: SessionEvent,
        measures: Dict[str, Any],
        timeout: Optional[float],
    ) -> Tuple[int, bool]:
        start = event.session_start_datetime
        try:
            async with open_unit_of_work(self.session_factory, self.resolver.locks, timeout) as uow:
                time_key = time_key_for(start)
                if await uow.session.get(DimTime, time_key) is None:
                    raise MissingTimeDimensionError(time_key, session_id=event.session_id)

                corrects_key = None
                if event.corrects_session_id:
                    corrects_key = await self._fact_key(uow.session, event.corrects_session_id)
                    if corrects_key is None:
                        raise ValidationError(
                            f"Corrected session '{event.corrects_session_id}' does not exist",
                            field="corrects_session_id",
                            session_id=event.session_id,
                        )

                keys = {}
                for dimension_type in DIMENSION_ORDER:
                    keys[dimension_type] = await self._resolve(uow, event, dimension_type)

                fact = FactChargingSession(
                    session_id=event.session_id,
                    station_key=keys[DimensionType.STATION],
                    customer_key=keys[DimensionType.CUSTOMER],
                    vehicle_key=keys[DimensionType.VEHICLE],
                    time_key=time_key,
                    session_start_datetime=start,
                    session_end_datetime=event.session_end_datetime,
                    session_status=event.session_status,
                    corrects_session_key=corrects_key,
                    **measures,
                )
                uow.session.add(fact)
                await uow.session.flush()
                fact_key = fact.session_key
        except IntegrityError:
            # A concurrent load of the same session_id committed first
            existing = await self._existing_key(event.session_id)
            if existing is None:
                raise
            logger.info("Duplicate session ignored", session_id=event.session_id, fact_key=existing)
            return existing, False

        logger.info(
            "Charging session loaded",
            session_id=event.session_id,
            fact_key=fact_key,
            time_key=time_key,
            station_key=keys[DimensionType.STATION],
            customer_key=keys[DimensionType.CUSTOMER],
            vehicle_key=keys[DimensionType.VEHICLE],
        )
        return fact_key, True

    async def _resolve(self, uow: UnitOfWork, event: SessionEvent, dimension_type: DimensionType) -> int:
        natural_key = event.natural_key_for(dimension_type)
        attributes = event.attributes_for(dimension_type)
        start = event.session_start_datetime
        try:
            if attributes is None:
                return await self.resolver.lookup(dimension_type, natural_key, start, uow=uow)
            return await self.resolver.resolve(dimension_type, natural_key, attributes, start, uow=uow)
        except LoadError as e:
            if e.session_id is None:
                e.session_id = event.session_id
            raise

    async def _existing_key(self, session_id: str) -> Optional[int]:
        async with self.session_factory() as session:
            return await self._fact_key(session, session_id)

    @staticmethod
    async def _fact_key(session: AsyncSession, session_id: str) -> Optional[int]:
        result = await session.execute(
            select(FactChargingSession.session_key).where(FactChargingSession.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def _quarantine(self, error: LoadError, event: Any) -> None:
        async with get_db(self.session_factory) as db:
            row = QuarantinedSession(
                session_id=error.session_id,
                error_type=error.error_type,
                error_field=error.field,
                message=error.message,
                payload=_json_payload(event),
            )
            db.add(row)
            await db.flush()
            error.quarantine_id = row.quarantine_id

        logger.warning(
            "Session quarantined",
            session_id=error.session_id,
            error_type=error.error_type,
            field=error.field,
            message=error.message,
            quarantine_id=error.quarantine_id,
        )


def _raw_session_id(event: Any) -> Optional[str]:
    if isinstance(event, BaseModel):
        value = getattr(event, "session_id", None)
    elif isinstance(event, dict):
        value = event.get("session_id")
    else:
        value = None
    return str(value) if value is not None else None


def _json_payload(event: Any) -> Optional[dict]:
    if isinstance(event, BaseModel):
        return event.model_dump(mode="json", exclude_unset=True)
    if isinstance(event, dict):
        return json.loads(json.dumps(event, default=_json_default))
    return None


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return str(value)
