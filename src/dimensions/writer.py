"""
SCD2 Writer

The only component that creates dimension versions or flips ``is_current``.
Each transition runs inside a unit of work holding the natural key's lock, so
a reader never sees zero or two current versions for one key.

Operations:
- create_initial_version: first version of an unknown natural key
- apply_change: close the current version and open its successor
- overwrite: Type-1 overwrite of untracked attributes on every version
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database.connection import get_session_factory
from .exceptions import (
    ContentionTimeout,
    NoVersionAtTimeError,
    ValidationError,
    VersionConflictError,
)
from .locks import KeyedLockRegistry
from .policies import DimensionPolicy, PolicyRegistry
from .timestamps import to_naive_utc
from .unit_of_work import UnitOfWork, open_unit_of_work

logger = structlog.get_logger(__name__)


class VersionStore:
    """Read access to dimension versions, shared by the writer and the resolver"""

    @staticmethod
    def lock_key(policy: DimensionPolicy, natural_key: str) -> tuple:
        return (policy.dimension_type.value, natural_key)

    @staticmethod
    async def current(
        session: AsyncSession,
        policy: DimensionPolicy,
        natural_key: str,
        for_update: bool = False,
    ) -> Optional[Any]:
        model = policy.model
        stmt = select(model).where(
            getattr(model, policy.natural_key) == natural_key,
            model.is_current.is_(True),
        )
        if for_update:
            # Re-read committed state after taking the key lock
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def at(
        session: AsyncSession,
        policy: DimensionPolicy,
        natural_key: str,
        as_of: datetime,
    ) -> Optional[Any]:
        model = policy.model
        stmt = select(model).where(
            getattr(model, policy.natural_key) == natural_key,
            model.effective_date <= as_of,
            or_(model.expiry_date.is_(None), model.expiry_date > as_of),
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def history(
        session: AsyncSession,
        policy: DimensionPolicy,
        natural_key: str,
    ) -> List[Any]:
        model = policy.model
        stmt = (
            select(model)
            .where(getattr(model, policy.natural_key) == natural_key)
            .order_by(model.effective_date)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


class SCD2Writer:
    """
    Applies Type-2 versioning to the station, customer and vehicle dimensions.

    Every public method accepts an optional unit of work. Without one it opens
    its own transaction and lock scope; with one it joins the caller's, and
    the key lock stays held until the caller commits.

    Example:
        writer = SCD2Writer()
        key = await writer.create_initial_version(
            "station", "STN_DE001", {"max_power_kw": 150}, datetime(2024, 1, 1)
        )
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        locks: Optional[KeyedLockRegistry] = None,
        policies: Optional[PolicyRegistry] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.locks = locks or KeyedLockRegistry()
        self.policies = policies or PolicyRegistry()

    async def create_initial_version(
        self,
        dimension_type: Any,
        natural_key: str,
        attributes: Mapping[str, Any],
        effective_time: datetime,
        *,
        uow: Optional[UnitOfWork] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Insert the first version of natural_key.

        Raises:
            VersionConflictError: natural_key already has a current version
            ContentionTimeout: the key lock was not acquired in time
        """
        policy = self.policies.get(dimension_type)
        values = policy.normalize(attributes)
        effective_time = _require_time(effective_time)

        async with open_unit_of_work(self.session_factory, self.locks, timeout, uow) as work:
            await work.locks.acquire(VersionStore.lock_key(policy, natural_key))
            existing = await VersionStore.current(work.session, policy, natural_key, for_update=True)
            if existing is not None:
                raise VersionConflictError(
                    f"{policy.dimension_type.value} '{natural_key}' already has current version "
                    f"{getattr(existing, policy.surrogate_key)}",
                    field=policy.natural_key,
                )
            return await self._insert_version(work.session, policy, natural_key, values, effective_time)

    async def apply_change(
        self,
        dimension_type: Any,
        natural_key: str,
        new_attributes: Mapping[str, Any],
        effective_time: datetime,
        *,
        uow: Optional[UnitOfWork] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Close the current version at effective_time and open its successor.

        Type-1 attributes in new_attributes are overwritten on every version.
        When no Type-2 attribute actually changes no version is opened and the
        current surrogate key is returned.

        Raises:
            NoVersionAtTimeError: natural_key has no current version
            ValidationError: effective_time is not after the current version's start
            ContentionTimeout: the key lock was not acquired in time
        """
        policy = self.policies.get(dimension_type)
        values = policy.normalize(new_attributes)
        effective_time = _require_time(effective_time)

        async with open_unit_of_work(self.session_factory, self.locks, timeout, uow) as work:
            await work.locks.acquire(VersionStore.lock_key(policy, natural_key))
            current = await VersionStore.current(work.session, policy, natural_key, for_update=True)
            if current is None:
                raise NoVersionAtTimeError(policy.dimension_type.value, natural_key, None)

            current_key = getattr(current, policy.surrogate_key)
            type2, type1 = policy.split_changes(current, values)
            if type2 and effective_time <= current.effective_date:
                raise ValidationError(
                    f"Change to {policy.dimension_type.value} '{natural_key}' effective "
                    f"{effective_time.isoformat()} does not follow current version start "
                    f"{current.effective_date.isoformat()}",
                    field="effective_time",
                )

            carried = {name: getattr(current, name) for name in policy.attributes}
            carried.update(values)

            if type1:
                await self._overwrite(work.session, policy, natural_key, type1)
            if not type2:
                return current_key

            current.expiry_date = effective_time
            current.is_current = False
            # The close must reach the database before the insert: the partial
            # unique index admits one current row per natural key
            await _flush(work.session, policy, natural_key)

            new_key = await self._insert_version(
                work.session, policy, natural_key, carried, effective_time
            )
            logger.info(
                "Dimension version closed",
                dimension=policy.dimension_type.value,
                natural_key=natural_key,
                closed_key=current_key,
                new_key=new_key,
                changed=sorted(type2),
                effective_time=effective_time.isoformat(),
            )
            return new_key

    async def overwrite(
        self,
        dimension_type: Any,
        natural_key: str,
        attributes: Mapping[str, Any],
        *,
        uow: Optional[UnitOfWork] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Type-1 overwrite on every version of natural_key.

        Raises:
            ValidationError: attributes include a Type-2 attribute
        """
        policy = self.policies.get(dimension_type)
        values = policy.normalize(attributes)
        tracked = sorted(set(values) & policy.tracked)
        if tracked:
            raise ValidationError(
                f"Type-2 attributes cannot be overwritten in place: {tracked}",
                field=tracked[0],
            )

        async with open_unit_of_work(self.session_factory, self.locks, timeout, uow) as work:
            await work.locks.acquire(VersionStore.lock_key(policy, natural_key))
            return await self._overwrite(work.session, policy, natural_key, values)

    async def _insert_version(
        self,
        session: AsyncSession,
        policy: DimensionPolicy,
        natural_key: str,
        values: Dict[str, Any],
        effective_time: datetime,
    ) -> int:
        row = policy.model(
            **{policy.natural_key: natural_key},
            **values,
            effective_date=effective_time,
            expiry_date=None,
            is_current=True,
        )
        session.add(row)
        await _flush(session, policy, natural_key)
        key = getattr(row, policy.surrogate_key)
        logger.info(
            "Dimension version created",
            dimension=policy.dimension_type.value,
            natural_key=natural_key,
            surrogate_key=key,
            effective_time=effective_time.isoformat(),
        )
        return key

    async def _overwrite(
        self,
        session: AsyncSession,
        policy: DimensionPolicy,
        natural_key: str,
        values: Dict[str, Any],
    ) -> int:
        if not values:
            return 0
        model = policy.model
        result = await session.execute(
            update(model)
            .where(getattr(model, policy.natural_key) == natural_key)
            .values(**values)
        )
        logger.info(
            "Type-1 attributes overwritten",
            dimension=policy.dimension_type.value,
            natural_key=natural_key,
            attributes=sorted(values),
            versions=result.rowcount,
        )
        return result.rowcount


def _require_time(value: Any) -> datetime:
    if value is None:
        raise ValidationError("effective_time is required", field="effective_time")
    try:
        return to_naive_utc(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid effective_time: {value!r}", field="effective_time") from e


async def _flush(session: AsyncSession, policy: DimensionPolicy, natural_key: str) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        # Another process won the race for the current-version slot
        raise ContentionTimeout(
            f"Concurrent version write for {policy.dimension_type.value} '{natural_key}'",
            field=policy.natural_key,
        ) from e
