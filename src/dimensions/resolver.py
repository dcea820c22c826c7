"""
Dimension Resolver

Turns a natural-key record into the surrogate key a fact row should carry.

Resolution against the current version:
- unknown natural key: first version is created effective at as_of_time
- tracked attributes unchanged: existing key, no versioning write
  (Type-1 differences are still overwritten in place)
- tracked attributes changed: SCD2 transition effective at as_of_time

Back-loads older than the current version resolve against the version whose
[effective_date, expiry_date) interval covers as_of_time, without writing.
When no version covers it the resolver raises NoVersionAtTimeError instead
of picking the nearest one.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database.connection import get_session_factory
from .exceptions import NoVersionAtTimeError, ValidationError
from .locks import KeyedLockRegistry
from .policies import DimensionPolicy, PolicyRegistry
from .timestamps import to_naive_utc
from .unit_of_work import UnitOfWork, open_unit_of_work
from .writer import SCD2Writer, VersionStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DimensionVersion:
    """Read-only snapshot of one dimension version"""
    surrogate_key: int
    natural_key: str
    attributes: Dict[str, Any]
    effective_date: datetime
    expiry_date: Optional[datetime]
    is_current: bool

    @classmethod
    def from_row(cls, policy: DimensionPolicy, row: Any) -> "DimensionVersion":
        return cls(
            surrogate_key=getattr(row, policy.surrogate_key),
            natural_key=getattr(row, policy.natural_key),
            attributes={name: getattr(row, name) for name in policy.attributes},
            effective_date=row.effective_date,
            expiry_date=row.expiry_date,
            is_current=row.is_current,
        )


class DimensionResolver:
    """
    Resolves station, customer and vehicle records to surrogate keys.

    Example:
        resolver = DimensionResolver()
        key = await resolver.resolve(
            "station", "STN_DE001", {"max_power_kw": 150}, datetime(2024, 9, 15, 8, 30)
        )
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        locks: Optional[KeyedLockRegistry] = None,
        policies: Optional[PolicyRegistry] = None,
        writer: Optional[SCD2Writer] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.locks = locks or KeyedLockRegistry()
        self.policies = policies or PolicyRegistry()
        self.writer = writer or SCD2Writer(self.session_factory, self.locks, self.policies)

    async def resolve(
        self,
        dimension_type: Any,
        natural_key: str,
        attributes: Optional[Mapping[str, Any]],
        as_of_time: datetime,
        *,
        uow: Optional[UnitOfWork] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Resolve natural_key with its incoming attributes as of as_of_time.

        Only the supplied attributes are compared; omitted ones carry over
        into a new version unchanged.

        Raises:
            ValidationError: Missing natural key or time, unknown attributes
            NoVersionAtTimeError: as_of_time precedes every version
            ContentionTimeout: The key lock was not acquired in time
        """
        policy = self.policies.get(dimension_type)
        natural_key = _require_key(policy, natural_key)
        as_of = _require_as_of(as_of_time)
        values = policy.normalize(attributes or {})

        async with open_unit_of_work(self.session_factory, self.locks, timeout, uow) as work:
            current = await VersionStore.current(work.session, policy, natural_key)

            if current is not None and as_of < current.effective_date:
                return await self._resolve_historical(work.session, policy, natural_key, values, as_of)

            if current is not None and not any(policy.split_changes(current, values)):
                return getattr(current, policy.surrogate_key)

            # A write is likely; decide again under the key lock
            await work.locks.acquire(VersionStore.lock_key(policy, natural_key))
            current = await VersionStore.current(work.session, policy, natural_key, for_update=True)

            if current is None:
                return await self.writer.create_initial_version(
                    policy.dimension_type, natural_key, values, as_of, uow=work
                )
            if as_of < current.effective_date:
                return await self._resolve_historical(work.session, policy, natural_key, values, as_of)
            return await self.writer.apply_change(
                policy.dimension_type, natural_key, values, as_of, uow=work
            )

    async def lookup(
        self,
        dimension_type: Any,
        natural_key: str,
        as_of_time: Optional[datetime] = None,
        *,
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        """
        Read-only resolution of natural_key as of as_of_time (current when None).

        Raises:
            NoVersionAtTimeError: No version covers as_of_time
        """
        version = await self.version_at(dimension_type, natural_key, as_of_time, uow=uow)
        return version.surrogate_key

    async def version_at(
        self,
        dimension_type: Any,
        natural_key: str,
        as_of_time: Optional[datetime] = None,
        *,
        uow: Optional[UnitOfWork] = None,
    ) -> DimensionVersion:
        """Snapshot of the version valid at as_of_time (current when None)"""
        policy = self.policies.get(dimension_type)
        natural_key = _require_key(policy, natural_key)
        as_of = to_naive_utc(as_of_time)

        async with open_unit_of_work(self.session_factory, self.locks, uow=uow) as work:
            if as_of is None:
                row = await VersionStore.current(work.session, policy, natural_key)
            else:
                row = await VersionStore.at(work.session, policy, natural_key, as_of)
            if row is None:
                raise NoVersionAtTimeError(policy.dimension_type.value, natural_key, as_of)
            return DimensionVersion.from_row(policy, row)

    async def history(
        self,
        dimension_type: Any,
        natural_key: str,
        *,
        uow: Optional[UnitOfWork] = None,
    ) -> List[DimensionVersion]:
        """All versions of natural_key ordered by effective_date"""
        policy = self.policies.get(dimension_type)
        async with open_unit_of_work(self.session_factory, self.locks, uow=uow) as work:
            rows = await VersionStore.history(work.session, policy, natural_key)
            return [DimensionVersion.from_row(policy, row) for row in rows]

    async def _resolve_historical(
        self,
        session: AsyncSession,
        policy: DimensionPolicy,
        natural_key: str,
        values: Dict[str, Any],
        as_of: datetime,
    ) -> int:
        row = await VersionStore.at(session, policy, natural_key, as_of)
        if row is None:
            raise NoVersionAtTimeError(policy.dimension_type.value, natural_key, as_of)

        type2, _ = policy.split_changes(row, values)
        if type2:
            # History is not rewritten by late events
            logger.warning(
                "Back-loaded record differs from historical version",
                dimension=policy.dimension_type.value,
                natural_key=natural_key,
                surrogate_key=getattr(row, policy.surrogate_key),
                as_of=as_of.isoformat(),
                differing=sorted(type2),
            )
        return getattr(row, policy.surrogate_key)


def _require_key(policy: DimensionPolicy, natural_key: Any) -> str:
    if natural_key is None or not str(natural_key).strip():
        raise ValidationError(
            f"{policy.natural_key} is required", field=policy.natural_key
        )
    return str(natural_key).strip()


def _require_as_of(value: Any) -> datetime:
    if value is None:
        raise ValidationError("as_of_time is required", field="as_of_time")
    try:
        return to_naive_utc(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid as_of_time: {value!r}", field="as_of_time") from e
