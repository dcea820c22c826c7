"""
Dimension Loader

Applies upstream dimension change events (e.g. a station upgraded to a
faster charger) through the SCD2 writer, one event or one frame at a time.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import polars as pl
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.logging import load_context
from src.database.connection import get_session_factory
from src.dimensions.exceptions import LoadError
from src.dimensions.policies import DimensionPolicy
from src.dimensions.resolver import DimensionResolver
from src.dimensions.unit_of_work import open_unit_of_work
from src.dimensions.writer import VersionStore
from .events import DimensionChangeEvent, parse_event

logger = structlog.get_logger(__name__)


class DimensionLoader:
    """Loads dimension change events for station, customer and vehicle"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        resolver: Optional[DimensionResolver] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.resolver = resolver or DimensionResolver(self.session_factory)

    @property
    def writer(self):
        return self.resolver.writer

    async def load_change(
        self,
        event: Union[DimensionChangeEvent, Dict[str, Any]],
        timeout: Optional[float] = None,
    ) -> int:
        """
        Apply one change event and return the surrogate key that is current
        for the natural key afterwards.

        Unknown natural keys get their first version at effective_time.
        """
        change = parse_event(DimensionChangeEvent, event)
        policy = self.resolver.policies.get(change.dimension_type)

        with load_context(change_dimension=policy.dimension_type.value, change_key=change.natural_key):
            return await self._apply(policy, change, timeout)

    async def _apply(
        self,
        policy: DimensionPolicy,
        change: DimensionChangeEvent,
        timeout: Optional[float],
    ) -> int:
        async with open_unit_of_work(self.session_factory, self.resolver.locks, timeout) as uow:
            await uow.locks.acquire(VersionStore.lock_key(policy, change.natural_key))
            current = await VersionStore.current(uow.session, policy, change.natural_key, for_update=True)
            if current is None:
                return await self.writer.create_initial_version(
                    change.dimension_type, change.natural_key, change.attributes,
                    change.effective_time, uow=uow,
                )
            return await self.writer.apply_change(
                change.dimension_type, change.natural_key, change.attributes,
                change.effective_time, uow=uow,
            )

    async def load_frame(
        self,
        dimension_type: Any,
        df: pl.DataFrame,
        effective_time: Optional[datetime] = None,
        effective_column: str = "effective_time",
    ) -> Dict[str, Any]:
        """
        Apply every row of df as a change event, in effective-time order.

        Rows take their time from effective_column, or effective_time when the
        column is absent. Failed rows are reported, not raised.
        """
        policy = self.resolver.policies.get(dimension_type)
        if policy.natural_key not in df.columns:
            raise ValueError(f"Frame has no '{policy.natural_key}' column")
        if effective_column not in df.columns and effective_time is None:
            raise ValueError(f"Frame has no '{effective_column}' column and no effective_time given")

        if effective_column in df.columns:
            df = df.sort(effective_column)

        attribute_columns = [c for c in df.columns if c in policy.attributes]
        loaded = 0
        errors: List[Dict[str, Any]] = []

        for row in df.iter_rows(named=True):
            natural_key = row[policy.natural_key]
            event = {
                "dimension_type": policy.dimension_type.value,
                "natural_key": natural_key,
                "attributes": {c: row[c] for c in attribute_columns if row[c] is not None},
                "effective_time": row.get(effective_column) or effective_time,
            }
            try:
                await self.load_change(event)
                loaded += 1
            except LoadError as e:
                errors.append({"natural_key": natural_key, **e.to_dict()})

        logger.info(
            "Dimension frame loaded",
            dimension=policy.dimension_type.value,
            rows=len(df),
            loaded=loaded,
            failed=len(errors),
        )
        return {"rows": len(df), "loaded": loaded, "errors": errors}
