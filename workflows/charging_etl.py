"""
Prefect Workflow Orchestration - Charging ETL

Batch pipeline for the charging warehouse:
- Seed the calendar (dim_time) for the configured range
- Load station/customer/vehicle snapshots and change files
- Load charging session files through the fact loader
- Replay quarantined sessions
- Report daily totals
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

import polars as pl
from prefect import flow, get_run_logger, task

from src.config import get_settings
from src.config.logging import configure_logging
from src.database.connection import check_database_health, close_database, get_db, init_database
from src.ingestion.batch_loader import BatchLoader, FileFormat
from src.ingestion.dimension_loader import DimensionLoader
from src.ingestion.fact_loader import FactLoader
from src.ingestion.seed_db import seed_time_dimension
from src.reporting.queries import daily_charging_summary, fetch_frame

DIMENSION_FILES = {
    "station": "stations.csv",
    "customer": "customers.csv",
    "vehicle": "vehicles.csv",
}


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="check_warehouse",
    description="Fail fast when the warehouse database is unreachable",
)
async def check_warehouse() -> dict:
    logger = get_run_logger()
    health = await check_database_health()
    if health["status"] != "healthy":
        raise RuntimeError(f"Warehouse database unavailable: {health.get('error')}")
    logger.info(f"Warehouse reachable in {health['latency_ms']}ms")
    return health


@task(
    name="seed_calendar",
    description="Insert missing dim_time rows for the configured range",
    retries=2,
    retry_delay_seconds=30,
)
async def seed_calendar() -> int:
    logger = get_run_logger()
    inserted = await seed_time_dimension()
    logger.info(f"Calendar seeded: {inserted} new days")
    return inserted


@task(
    name="load_dimension_file",
    description="Apply a dimension snapshot or change file",
    retries=2,
    retry_delay_seconds=30,
)
async def load_dimension_file(
    dimension_type: str,
    path: str,
    effective_time: Optional[datetime] = None,
) -> dict:
    """
    Load one dimension file.

    Files with an effective_time column are change logs; others are
    snapshots applied at effective_time.
    """
    logger = get_run_logger()
    df = pl.read_csv(path, try_parse_dates=True)
    summary = await DimensionLoader().load_frame(dimension_type, df, effective_time=effective_time)
    logger.info(
        f"{dimension_type} file {Path(path).name}: "
        f"{summary['loaded']}/{summary['rows']} rows applied"
    )
    return summary


@task(
    name="load_session_files",
    description="Load charging session files through the fact loader",
)
async def load_session_files(source_dir: str, file_format: str = "csv", pattern: str = "sessions*") -> dict:
    logger = get_run_logger()
    loader = BatchLoader()
    results = await loader.load_directory(source_dir, FileFormat(file_format), pattern=pattern)

    totals = {
        "files": len(results),
        "loaded": sum(r.loaded for r in results),
        "duplicates": sum(r.duplicates for r in results),
        "quarantined": sum(r.quarantined for r in results),
        "rejected": sum(r.rejected for r in results),
        "retry_exhausted": sum(r.retry_exhausted for r in results),
        "dead_letter_files": [r.dead_letter_file for r in results if r.dead_letter_file],
    }
    logger.info(
        f"Session load complete: {totals['loaded']} loaded, "
        f"{totals['duplicates']} duplicates, {totals['quarantined']} quarantined"
    )
    return totals


@task(
    name="replay_quarantine",
    description="Re-attempt quarantined sessions",
)
async def replay_quarantine(limit: int = 500) -> dict:
    logger = get_run_logger()
    results = await FactLoader().replay_quarantined(limit=limit)
    recovered = sum(1 for r in results if r.fact_key is not None)
    logger.info(f"Quarantine replay: {recovered}/{len(results)} recovered")
    return {"attempted": len(results), "recovered": recovered}


@task(
    name="daily_summary",
    description="Daily completed-session totals",
)
async def daily_summary() -> list:
    async with get_db() as db:
        df = await fetch_frame(db, daily_charging_summary())
    return df.to_dicts()


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(alert_type: str, message: str, severity: str = "info") -> None:
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="charging_batch_etl",
    description="Batch ETL for the EV charging warehouse",
)
async def charging_batch_etl(
    source_dir: str = "./data/generated",
    database_url: Optional[str] = None,
    replay: bool = True,
) -> dict:
    """
    Batch ETL pipeline.

    Steps:
    1. Check the warehouse is reachable, then seed the calendar
    2. Load dimension snapshots at the seed effective date
    3. Apply station change logs
    4. Load session files
    5. Replay quarantined sessions
    """
    logger = get_run_logger()
    configure_logging()
    calendar = get_settings().calendar
    seed_time = datetime.combine(calendar.seed_effective_date, datetime.min.time())
    source = Path(source_dir)

    results = {"source_dir": str(source), "steps": {}}
    await init_database(database_url, create_tables=True)

    try:
        results["steps"]["health"] = await check_warehouse()
        results["steps"]["calendar"] = await seed_calendar()

        for dimension_type, file_name in DIMENSION_FILES.items():
            path = source / file_name
            if path.exists():
                results["steps"][f"load_{dimension_type}"] = await load_dimension_file(
                    dimension_type, str(path), seed_time
                )

        changes = source / "station_changes.csv"
        if changes.exists():
            results["steps"]["station_changes"] = await load_dimension_file("station", str(changes))

        sessions = await load_session_files(str(source))
        results["steps"]["sessions"] = sessions

        if replay and sessions["quarantined"]:
            results["steps"]["replay"] = await replay_quarantine()

        results["steps"]["daily_summary_days"] = len(await daily_summary())

        if sessions["quarantined"] or sessions["rejected"] or sessions["retry_exhausted"]:
            await send_alert(
                alert_type="Sessions Not Loaded",
                message=(
                    f"{sessions['quarantined']} quarantined, {sessions['rejected']} rejected, "
                    f"{sessions['retry_exhausted']} out of retries"
                ),
                severity="warning",
            )
        results["status"] = "success"

    except Exception as e:
        logger.error(f"ETL pipeline failed: {e}")
        await send_alert(
            alert_type="ETL Failed",
            message=f"Charging batch ETL failed: {str(e)}",
            severity="critical",
        )
        results["status"] = "failed"
        results["error"] = str(e)
        raise
    finally:
        await close_database()

    return results


@flow(
    name="quarantine_replay",
    description="Scheduled replay of quarantined sessions",
)
async def quarantine_replay(limit: int = 500, database_url: Optional[str] = None) -> dict:
    configure_logging()
    await init_database(database_url)
    try:
        return await replay_quarantine(limit)
    finally:
        await close_database()


if __name__ == "__main__":
    import asyncio

    asyncio.run(charging_batch_etl())
