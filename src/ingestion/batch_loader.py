"""
Batch Session Loader

File ingestion for charging session events in CSV, JSON Lines, JSON or
Parquet. Supports:
- Frame-level validation report before loading
- Concurrent loading over a bounded worker pool
- Retry with exponential backoff on lock contention
- Dead-letter Parquet files for rows that did not load
- File hashing for audit

Nested dimension attributes travel as dotted columns in flat formats
(``station.max_power_kw``) and as objects in JSON formats.
"""

import asyncio
import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import polars as pl
import structlog
from pydantic import BaseModel, Field

from src.config import get_settings
from src.config.logging import load_context
from src.database.models import DimensionType
from src.quality.validators import DataValidator, create_sessions_validator
from .fact_loader import FactLoader, LoadOutcome, SessionLoadResult

logger = structlog.get_logger(__name__)

NESTED_PREFIXES = tuple(f"{d.value}." for d in DimensionType)


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    JSON = "json"
    JSONL = "jsonl"
    PARQUET = "parquet"


class LoadStatus(str, Enum):
    """Batch load status"""
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class BatchFileConfig:
    """Configuration for one batch file"""
    file_path: Union[str, Path]
    file_format: FileFormat
    delimiter: str = ","
    encoding: str = "utf8"
    skip_rows: int = 0
    null_values: List[str] = field(default_factory=lambda: ["", "NULL", "null", "None", "NA", "N/A"])
    validate: bool = True


class BatchLoadResult(BaseModel):
    """Summary of one batch"""
    source: str
    status: LoadStatus
    rows_read: int = 0
    loaded: int = 0
    duplicates: int = 0
    quarantined: int = 0
    rejected: int = 0
    retry_exhausted: int = 0
    error_message: Optional[str] = None
    validation: Optional[Dict[str, Any]] = None
    dead_letter_file: Optional[str] = None
    file_hash: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    load_duration_seconds: float = 0
    results: List[SessionLoadResult] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.quarantined + self.rejected + self.retry_exhausted


def row_to_event(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn one flat frame row into a session event dict.

    ``station.max_power_kw`` becomes ``{"station": {"max_power_kw": ...}}``.
    Null cells count as not supplied, and a snapshot with nothing supplied is
    dropped so the dimension is looked up rather than compared.
    """
    event: Dict[str, Any] = {}
    nested: Dict[str, Dict[str, Any]] = {}

    for column, value in row.items():
        if column.startswith(NESTED_PREFIXES):
            prefix, attribute = column.split(".", 1)
            if value is not None:
                nested.setdefault(prefix, {})[attribute] = value
        elif isinstance(value, dict):
            supplied = {k: v for k, v in value.items() if v is not None}
            if supplied:
                nested.setdefault(column, {}).update(supplied)
        elif value is not None:
            event[column] = value

    event.update(nested)
    return event


class BatchLoader:
    """
    Loads batches of session events through the fact loader.

    Example:
        loader = BatchLoader()
        config = BatchFileConfig(
            file_path="data/raw/sessions.csv",
            file_format=FileFormat.CSV,
        )
        result = await loader.load(config)
    """

    def __init__(
        self,
        fact_loader: Optional[FactLoader] = None,
        max_workers: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        dead_letter_path: Optional[Union[str, Path]] = None,
        validator: Optional[DataValidator] = None,
    ):
        loader_settings = get_settings().loader
        self.fact_loader = fact_loader or FactLoader()
        self.max_workers = max_workers or loader_settings.max_workers
        self.max_retries = loader_settings.max_retries if max_retries is None else max_retries
        self.retry_backoff_seconds = (
            loader_settings.retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )
        self.dead_letter_path = Path(dead_letter_path or loader_settings.dead_letter_path)
        self.validator = validator or create_sessions_validator()

    def _compute_file_hash(self, file_path: Path) -> str:
        """MD5 of the file for the audit trail"""
        hash_md5 = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()

    def _read_csv(self, config: BatchFileConfig) -> pl.DataFrame:
        return pl.read_csv(
            config.file_path,
            separator=config.delimiter,
            encoding=config.encoding,
            skip_rows=config.skip_rows,
            null_values=config.null_values,
            try_parse_dates=True,
        )

    def _read_json(self, config: BatchFileConfig) -> pl.DataFrame:
        return pl.read_json(config.file_path)

    def _read_jsonl(self, config: BatchFileConfig) -> pl.DataFrame:
        return pl.read_ndjson(config.file_path)

    def _read_parquet(self, config: BatchFileConfig) -> pl.DataFrame:
        return pl.read_parquet(config.file_path)

    def read_file(self, config: BatchFileConfig) -> pl.DataFrame:
        """Read a batch file into a frame according to its format"""
        readers = {
            FileFormat.CSV: self._read_csv,
            FileFormat.JSON: self._read_json,
            FileFormat.JSONL: self._read_jsonl,
            FileFormat.PARQUET: self._read_parquet,
        }
        reader = readers.get(config.file_format)
        if not reader:
            raise ValueError(f"Unsupported file format: {config.file_format}")
        df = reader(config)
        # Rows with every column null carry no event
        return df.filter(~pl.all_horizontal(pl.all().is_null()))

    async def load(self, config: BatchFileConfig) -> BatchLoadResult:
        """
        Load a batch file.

        Missing or unreadable files produce a FAILED result; row failures
        produce a PARTIAL result and a dead-letter file.
        """
        file_path = Path(config.file_path)
        started_at = datetime.utcnow()
        logger.info("Starting batch load", file=str(file_path), format=config.file_format.value)

        try:
            if not file_path.exists():
                raise FileNotFoundError(f"File not found: {file_path}")
            file_hash = self._compute_file_hash(file_path)
            df = self.read_file(config)
        except (OSError, ValueError, pl.exceptions.PolarsError) as e:
            completed_at = datetime.utcnow()
            logger.error("Batch load failed", error=str(e), file=str(file_path))
            return BatchLoadResult(
                source=str(file_path),
                status=LoadStatus.FAILED,
                error_message=str(e),
                started_at=started_at,
                completed_at=completed_at,
                load_duration_seconds=(completed_at - started_at).total_seconds(),
            )

        result = await self.load_frame(df, source=file_path.stem, validate=config.validate)
        result.source = str(file_path)
        result.file_hash = file_hash
        result.started_at = started_at
        result.load_duration_seconds = (result.completed_at - started_at).total_seconds()
        return result

    async def load_frame(
        self,
        df: pl.DataFrame,
        source: str = "frame",
        validate: bool = True,
    ) -> BatchLoadResult:
        """Load every row of df as a session event"""
        started_at = datetime.utcnow()
        validation = self.validator.validate(df).to_dict() if validate else None

        events = [row_to_event(row) for row in df.iter_rows(named=True)]
        # Worker tasks copy the context, so each session line names its batch
        with load_context(batch_source=source):
            results = await self.load_events(events)

        result = self._summarize(source, results, started_at)
        result.validation = validation
        failed_mask = [r.status not in (LoadOutcome.LOADED, LoadOutcome.DUPLICATE) for r in results]
        if any(failed_mask):
            result.dead_letter_file = str(self._write_dead_letter(df, failed_mask, results, source))
        return result

    async def load_events(self, events: Iterable[Any]) -> List[SessionLoadResult]:
        """
        Load events concurrently, at most max_workers at a time.

        Results come back in input order.
        """
        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(event: Any) -> SessionLoadResult:
            async with semaphore:
                return await self._load_with_retry(event)

        return list(await asyncio.gather(*(worker(event) for event in events)))

    async def _load_with_retry(self, event: Any) -> SessionLoadResult:
        attempt = 0
        while True:
            result = await self.fact_loader.try_load_session(event)
            if result.status != LoadOutcome.RETRYABLE or attempt >= self.max_retries:
                return result
            delay = self.retry_backoff_seconds * (2 ** attempt)
            attempt += 1
            logger.info(
                "Retrying session after contention",
                session_id=result.session_id,
                attempt=attempt,
                delay_seconds=delay,
            )
            await asyncio.sleep(delay)

    def _summarize(
        self,
        source: str,
        results: List[SessionLoadResult],
        started_at: datetime,
    ) -> BatchLoadResult:
        counts = {outcome: 0 for outcome in LoadOutcome}
        for r in results:
            counts[r.status] += 1

        failed = (
            counts[LoadOutcome.QUARANTINED]
            + counts[LoadOutcome.REJECTED]
            + counts[LoadOutcome.RETRYABLE]
        )
        if failed == 0:
            status = LoadStatus.COMPLETED
        elif failed == len(results):
            status = LoadStatus.FAILED
        else:
            status = LoadStatus.PARTIAL

        completed_at = datetime.utcnow()
        result = BatchLoadResult(
            source=source,
            status=status,
            rows_read=len(results),
            loaded=counts[LoadOutcome.LOADED],
            duplicates=counts[LoadOutcome.DUPLICATE],
            quarantined=counts[LoadOutcome.QUARANTINED],
            rejected=counts[LoadOutcome.REJECTED],
            retry_exhausted=counts[LoadOutcome.RETRYABLE],
            started_at=started_at,
            completed_at=completed_at,
            load_duration_seconds=(completed_at - started_at).total_seconds(),
            results=results,
        )
        logger.info(
            "Batch load completed",
            source=source,
            status=status.value,
            rows=result.rows_read,
            loaded=result.loaded,
            duplicates=result.duplicates,
            quarantined=result.quarantined,
            rejected=result.rejected,
            retry_exhausted=result.retry_exhausted,
        )
        return result

    def _write_dead_letter(
        self,
        df: pl.DataFrame,
        failed_mask: List[bool],
        results: List[SessionLoadResult],
        source: str,
    ) -> Path:
        """Write rows that did not load, with their errors, to a Parquet file"""
        self.dead_letter_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")
        dead_letter_file = self.dead_letter_path / f"{source}_{timestamp}.parquet"

        failures = [r for r, failed in zip(results, failed_mask) if failed]
        failed_df = df.filter(pl.Series("failed", failed_mask)).with_columns([
            pl.Series("_error_type", [r.error_type for r in failures], dtype=pl.Utf8),
            pl.Series("_error_field", [r.error_field for r in failures], dtype=pl.Utf8),
            pl.Series("_error_message", [r.message for r in failures], dtype=pl.Utf8),
            pl.lit(datetime.utcnow()).alias("_failed_at"),
        ])
        failed_df.write_parquet(dead_letter_file)

        logger.warning(
            "Written failed records to dead letter queue",
            file=str(dead_letter_file),
            records=len(failed_df),
        )
        return dead_letter_file

    async def load_directory(
        self,
        directory: Union[str, Path],
        file_format: FileFormat,
        pattern: str = "*",
        **kwargs,
    ) -> List[BatchLoadResult]:
        """Load every matching file in directory, in name order"""
        directory = Path(directory)
        files = sorted(directory.glob(f"{pattern}.{file_format.value}"))
        logger.info(f"Found {len(files)} files to load", directory=str(directory), pattern=pattern)

        results = []
        for file_path in files:
            config = BatchFileConfig(file_path=file_path, file_format=file_format, **kwargs)
            results.append(await self.load(config))

        logger.info(
            "Directory load completed",
            total_files=len(files),
            completed=sum(1 for r in results if r.status == LoadStatus.COMPLETED),
            failed=sum(1 for r in results if r.status == LoadStatus.FAILED),
        )
        return results
