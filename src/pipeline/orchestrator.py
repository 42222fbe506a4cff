# ========================
# src/pipeline/orchestrator.py
# ========================

"""
Pipeline Orchestrator Module

Coordinates parsing, header validation, coercion, progress reporting,
backpressure and result caching for one CSV source.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

from .cache import CacheStore, InMemoryCacheStore, cache_key, deserialize_result, serialize_result
from .coercion import FieldCoercer
from .errors import (
    CacheReadCorruption, CacheWriteError, IngestionError, IngestionErrorKind, SourceReadError
)
from .ingestion import Batch, ChunkParser, CSVSource, ParseOptions
from .models import (
    IngestionResult, IngestionStats, ProgressSnapshot, ProgressStatus, RowError, TypedRow
)
from .validation import REQUIRED_COLUMNS, SchemaValidator
from ..utils.config import Config
from ..utils.performance_monitor import PerformanceMonitor, monitor_performance

logger = logging.getLogger(__name__)

SourceLike = Union[CSVSource, str, Path]
ProgressCallback = Callable[[ProgressSnapshot], None]
RowValidator = Callable[[TypedRow], bool]

ROW_VALIDATION_FAILED = "Row validation failed"


@dataclass
class IngestionOptions:
    """
    Per-call ingestion options.

    batch_size, delimiter and the memory settings fall back to the pipeline
    configuration when None. A memory threshold of 0 disables memory pauses.
    validate_row rejects typed rows; rejected rows are reported as row errors
    and left out of the result, and the cache is bypassed for such runs.
    """
    batch_size: Optional[int] = None
    required_columns: Sequence[str] = REQUIRED_COLUMNS
    on_progress: Optional[ProgressCallback] = None
    delimiter: Optional[str] = None
    use_cache: bool = True
    memory_threshold_bytes: Optional[int] = None
    memory_cooldown_seconds: Optional[float] = None
    validate_row: Optional[RowValidator] = None

    def __post_init__(self):
        if self.batch_size is not None and self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.memory_threshold_bytes is not None and self.memory_threshold_bytes < 0:
            raise ValueError(f"memory_threshold_bytes must be non-negative, got {self.memory_threshold_bytes}")
        if self.memory_cooldown_seconds is not None and self.memory_cooldown_seconds < 0:
            raise ValueError(f"memory_cooldown_seconds must be non-negative, got {self.memory_cooldown_seconds}")


class IngestionRun:
    """
    One ingestion of one source.

    batches() drives the run: it yields the undrained typed rows each time
    the backpressure threshold is reached (the parser stays paused until the
    consumer asks for more) and once more for any remainder. When the
    generator is exhausted, `result` holds the IngestionResult.

    When resident memory exceeds the memory threshold the parser is paused
    and `cooldown_seconds` is set for the duration of the yield; consumers
    wait that long before asking for more (possibly empty) rows.
    """

    def __init__(self, pipeline: 'IngestionPipeline', source: SourceLike, options: IngestionOptions):
        config = pipeline.config
        self.source = source
        self.options = options
        self.batch_size = options.batch_size or config.DEFAULT_BATCH_SIZE
        self.memory_threshold_bytes = (
            options.memory_threshold_bytes
            if options.memory_threshold_bytes is not None
            else config.MEMORY_THRESHOLD_MB * 1024 * 1024
        )
        self.memory_cooldown_seconds = (
            options.memory_cooldown_seconds
            if options.memory_cooldown_seconds is not None
            else config.MEMORY_COOLDOWN_SECONDS
        )
        self.use_cache = options.use_cache and options.validate_row is None
        self.cooldown_seconds = 0.0
        self.parser = ChunkParser(ParseOptions(
            delimiter=options.delimiter or config.CSV_DELIMITER,
            batch_size=self.batch_size
        ))
        self.coercer = FieldCoercer()
        self.validator = SchemaValidator(options.required_columns)
        self.progress = ProgressSnapshot()
        self.cache_key: Optional[str] = None
        self.result: Optional[IngestionResult] = None

        self._pipeline = pipeline
        self._rows: List[TypedRow] = []
        self._errors: List[RowError] = []
        self._max_undrained = 0
        self._memory_pauses = 0
        self._started = False
        self._aborted = False

    def batches(self) -> Iterator[List[TypedRow]]:
        """
        Start the run and return the drain generator.

        Raises:
            RuntimeError: If the run was already started
        """
        if self._started:
            raise RuntimeError("IngestionRun can only be driven once")
        self._started = True
        return self._run()

    def abort(self) -> None:
        """Stop the run; the parser moves to FAILED and iteration raises ABORTED."""
        self._aborted = True
        self.parser.abort()

    def _run(self) -> Iterator[List[TypedRow]]:
        self._check_aborted()
        try:
            source = self._resolve_source()
        except SourceReadError as e:
            self._fail(None)
            raise IngestionError(IngestionErrorKind.IO_FAILURE, str(e)) from e

        self.cache_key = cache_key(source.identity, self._pipeline.config.CACHE_KEY_PREFIX)
        if self.use_cache:
            cached = self._pipeline._read_cache(self.cache_key)
            if cached is not None:
                rows, errors = cached
                if rows:
                    yield list(rows)
                if self._aborted:
                    self._fail(None)
                    self._check_aborted()
                self._complete_from_cache(rows, errors)
                return

        logger.info(f"Starting ingestion of {source!r} with batch size {self.batch_size}")
        log_interval = self._pipeline.config.LOG_BATCH_INTERVAL
        with monitor_performance(f"Ingestion[{source.name}]", log_interval) as monitor:
            try:
                yield from self._parse(source, monitor)
            except IngestionError:
                self._fail(monitor)
                raise
            except SourceReadError as e:
                self._fail(monitor)
                raise IngestionError(IngestionErrorKind.IO_FAILURE, str(e)) from e
            finally:
                if not self.parser.is_terminal:
                    self.parser.abort()

        self._complete(monitor)

    def _resolve_source(self) -> CSVSource:
        if isinstance(self.source, CSVSource):
            return self.source
        return CSVSource.from_path(self.source)

    def _parse(self, source: CSVSource, monitor: PerformanceMonitor) -> Iterator[List[TypedRow]]:
        self.parser.start(source)
        self.validator.validate(self.parser.headers)

        pending: List[TypedRow] = []
        while True:
            batch = self.parser.next_batch()
            if batch is None:
                break

            self._consume(batch, pending)
            memory = monitor.update_progress(len(batch.rows))
            processed = len(self._rows)
            self._emit(ProgressSnapshot(
                processed_rows=processed,
                total_rows=processed if batch.is_last else None,
                current_batch=batch.index,
                memory_usage_bytes=memory,
                error_count=len(self._errors),
                status=ProgressStatus.PROCESSING
            ))
            self._check_aborted()

            memory_pressure = (
                bool(self.memory_threshold_bytes)
                and memory > self.memory_threshold_bytes
                and not batch.is_last
            )
            if memory_pressure or len(pending) >= self.batch_size or (pending and not batch.is_last):
                self._max_undrained = max(self._max_undrained, len(pending))
                self.parser.pause()
                if memory_pressure:
                    self._memory_pauses += 1
                    self.cooldown_seconds = self.memory_cooldown_seconds
                    logger.warning(
                        f"Memory usage {memory / (1024 * 1024):.2f} MB above threshold "
                        f"{self.memory_threshold_bytes / (1024 * 1024):.2f} MB, parser paused"
                    )
                drained, pending = pending, []
                yield drained
                self.cooldown_seconds = 0.0
                self._check_aborted()
                self.parser.resume()

        if pending:
            self._max_undrained = max(self._max_undrained, len(pending))
            yield pending
            self._check_aborted()

    def _consume(self, batch: Batch, pending: List[TypedRow]) -> None:
        """Coerce one batch, collecting rows and errors in row-index order."""
        batch_errors = list(batch.errors)
        for raw, row_index in zip(batch.rows, batch.row_indices):
            typed = self.coercer.coerce(raw)
            for column, message in self.coercer.find_issues(typed):
                batch_errors.append(RowError(row_index, message, column))
            if self.options.validate_row is not None and not self.options.validate_row(typed):
                batch_errors.append(RowError(row_index, ROW_VALIDATION_FAILED))
                continue
            self._rows.append(typed)
            pending.append(typed)

        batch_errors.sort(key=lambda error: error.row_index)
        self._errors.extend(batch_errors)
        logger.debug(
            f"Batch {batch.index}: {len(batch.rows)} rows coerced, {len(batch_errors)} row errors"
        )

    def _complete(self, monitor: PerformanceMonitor) -> None:
        rows, errors = self._rows, self._errors
        if self.use_cache:
            self._pipeline._write_cache(self.cache_key, rows, errors)

        stats = IngestionStats(
            total_processed=len(rows),
            error_count=len(errors),
            batch_count=self.parser.current_batch,
            processing_time_seconds=monitor.elapsed_seconds,
            memory_peak_bytes=monitor.peak_memory_bytes,
            max_undrained_rows=self._max_undrained,
            memory_pauses=self._memory_pauses,
            from_cache=False
        )
        self.result = IngestionResult(rows=rows, errors=errors, stats=stats)
        self._emit(ProgressSnapshot(
            processed_rows=len(rows),
            total_rows=len(rows),
            current_batch=self.parser.current_batch,
            memory_usage_bytes=monitor.current_memory_bytes(),
            error_count=len(errors),
            status=ProgressStatus.COMPLETED
        ))
        self._log_final_summary()

    def _complete_from_cache(self, rows: List[TypedRow], errors: List[RowError]) -> None:
        # No progress callback on a cache hit
        self.result = IngestionResult(
            rows=rows,
            errors=errors,
            stats=IngestionStats(total_processed=len(rows), error_count=len(errors), from_cache=True)
        )
        self.progress = ProgressSnapshot(
            processed_rows=len(rows),
            total_rows=len(rows),
            error_count=len(errors),
            status=ProgressStatus.COMPLETED
        )
        logger.info(f"Served {len(rows)} rows for '{self.cache_key}' from cache")

    def _fail(self, monitor: Optional[PerformanceMonitor]) -> None:
        processed = len(self._rows)
        self._rows = []
        self._emit(ProgressSnapshot(
            processed_rows=processed,
            total_rows=None,
            current_batch=self.parser.current_batch,
            memory_usage_bytes=monitor.current_memory_bytes() if monitor else 0,
            error_count=len(self._errors),
            status=ProgressStatus.FAILED
        ))

    def _check_aborted(self) -> None:
        if self._aborted:
            raise IngestionError(IngestionErrorKind.ABORTED, "Ingestion aborted by caller")

    def _emit(self, snapshot: ProgressSnapshot) -> None:
        self.progress = snapshot
        if self.options.on_progress is not None:
            self.options.on_progress(snapshot)

    def _log_final_summary(self) -> None:
        """Log final ingestion summary."""
        stats = self.result.stats
        logger.info("=" * 60)
        logger.info("INGESTION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Cache key: {self.cache_key}")
        logger.info(f"Rows ingested: {stats.total_processed:,}")
        logger.info(f"Row errors: {stats.error_count:,}")
        logger.info(f"Batches: {stats.batch_count}")
        logger.info(f"Processing time: {stats.processing_time_seconds:.2f} seconds")
        logger.info(f"Peak memory: {stats.memory_peak_bytes / (1024 * 1024):.2f} MB")
        logger.info("=" * 60)


class IngestionPipeline:
    """
    Orchestrates the ingestion pipeline.
    The cache store is injected; each call gets its own parser state.
    """

    def __init__(self,
                 cache: Optional[CacheStore] = None,
                 config: Optional[Config] = None):
        """
        Initialize the ingestion pipeline.

        Args:
            cache (CacheStore): Result cache (a private in-memory store if omitted)
            config (Config): Configuration object
        """
        self.config = config or Config()
        self.cache = cache if cache is not None else InMemoryCacheStore()
        logger.info(f"IngestionPipeline initialized with {type(self.cache).__name__}")

    def start(self, source: SourceLike, options: Optional[IngestionOptions] = None) -> IngestionRun:
        """Create a run for incremental consumption via IngestionRun.batches()."""
        return IngestionRun(self, source, options or IngestionOptions())

    def process(self, source: SourceLike, options: Optional[IngestionOptions] = None) -> IngestionResult:
        """
        Ingest a source to completion.

        Args:
            source: A CSVSource or a path to a CSV file
            options (IngestionOptions): Batch size, required columns, progress callback

        Returns:
            IngestionResult: Typed rows and non-fatal row errors

        Raises:
            IngestionError: On missing columns or source I/O failure
        """
        run = self.start(source, options)
        for _ in run.batches():
            if run.cooldown_seconds:
                time.sleep(run.cooldown_seconds)
        return run.result

    async def process_async(self,
                            source: SourceLike,
                            options: Optional[IngestionOptions] = None) -> IngestionResult:
        """Like process(), yielding to the event loop at every backpressure point."""
        run = self.start(source, options)
        for _ in run.batches():
            await asyncio.sleep(run.cooldown_seconds)
        return run.result

    def cache_key_for(self, source: SourceLike) -> str:
        """Cache key of a source under the configured prefix."""
        if not isinstance(source, CSVSource):
            source = CSVSource.from_path(source)
        return cache_key(source.identity, self.config.CACHE_KEY_PREFIX)

    def evict(self, source: SourceLike) -> bool:
        """Remove the cached result for a source. Returns True if one existed."""
        key = self.cache_key_for(source)
        removed = self.cache.evict(key)
        logger.info(f"Evicted cache entry '{key}': {removed}")
        return removed

    def validate_input(self, input_file: Union[str, Path]) -> bool:
        """
        Validate input file exists and is readable.

        Returns:
            bool: True if input is valid
        """
        input_path = Path(input_file)
        if not input_path.exists():
            logger.error(f"Input file does not exist: {input_file}")
            return False

        if not input_path.is_file():
            logger.error(f"Input path is not a file: {input_file}")
            return False

        try:
            with open(input_path, 'r', encoding='utf-8-sig') as f:
                f.readline()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Cannot read input file: {e}")
            return False

        logger.info(f"Input validation passed: {input_file}")
        return True

    def _read_cache(self, key: str) -> Optional[Tuple[List[TypedRow], List[RowError]]]:
        payload = self.cache.get(key)
        if payload is None:
            logger.info(f"Cache miss for '{key}'")
            return None
        try:
            cached = deserialize_result(payload)
        except CacheReadCorruption as e:
            logger.warning(f"Corrupt cache entry '{key}' evicted: {e}")
            self.cache.evict(key)
            return None
        logger.info(f"Cache hit for '{key}'")
        return cached

    def _write_cache(self, key: str, rows: List[TypedRow], errors: List[RowError]) -> None:
        try:
            self.cache.put(key, serialize_result(rows, errors))
        except CacheWriteError as e:
            logger.warning(f"Failed to cache results for '{key}': {e}")
