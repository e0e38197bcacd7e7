"""
Migration Orchestrator - drives one end-to-end migration run.

State machine:
    IDLE -> INITIALIZING -> MIGRATING -> FINALIZING -> COMPLETED
    CANCELLED / FAILED are reachable from any non-terminal state.

Per table: skip if the checkpoint already lists it, otherwise provision the
destination table, stream records through the value mapper into the batch
writer, flush the final partial batch and persist the checkpoint before
moving on. Progress is surfaced as a pull-based stream of MigrationEvents;
``run()`` drains the stream and returns the MigrationRunResult.

Failure policy:
- Configuration problems are raised before any log folder, lock or table is touched.
- Row-level mapping errors are logged and cost the whole in-flight batch,
  which is rolled back; the table continues with an empty batch.
- A batch the server rejects for constraint or value errors is rolled back,
  logged and counted; the table continues.
- Any other failed batch commit, DDL failure, unreadable source or lost
  connection fails the table and halts the run. Completed tables stay checkpointed.
- Two source files that map to the same destination table are a configuration error.
- Cancellation rolls back the in-flight batch and leaves the checkpoint at
  the last fully completed table.
"""

import json
import logging
import threading
import time

from contextlib import ExitStack
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..interfaces import SourceCatalogInterface, SourceCursorInterface, SqlChannelInterface
from ..exceptions import (
    BatchCommitError, ConfigurationError, DataMappingError, MigrationCancelledError, MigrationError
)
from ..models import (
    DiscrepancyRecord, EventKind, MigrationCheckpoint, MigrationEvent, MigrationRunResult,
    MigrationSettings, MigrationState, RunStatistics, RunStatus, TableMigrationPlan,
    TableMigrationResult
)
from ..database.batch_writer import BatchWriter
from ..database.sql_channel import PyodbcSqlChannel
from ..database.table_provisioner import TableProvisioner
from ..mapping.value_mapper import ValueMapper
from ..monitoring.performance_monitor import PerformanceMonitor
from ..schema.type_mapper import UNBOUNDED_TEXT, build_table_plan, table_name_for
from ..source.dbf_cursor import DbfSourceCatalog
from ..tracking.checkpoint_manager import CheckpointManager
from ..tracking.discrepancy_tracker import (
    DiscrepancyTracker, SKIP_REASON_DELETED, UNREADABLE_MARKER
)


RUN_LOG_NAME = "migration.log"
ERROR_LOG_NAME = "migration_errors.log"
METRICS_NAME = "metrics.json"
ERROR_RECORDS_FOLDER = "ErrorRecords"
SKIPPED_RECORDS_FOLDER = "SkippedRecords"
RUN_FOLDER_FORMAT = "%Y%m%d_%H%M%S"

_PACKAGE_LOGGER = "dbf_migrator"
_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class CancellationToken:
    """Cooperative cancellation flag shared between the caller and a run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise MigrationCancelledError("Migration cancelled by request", error_category="cancelled")


class _InFlightRecord:
    """Original values of a row waiting in the current batch."""
    __slots__ = ('record_number', 'values', 'is_deleted')

    def __init__(self, record_number: int, values: List[Any], is_deleted: bool):
        self.record_number = record_number
        self.values = values
        self.is_deleted = is_deleted


class MigrationOrchestrator:
    """
    Runs one migration from a folder of legacy tables into a destination database.

    Collaborators are injectable so tests can substitute in-memory fakes; by
    default the source is read with dbfread and the destination is reached
    over pyodbc using ``settings.connection_string``.
    """

    def __init__(self, settings: MigrationSettings,
                 channel: Optional[SqlChannelInterface] = None,
                 catalog: Optional[SourceCatalogInterface] = None,
                 checkpoint_manager: Optional[CheckpointManager] = None,
                 cancellation_token: Optional[CancellationToken] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None):
        """
        Initialize the orchestrator.

        Args:
            settings: Validated run settings
            channel: SQL channel; defaults to a PyodbcSqlChannel built from settings
            catalog: Source catalog; defaults to DbfSourceCatalog
            checkpoint_manager: Checkpoint store; defaults to one rooted at settings.log_root
            cancellation_token: Token the caller can use to cancel the run
            performance_monitor: Metrics collector
        """
        self.settings = settings
        self.logger = logging.getLogger(__name__)
        self.channel = channel or PyodbcSqlChannel(settings.connection_string, timeout=settings.connection_timeout)
        self.catalog = catalog or DbfSourceCatalog(
            encoding=settings.source_encoding,
            char_decode_errors='replace' if settings.safe_mode else 'strict'
        )
        self.checkpoint_manager = checkpoint_manager or CheckpointManager(settings.log_root)
        self.cancellation_token = cancellation_token or CancellationToken()
        self.performance_monitor = performance_monitor or PerformanceMonitor()
        self.provisioner = TableProvisioner(self.channel)

        self.state = MigrationState.IDLE
        self.result: Optional[MigrationRunResult] = None
        self.checkpoint: Optional[MigrationCheckpoint] = None
        self.run_folder: Optional[Path] = None

        self._table_results: List[TableMigrationResult] = []
        self._resources = ExitStack()
        self._log_handlers: List[logging.Handler] = []
        self._previous_package_level: Optional[int] = None
        self._started_at = 0.0

    # ------------------------------------------------------------------ public API

    def run(self) -> MigrationRunResult:
        """Run the migration to completion and return its result."""
        for _ in self.stream():
            pass
        return self.result

    def cancel(self) -> None:
        self.cancellation_token.cancel()

    def stream(self) -> Iterator[MigrationEvent]:
        """
        Run the migration, yielding progress events as it goes.

        The final event is always RUN_FINISHED carrying the MigrationRunResult,
        unless the consumer stops iterating early.
        """
        if self.state != MigrationState.IDLE:
            raise RuntimeError("A MigrationOrchestrator runs exactly once")

        self._started_at = time.time()
        status: Optional[RunStatus] = None
        error: Optional[Exception] = None

        try:
            yield from self._execute()
            status = RunStatus.COMPLETED
        except MigrationCancelledError as e:
            status, error = RunStatus.CANCELLED, e
            self.logger.warning("Migration cancelled; completed tables remain checkpointed for resume")
        except ConfigurationError as e:
            status, error = RunStatus.FAILED, e
            self.logger.error(f"Configuration error: {e}")
        except MigrationError as e:
            status, error = RunStatus.FAILED, e
            self.logger.error(f"Migration failed: {e}")
        except Exception as e:
            status, error = RunStatus.FAILED, e
            self.logger.exception(f"Unexpected error during migration: {e}")
        finally:
            if status is None:
                # consumer stopped iterating before the run finished
                status = RunStatus.CANCELLED
            self._cleanup()
            self.result = MigrationRunResult(
                status=status,
                table_results=list(self._table_results),
                statistics=self._build_statistics(),
                error=error,
                log_folder=self.run_folder,
            )
            self._save_metrics()
            self._detach_run_logging()

        terminal_state = {
            RunStatus.COMPLETED: MigrationState.COMPLETED,
            RunStatus.CANCELLED: MigrationState.CANCELLED,
            RunStatus.FAILED: MigrationState.FAILED,
        }[status]
        yield self._transition(terminal_state)
        yield MigrationEvent(
            kind=EventKind.RUN_FINISHED,
            message=f"Migration {status.value}",
            level=logging.INFO if status == RunStatus.COMPLETED else logging.WARNING,
            run_result=self.result,
        )

    # ------------------------------------------------------------------ run phases

    def _execute(self) -> Iterator[MigrationEvent]:
        yield self._transition(MigrationState.INITIALIZING)
        tables = self._validate()
        yield from self._initialize(tables)

        yield self._transition(MigrationState.MIGRATING)
        total = len(tables)
        for position, path in enumerate(tables, start=1):
            self.cancellation_token.raise_if_cancelled()
            result = yield from self._migrate_table(path, position, total)
            self._table_results.append(result)

        yield self._transition(MigrationState.FINALIZING)
        yield from self._finalize()

    def _validate(self) -> List[Path]:
        """Check the source folder and enumerate tables; creates no state."""
        folder = Path(self.settings.source_folder)
        if not folder.is_dir():
            raise ConfigurationError(f"Source folder does not exist: {folder}")
        tables = self.catalog.list_tables(folder)
        if not tables:
            raise ConfigurationError(f"No source tables found in {folder}")

        claimed: Dict[str, Path] = {}
        for path in tables:
            table_name = table_name_for(path)
            if table_name in claimed:
                raise ConfigurationError(
                    f"Source tables {claimed[table_name].name} and {path.name} both map to "
                    f"destination table {table_name}; rename one of them"
                )
            claimed[table_name] = path
        return tables

    def _initialize(self, tables: List[Path]) -> Iterator[MigrationEvent]:
        settings = self.settings
        checkpoint = settings.resume_checkpoint
        if checkpoint is not None and (
            checkpoint.is_completed or not checkpoint.matches(settings.source_folder, settings.target_database)
        ):
            self.logger.warning("Supplied checkpoint does not match this run; starting fresh")
            checkpoint = None

        self._resources.enter_context(self.checkpoint_manager.lock(settings.target_database))

        start_time = checkpoint.start_time if checkpoint else datetime.now()
        self.run_folder = Path(settings.log_root) / start_time.strftime(RUN_FOLDER_FORMAT)
        (self.run_folder / ERROR_RECORDS_FOLDER).mkdir(parents=True, exist_ok=True)
        (self.run_folder / SKIPPED_RECORDS_FOLDER).mkdir(parents=True, exist_ok=True)
        self._attach_run_logging()
        self.performance_monitor.start_monitoring()

        yield self._emit(logging.INFO, f"Starting migration from {settings.source_folder} "
                                       f"into {settings.target_database}")
        yield self._emit(logging.INFO, f"Mode: {settings.mode.value}, batch size: {settings.batch_size}, "
                                       f"safe mode: {settings.safe_mode}, skip deleted: {settings.skip_deleted}")
        yield self._emit(logging.INFO, f"Found {len(tables)} source table(s); logs in {self.run_folder}")

        if checkpoint is None:
            checkpoint = MigrationCheckpoint(
                source_folder=settings.source_folder,
                target_database=settings.target_database,
                start_time=start_time,
                last_update_time=start_time,
            )
        else:
            yield self._emit(logging.INFO,
                             f"Resuming from checkpoint: {len(checkpoint.completed_tables)}/"
                             f"{checkpoint.total_tables} tables already completed "
                             f"(started {checkpoint.start_time:%Y-%m-%d %H:%M:%S})")
        checkpoint.total_tables = len(tables)
        self.checkpoint = checkpoint

        self.channel.connect()
        self.provisioner.ensure_database_exists(settings.target_database)
        yield self._emit(logging.INFO, f"Connected; using database {settings.target_database}")

        self.checkpoint_manager.save(checkpoint)

    def _finalize(self) -> Iterator[MigrationEvent]:
        self.checkpoint.is_completed = True
        self.checkpoint.last_update_time = datetime.now()
        self.checkpoint_manager.save(self.checkpoint)
        self.checkpoint_manager.delete(self.settings.target_database)

        statistics = self._build_statistics()
        yield self._emit(logging.INFO,
                         f"Migration completed: {statistics.tables_migrated} table(s) migrated, "
                         f"{statistics.tables_resumed} already complete; {statistics.rows_migrated} rows, "
                         f"{statistics.rows_skipped} skipped, {statistics.rows_errored} errors, "
                         f"{statistics.rows_discarded} discarded")

    # ------------------------------------------------------------------ per table

    def _migrate_table(self, path: Path, position: int, total: int) -> Iterator[MigrationEvent]:
        table_name = table_name_for(path)
        if self.checkpoint.is_table_completed(table_name):
            result = TableMigrationResult(table_name=table_name, resumed=True)
            yield self._emit(logging.INFO, f"[{position}/{total}] Skipping already completed table: {table_name}")
            yield MigrationEvent(kind=EventKind.TABLE_COMPLETED, message=f"{table_name}: already completed",
                                 table_result=result)
            return result

        result = TableMigrationResult(table_name=table_name)
        yield MigrationEvent(kind=EventKind.TABLE_STARTED, message=f"[{position}/{total}] Processing table: {table_name}")
        self.logger.info(f"[{position}/{total}] Processing table: {table_name}")

        try:
            with self.catalog.open_table(path) as cursor:
                plan = build_table_plan(path, cursor, self.settings.safe_mode)
                large_text = sum(1 for column_type in plan.column_types if column_type == UNBOUNDED_TEXT)
                yield self._emit(logging.INFO, f"{table_name}: {len(plan.columns)} columns "
                                               f"({large_text} large text)")

                self.performance_monitor.start_stage('provisioning')
                self.provisioner.provision_table(plan, self.settings.mode)
                self.performance_monitor.end_stage('provisioning')

                with DiscrepancyTracker(table_name, plan.original_names,
                                        self.run_folder / SKIPPED_RECORDS_FOLDER,
                                        self.run_folder / ERROR_RECORDS_FOLDER) as tracker:
                    self.performance_monitor.start_stage('streaming')
                    try:
                        yield from self._stream_records(cursor, plan, tracker, result)
                    finally:
                        self.performance_monitor.end_stage('streaming')
                        result.skipped_log = tracker.skipped_log_path
                        result.error_log = tracker.error_log_path
        except MigrationCancelledError:
            raise
        except MigrationError as e:
            result.error_message = str(e)
            e.table_name = e.table_name or table_name
            self._table_results.append(result)
            self.logger.error(f"Table {table_name} failed: {e}")
            yield MigrationEvent(kind=EventKind.TABLE_FAILED, message=f"{table_name} failed: {e}",
                                 level=logging.ERROR, table_result=result)
            raise

        self.checkpoint.mark_table_completed(table_name)
        self.checkpoint_manager.save(self.checkpoint)
        self.performance_monitor.sample()
        self.performance_monitor.record_rows(read=result.rows_read, failed=result.error_count)

        message = (f"{table_name}: {result.row_count} rows migrated, {result.skipped_count} skipped, "
                   f"{result.deleted_count} deleted kept, {result.error_count} errors, "
                   f"{result.rows_discarded} discarded")
        self.logger.info(message)
        yield MigrationEvent(kind=EventKind.TABLE_COMPLETED, message=message, table_result=result)
        return result

    def _stream_records(self, cursor: SourceCursorInterface, plan: TableMigrationPlan,
                        tracker: DiscrepancyTracker, result: TableMigrationResult) -> Iterator[MigrationEvent]:
        settings = self.settings
        writer = BatchWriter(self.channel, plan, settings.mode)
        mapper = ValueMapper(plan, safe_mode=settings.safe_mode)
        in_flight: List[_InFlightRecord] = []
        check_interval = settings.cancellation_check_interval

        try:
            while True:
                if result.rows_read % check_interval == 0:
                    self.cancellation_token.raise_if_cancelled()
                if not cursor.read():
                    break

                result.rows_read += 1
                record_number = result.rows_read
                is_deleted = cursor.is_deleted
                values, read_error = self._read_values(cursor, plan)

                if is_deleted and settings.skip_deleted:
                    result.skipped_count += 1
                    tracker.log_skipped(DiscrepancyRecord(record_number, values, SKIP_REASON_DELETED))
                    continue

                try:
                    if read_error is not None:
                        raise read_error
                    row = mapper.map_row(values, is_deleted)
                except DataMappingError as e:
                    yield from self._handle_row_error(e, record_number, values, writer, in_flight,
                                                      tracker, result, plan)
                    continue

                writer.append(row)
                in_flight.append(_InFlightRecord(record_number, values, is_deleted))
                if len(writer) >= settings.batch_size:
                    yield self._flush(writer, in_flight, tracker, result, plan)

            if len(writer):
                yield self._flush(writer, in_flight, tracker, result, plan, final=True)
        except MigrationCancelledError:
            discarded = writer.discard()
            result.rows_discarded += discarded
            if discarded:
                self.logger.warning(f"{plan.table_name}: batch #{writer.batch_number} rolled back due to "
                                    f"cancellation ({discarded} records not saved)")
            raise

    def _read_values(self, cursor: SourceCursorInterface,
                     plan: TableMigrationPlan) -> Tuple[List[Any], Optional[DataMappingError]]:
        """Original values of the current record; undecodable fields become a marker."""
        values = []
        read_error = None
        for column in plan.columns:
            try:
                values.append(cursor.get_value(column.ordinal))
            except (ValueError, LookupError) as e:
                values.append(UNREADABLE_MARKER)
                if read_error is None:
                    read_error = DataMappingError(f"Cannot read {column.name}: {e}", field_name=column.name,
                                                  table_name=plan.table_name)
        return values, read_error

    def _handle_row_error(self, error: DataMappingError, record_number: int, values: List[Any],
                          writer: BatchWriter, in_flight: List[_InFlightRecord], tracker: DiscrepancyTracker,
                          result: TableMigrationResult, plan: TableMigrationPlan) -> Iterator[MigrationEvent]:
        """Count and log a failed record, then drop the in-flight batch with it."""
        error.record_number = record_number
        result.error_count += 1
        tracker.log_error(DiscrepancyRecord(record_number, values, str(error)))
        self.logger.error(f"{plan.table_name} record #{record_number}: {error}")

        batch_number = writer.pending_batch_number
        discarded = writer.discard()
        if discarded:
            reason = f"Discarded with batch #{batch_number} after error in record #{record_number}"
            for pending in in_flight:
                tracker.log_error(DiscrepancyRecord(pending.record_number, pending.values, reason))
            result.rows_discarded += discarded
        in_flight.clear()
        yield MigrationEvent(kind=EventKind.LOG, level=logging.WARNING,
                             message=f"{plan.table_name}: error in record #{record_number} (logged); "
                                     f"{discarded} pending record(s) discarded")

    def _flush(self, writer: BatchWriter, in_flight: List[_InFlightRecord], tracker: DiscrepancyTracker,
               result: TableMigrationResult, plan: TableMigrationPlan, final: bool = False) -> MigrationEvent:
        """
        Commit the in-flight batch.

        On failure every pending record is logged as lost. A batch the server
        rejected for its data (constraint or value errors) counts one error and
        the table continues; any other failure propagates the BatchCommitError.
        """
        pending = list(in_flight)
        in_flight.clear()
        try:
            committed = writer.flush()
        except BatchCommitError as e:
            reason = f"Lost with failed batch #{e.batch_number}: {e}"
            for record in pending:
                tracker.log_error(DiscrepancyRecord(record.record_number, record.values, reason))
            if not e.is_recoverable:
                result.rows_discarded += len(pending)
                raise
            # The offending row cannot be singled out of a multi-row insert
            result.error_count += 1
            result.rows_discarded += len(pending) - 1
            self.logger.warning(f"{plan.table_name}: batch #{e.batch_number} rejected ({e.error_category}); "
                                f"{len(pending)} record(s) logged, continuing with the next batch")
            return MigrationEvent(kind=EventKind.LOG, level=logging.WARNING,
                                  message=f"{plan.table_name}: batch #{e.batch_number} rejected "
                                          f"({e.error_category}); {len(pending)} record(s) not saved")

        result.row_count += committed
        result.deleted_count += sum(1 for record in pending if record.is_deleted)
        self.performance_monitor.record_rows(migrated=committed)
        label = "Final batch" if final else "Batch"
        return MigrationEvent(kind=EventKind.BATCH_COMMITTED,
                              message=f"{plan.table_name}: {label} #{writer.batch_number} committed: "
                                      f"{committed} records ({result.row_count} total)")

    # ------------------------------------------------------------------ helpers

    def _transition(self, state: MigrationState) -> MigrationEvent:
        self.logger.debug(f"State {self.state.value} -> {state.value}")
        self.state = state
        return MigrationEvent(kind=EventKind.STATE_CHANGED, message=f"State: {state.value}", state=state)

    def _emit(self, level: int, message: str) -> MigrationEvent:
        self.logger.log(level, message)
        return MigrationEvent(kind=EventKind.LOG, message=message, level=level)

    def _build_statistics(self) -> RunStatistics:
        statistics = RunStatistics(tables_total=self.checkpoint.total_tables if self.checkpoint else 0)
        for result in self._table_results:
            statistics.add_table(result)
        statistics.elapsed_seconds = time.time() - self._started_at if self._started_at else 0.0
        if statistics.elapsed_seconds > 0:
            statistics.rows_per_second = statistics.rows_migrated / statistics.elapsed_seconds
        statistics.peak_memory_mb = self.performance_monitor.metrics.peak_memory_mb
        return statistics

    def _cleanup(self) -> None:
        """Close the connection and release the lock; runs for every outcome."""
        try:
            self.channel.close()
        except Exception as e:
            self.logger.warning(f"Error closing destination connection: {e}")
        self.performance_monitor.stop_monitoring()
        self._resources.close()

    def _attach_run_logging(self) -> None:
        """Send package log records to the run folder for the duration of the run."""
        package_logger = logging.getLogger(_PACKAGE_LOGGER)
        formatter = logging.Formatter(_LOG_FORMAT)

        run_handler = logging.FileHandler(self.run_folder / RUN_LOG_NAME, encoding='utf-8')
        run_handler.setLevel(logging.DEBUG if package_logger.isEnabledFor(logging.DEBUG) else logging.INFO)
        run_handler.setFormatter(formatter)

        error_handler = logging.FileHandler(self.run_folder / ERROR_LOG_NAME, encoding='utf-8', delay=True)
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)

        if package_logger.getEffectiveLevel() > logging.INFO:
            self._previous_package_level = package_logger.level
            package_logger.setLevel(logging.INFO)

        for handler in (run_handler, error_handler):
            package_logger.addHandler(handler)
            self._log_handlers.append(handler)

    def _detach_run_logging(self) -> None:
        package_logger = logging.getLogger(_PACKAGE_LOGGER)
        for handler in self._log_handlers:
            package_logger.removeHandler(handler)
            handler.close()
        self._log_handlers = []
        if self._previous_package_level is not None:
            package_logger.setLevel(self._previous_package_level)
            self._previous_package_level = None

    def _save_metrics(self) -> None:
        """Write run settings, statistics and per-table results to metrics.json."""
        if self.run_folder is None or self.result is None:
            return

        metrics_file = self.run_folder / METRICS_NAME
        settings = self.settings
        consolidated_metrics = {
            'run_timestamp': datetime.now().isoformat(),
            'status': self.result.status.value,
            'error': str(self.result.error) if self.result.error else None,
            'source_folder': settings.source_folder,
            'target_database': settings.target_database,
            'mode': settings.mode.value,
            'batch_size': settings.batch_size,
            'safe_mode': settings.safe_mode,
            'skip_deleted': settings.skip_deleted,
            'statistics': self.result.statistics.to_dict(),
            'performance': self.performance_monitor.get_summary(),
            'tables': [table.to_dict() for table in self.result.table_results],
        }

        def _json_default(o):
            if isinstance(o, Decimal):
                return float(o)
            if isinstance(o, datetime):
                return o.isoformat()
            return str(o)

        try:
            with open(metrics_file, 'w', encoding='utf-8') as f:
                json.dump(consolidated_metrics, f, indent=2, default=_json_default)
            self.logger.info(f"Metrics saved to: {metrics_file}")
        except OSError as e:
            self.logger.error(f"Failed to save metrics: {e}")
