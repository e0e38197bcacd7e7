"""
Core data models for the DBF migration system.

This module defines the primary data structures passed between the schema
translator, table provisioner, batch writer, checkpoint manager, discrepancy
tracker and migration orchestrator.
"""

import logging

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .exceptions import BatchCommitError, ConfigurationError, DatabaseConnectionError


# One destination row: values aligned to the plan's columns plus a trailing soft-delete flag
BatchRow = Tuple[Any, ...]


class NativeType(Enum):
    """Native column type tags of the legacy table format."""
    CHARACTER = "character"
    NUMERIC = "numeric"
    FLOAT = "float"
    DATE = "date"
    DATETIME = "datetime"
    LOGICAL = "logical"
    MEMO = "memo"
    BINARY = "binary"
    INTEGER = "integer"
    CURRENCY = "currency"
    UNKNOWN = "unknown"


class MigrationMode(Enum):
    """How an existing destination table is treated."""
    REPLACE = "replace"
    MERGE = "merge"


class MigrationState(Enum):
    """States of a single migration run."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    MIGRATING = "migrating"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RunStatus(Enum):
    """Terminal outcome of a run."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class EventKind(Enum):
    """Kinds of events surfaced to the caller while a run progresses."""
    LOG = "log"
    STATE_CHANGED = "state_changed"
    TABLE_STARTED = "table_started"
    BATCH_COMMITTED = "batch_committed"
    TABLE_COMPLETED = "table_completed"
    TABLE_FAILED = "table_failed"
    RUN_FINISHED = "run_finished"


@dataclass(frozen=True)
class SourceColumnDescriptor:
    """
    Describes one column of a source table.

    Attributes:
        name: Column name as stored in the source file (original casing)
        safe_name: Normalized destination-safe column name
        native_type: Native type tag
        length: Declared length (0 when the format does not declare one)
        decimal_count: Declared decimal count
        ordinal: 0-based position within the source record
    """
    name: str
    safe_name: str
    native_type: NativeType
    length: int = 0
    decimal_count: int = 0
    ordinal: int = 0


@dataclass
class TableMigrationPlan:
    """
    Everything needed to provision and fill one destination table.

    Attributes:
        source_path: Path of the source table file
        table_name: Derived destination table name
        columns: Ordered column descriptors
        column_types: Destination type strings aligned with columns
    """
    source_path: Path
    table_name: str
    columns: List[SourceColumnDescriptor]
    column_types: List[str]

    def __post_init__(self):
        """Validate plan consistency."""
        if not self.table_name:
            raise ValueError("table_name cannot be empty")
        if len(self.columns) != len(self.column_types):
            raise ValueError("columns and column_types must have the same length")

    @property
    def original_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def insert_columns(self) -> List[str]:
        """Destination columns receiving a BatchRow, soft-delete flag last."""
        return [column.safe_name for column in self.columns] + ["is_deleted"]


@dataclass
class MigrationCheckpoint:
    """
    Durable record of which tables of a run are fully migrated.

    Valid for resume only when both source_folder and target_database match
    the run being started.
    """
    source_folder: str
    target_database: str
    start_time: datetime = field(default_factory=datetime.now)
    last_update_time: datetime = field(default_factory=datetime.now)
    completed_tables: Set[str] = field(default_factory=set)
    total_tables: int = 0
    is_completed: bool = False

    def mark_table_completed(self, table_name: str) -> None:
        self.completed_tables.add(table_name)
        self.last_update_time = datetime.now()

    def is_table_completed(self, table_name: str) -> bool:
        return table_name in self.completed_tables

    def matches(self, source_folder: str, target_database: str) -> bool:
        return self.source_folder == source_folder and self.target_database == target_database

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted document layout."""
        return {
            "sourceFolder": self.source_folder,
            "targetDatabase": self.target_database,
            "startTime": self.start_time.isoformat(),
            "lastUpdateTime": self.last_update_time.isoformat(),
            "completedTables": sorted(self.completed_tables),
            "totalTables": self.total_tables,
            "isCompleted": self.is_completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationCheckpoint':
        """
        Build a checkpoint from a persisted document.

        Raises:
            KeyError, TypeError, ValueError: If the document is malformed
        """
        return cls(
            source_folder=data["sourceFolder"],
            target_database=data["targetDatabase"],
            start_time=datetime.fromisoformat(data["startTime"]),
            last_update_time=datetime.fromisoformat(data["lastUpdateTime"]),
            completed_tables=set(data.get("completedTables") or []),
            total_tables=int(data.get("totalTables", 0)),
            is_completed=bool(data.get("isCompleted", False)),
        )


@dataclass
class TableMigrationResult:
    """
    Outcome of migrating one source table.

    Attributes:
        table_name: Destination table name
        row_count: Rows committed to the destination
        error_count: Rows that failed mapping or insert
        deleted_count: Soft-deleted rows that were kept (flag set at destination)
        skipped_count: Soft-deleted rows skipped by policy
        rows_read: Records read from the source
        rows_discarded: Valid rows lost because their batch was rolled back
        resumed: True when the table was skipped because a checkpoint marked it complete
        error_message: Set when the table failed
        skipped_log: Skipped-records CSV, when any record was skipped
        error_log: Error-records CSV, when any record failed or was lost
    """
    table_name: str
    row_count: int = 0
    error_count: int = 0
    deleted_count: int = 0
    skipped_count: int = 0
    rows_read: int = 0
    rows_discarded: int = 0
    resumed: bool = False
    error_message: Optional[str] = None
    skipped_log: Optional[Path] = None
    error_log: Optional[Path] = None

    @property
    def failed(self) -> bool:
        return self.error_message is not None

    @property
    def is_balanced(self) -> bool:
        """True when every record read is accounted for exactly once."""
        return self.rows_read == (self.row_count + self.skipped_count
                                  + self.error_count + self.rows_discarded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tableName": self.table_name,
            "rowCount": self.row_count,
            "errorCount": self.error_count,
            "deletedCount": self.deleted_count,
            "skippedCount": self.skipped_count,
            "rowsRead": self.rows_read,
            "rowsDiscarded": self.rows_discarded,
            "resumed": self.resumed,
            "error": self.error_message,
            "skippedLog": str(self.skipped_log) if self.skipped_log else None,
            "errorLog": str(self.error_log) if self.error_log else None,
        }


@dataclass
class DiscrepancyRecord:
    """
    One skipped or failed source record.

    Attributes:
        record_number: 1-based ordinal among all records read from the table
        values: Original pre-mapping column values
        reason: Skip reason or error message
    """
    record_number: int
    values: List[Any]
    reason: str

    def __post_init__(self):
        if self.record_number < 1:
            raise ValueError("record_number must be 1-based")


@dataclass
class MigrationSettings:
    """
    Explicit configuration for one migration run.

    Constructed once (normally by ConfigManager) and handed to the orchestrator.

    Attributes:
        source_folder: Folder holding the source table files
        target_database: Destination database name
        connection_string: Server-level ODBC connection string (no database selected)
        mode: Replace (drop and recreate) or merge (create if absent, ignore duplicates)
        batch_size: Rows per transaction, 1-10000
        safe_mode: Inflate character widths and clean text values
        skip_deleted: Skip soft-deleted records instead of migrating them flagged
        resume_checkpoint: Optional checkpoint to resume from
        log_root: Root folder for run logs, discrepancy logs and checkpoints
        source_encoding: Character encoding of the source files
        cancellation_check_interval: Records between cancellation checks
        connection_timeout: Login timeout in seconds for the database connection
    """
    source_folder: str
    target_database: str
    connection_string: str = ""
    mode: MigrationMode = MigrationMode.REPLACE
    batch_size: int = 1000
    safe_mode: bool = True
    skip_deleted: bool = True
    resume_checkpoint: Optional[MigrationCheckpoint] = None
    log_root: str = "migration_logs"
    source_encoding: str = "cp1252"
    cancellation_check_interval: int = 100
    connection_timeout: int = 30

    MIN_BATCH_SIZE = 1
    MAX_BATCH_SIZE = 10000

    def __post_init__(self):
        """Validate settings; raises ConfigurationError on invalid values."""
        if isinstance(self.mode, str):
            try:
                self.mode = MigrationMode(self.mode.lower())
            except ValueError:
                raise ConfigurationError(f"Unknown migration mode: {self.mode}")
        if not self.source_folder:
            raise ConfigurationError("source_folder cannot be empty")
        if not self.target_database:
            raise ConfigurationError("target_database cannot be empty")
        if not isinstance(self.batch_size, int) or not (
            self.MIN_BATCH_SIZE <= self.batch_size <= self.MAX_BATCH_SIZE
        ):
            raise ConfigurationError(
                f"batch_size must be between {self.MIN_BATCH_SIZE} and {self.MAX_BATCH_SIZE}, "
                f"got {self.batch_size}"
            )
        if self.cancellation_check_interval <= 0:
            raise ConfigurationError("cancellation_check_interval must be positive")


@dataclass
class RunStatistics:
    """Aggregate statistics for one run."""
    tables_total: int = 0
    tables_migrated: int = 0
    tables_resumed: int = 0
    tables_failed: int = 0
    rows_read: int = 0
    rows_migrated: int = 0
    rows_errored: int = 0
    rows_skipped: int = 0
    rows_deleted_kept: int = 0
    rows_discarded: int = 0
    elapsed_seconds: float = 0.0
    rows_per_second: float = 0.0
    peak_memory_mb: float = 0.0

    def add_table(self, result: TableMigrationResult) -> None:
        if result.resumed:
            self.tables_resumed += 1
            return
        if result.failed:
            self.tables_failed += 1
        else:
            self.tables_migrated += 1
        self.rows_read += result.rows_read
        self.rows_migrated += result.row_count
        self.rows_errored += result.error_count
        self.rows_skipped += result.skipped_count
        self.rows_deleted_kept += result.deleted_count
        self.rows_discarded += result.rows_discarded

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MigrationEvent:
    """
    One item of the pull-based progress stream.

    Attributes:
        kind: Event kind
        message: Human-readable log line
        level: logging level of the message
        state: New state for STATE_CHANGED events
        table_result: Result for TABLE_COMPLETED / TABLE_FAILED events
        run_result: Final result for the RUN_FINISHED event
    """
    kind: EventKind
    message: str = ""
    level: int = logging.INFO
    state: Optional[MigrationState] = None
    table_result: Optional[TableMigrationResult] = None
    run_result: Optional['MigrationRunResult'] = None


@dataclass
class MigrationRunResult:
    """Final outcome of a run."""
    status: RunStatus
    table_results: List[TableMigrationResult] = field(default_factory=list)
    statistics: RunStatistics = field(default_factory=RunStatistics)
    error: Optional[Exception] = None
    log_folder: Optional[Path] = None

    @property
    def is_connectivity_failure(self) -> bool:
        """True when the run failed because the destination became unreachable."""
        if isinstance(self.error, DatabaseConnectionError):
            return True
        return isinstance(self.error, BatchCommitError) and self.error.is_connectivity_failure
