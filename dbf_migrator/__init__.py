"""
DBF Migration System

Migrates folders of FoxPro / dBase tables into a MySQL-compatible warehouse with
schema-driven type mapping, transactional batch writes, discrepancy logging and
checkpointed resume.
"""

__version__ = "1.0.0"

# Import core models and interfaces for easy access
from .models import (
    NativeType,
    MigrationMode,
    MigrationState,
    RunStatus,
    EventKind,
    SourceColumnDescriptor,
    TableMigrationPlan,
    MigrationCheckpoint,
    TableMigrationResult,
    DiscrepancyRecord,
    MigrationSettings,
    RunStatistics,
    MigrationEvent,
    MigrationRunResult
)

from .interfaces import (
    SourceCursorInterface,
    SourceCatalogInterface,
    SqlChannelInterface
)

from .exceptions import (
    MigrationError,
    ConfigurationError,
    DatabaseConnectionError,
    SourceReadError,
    SchemaProvisioningError,
    DataMappingError,
    BatchCommitError,
    MigrationCancelledError,
    MigrationLockError
)

__all__ = [
    # Core models
    "NativeType",
    "MigrationMode",
    "MigrationState",
    "RunStatus",
    "EventKind",
    "SourceColumnDescriptor",
    "TableMigrationPlan",
    "MigrationCheckpoint",
    "TableMigrationResult",
    "DiscrepancyRecord",
    "MigrationSettings",
    "RunStatistics",
    "MigrationEvent",
    "MigrationRunResult",

    # Interfaces
    "SourceCursorInterface",
    "SourceCatalogInterface",
    "SqlChannelInterface",

    # Exceptions
    "MigrationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "SourceReadError",
    "SchemaProvisioningError",
    "DataMappingError",
    "BatchCommitError",
    "MigrationCancelledError",
    "MigrationLockError"
]
