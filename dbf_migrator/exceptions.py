"""
Custom exceptions for the DBF migration system.

This module defines specific exception types for the different error classes
a migration run distinguishes: configuration problems, connectivity loss,
row-level mapping failures, batch transaction failures and cancellation.
"""


class MigrationError(Exception):
    """Base exception for all migration related errors."""

    def __init__(self, message: str, table_name: str = None, record_number: int = None,
                 error_category: str = None):
        """
        Initialize migration error.

        Args:
            message: Error description
            table_name: Optional source table being migrated when the error occurred
            record_number: Optional 1-based ordinal of the source record involved
            error_category: Optional machine-readable category (e.g. "connection_lost")
        """
        super().__init__(message)
        self.table_name = table_name
        self.record_number = record_number
        self.error_category = error_category


class ConfigurationError(MigrationError):
    """Exception raised when configuration is invalid or missing."""
    pass


class DatabaseConnectionError(MigrationError):
    """Exception raised when the destination cannot be reached or the connection drops."""
    pass


class SourceReadError(MigrationError):
    """Exception raised when a source table cannot be opened or read."""
    pass


class SchemaProvisioningError(MigrationError):
    """Exception raised when DDL for a destination table fails."""
    pass


class DataMappingError(MigrationError):
    """Exception raised when a source value cannot be mapped to its destination column."""

    def __init__(self, message: str, field_name: str = None, source_value=None,
                 target_type: str = None, table_name: str = None, record_number: int = None):
        """
        Initialize data mapping error.

        Args:
            message: Error description
            field_name: Name of the column that failed mapping
            source_value: Original value that failed mapping
            target_type: Destination type string for the column
            table_name: Optional source table name
            record_number: Optional 1-based ordinal of the source record
        """
        super().__init__(message, table_name=table_name, record_number=record_number,
                         error_category="data_mapping")
        self.field_name = field_name
        self.source_value = source_value
        self.target_type = target_type


class BatchCommitError(MigrationError):
    """Exception raised when a batch transaction fails and is rolled back."""

    def __init__(self, message: str, batch_number: int, rows_lost: int = 0,
                 table_name: str = None, error_category: str = "database_error"):
        """
        Initialize batch commit error.

        Args:
            message: Error description
            batch_number: 1-based sequence number of the failed batch within its table
            rows_lost: Number of rows that were pending in the batch
            table_name: Destination table name
            error_category: Category derived from the driver error
        """
        super().__init__(message, table_name=table_name, error_category=error_category)
        self.batch_number = batch_number
        self.rows_lost = rows_lost

    @property
    def is_connectivity_failure(self) -> bool:
        return self.error_category == "connection_lost"

    @property
    def is_recoverable(self) -> bool:
        """True when the server rejected the rows themselves and the connection is still usable."""
        return self.error_category in ("constraint_violation", "data_error")


class MigrationCancelledError(MigrationError):
    """Exception raised when a run observes a cancellation request."""
    pass


class MigrationLockError(MigrationError):
    """Exception raised when another run already holds the destination database lock."""
    pass
