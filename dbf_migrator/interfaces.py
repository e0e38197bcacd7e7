"""
Abstract interfaces for the DBF migration system.

This module defines the contracts for the two external collaborators the
migration engine depends on: a source cursor over a decoded legacy table and
a SQL channel executing statements against the destination. Concrete
implementations live in ``source`` and ``database``; tests substitute fakes.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from .models import NativeType


class SourceCursorInterface(ABC):
    """Sequential cursor over the records of one source table."""

    @property
    @abstractmethod
    def field_count(self) -> int:
        """Number of visible fields per record."""
        pass

    @abstractmethod
    def describe_field(self, index: int) -> Tuple[str, NativeType, int, int]:
        """
        Describe one field.

        Args:
            index: 0-based field position

        Returns:
            Tuple of (name, native type tag, declared length, declared decimal count)
        """
        pass

    @abstractmethod
    def read(self) -> bool:
        """
        Advance to the next record.

        Returns:
            True if a record is available, False at end of table

        Raises:
            SourceReadError: If the underlying file is truncated or unreadable
        """
        pass

    @property
    @abstractmethod
    def is_deleted(self) -> bool:
        """Soft-delete flag of the current record."""
        pass

    @abstractmethod
    def get_value(self, index: int) -> Any:
        """
        Typed value of a field in the current record.

        Raises:
            ValueError: If the stored bytes cannot be decoded for the field type
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SourceCatalogInterface(ABC):
    """Enumerates and opens the source tables of a folder."""

    @abstractmethod
    def list_tables(self, folder: Path) -> List[Path]:
        """
        List source table files in a folder.

        Returns:
            Sorted list of table paths (empty if none)
        """
        pass

    @abstractmethod
    def open_table(self, path: Path) -> SourceCursorInterface:
        """
        Open a cursor positioned before the first record.

        Raises:
            SourceReadError: If the table cannot be opened
        """
        pass


class SqlChannelInterface(ABC):
    """Single statement-execution channel to the destination server."""

    @abstractmethod
    def connect(self) -> None:
        """
        Open the connection.

        Raises:
            DatabaseConnectionError: If the server cannot be reached
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def change_database(self, database_name: str) -> None:
        pass

    @abstractmethod
    def execute_ddl(self, sql: str) -> None:
        """Execute a DDL statement outside any batch transaction."""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        pass

    @abstractmethod
    def begin(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """
        Execute a parameterized statement inside the current transaction.

        Returns:
            Affected row count as reported by the driver
        """
        pass

    @abstractmethod
    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Tuple[Any, ...]]:
        """Execute a parameterized query and return all rows."""
        pass
