"""
SQL channel over pyodbc for a MySQL-compatible destination.

One connection is opened per run and shared by the provisioner and the batch
writer. The connection runs with autocommit disabled so every batch is an
explicit transaction; DDL statements are committed immediately.
"""

import logging
import pyodbc

from typing import Any, List, Optional, Sequence, Tuple

from ..interfaces import SqlChannelInterface
from ..exceptions import DatabaseConnectionError
from ..utils import IdentifierUtils


# Driver messages that indicate the server is unreachable rather than a data problem
_CONNECTION_MARKERS = (
    'connection', 'login', 'network', 'timeout', 'timed out', 'gone away',
    "can't connect", 'unknown mysql server host', 'access denied',
    '(2002)', '(2003)', '(2006)', '(2013)', '08s01', '08001',
)
_CONSTRAINT_MARKERS = (
    'duplicate entry', 'duplicate key', '(1062)', 'foreign key constraint', 'cannot be null', '(1048)',
)
_DATA_MARKERS = (
    'data too long', '(1406)', 'out of range', '(1264)', 'incorrect', '(1366)', 'truncated',
)


def categorize_database_error(error: Exception) -> str:
    """
    Categorize a database error by its message.

    Returns:
        One of "connection_lost", "constraint_violation", "data_error", "database_error"
    """
    if isinstance(error, DatabaseConnectionError):
        return "connection_lost"
    error_str = str(error).lower()
    if any(marker in error_str for marker in _CONSTRAINT_MARKERS):
        return "constraint_violation"
    if any(marker in error_str for marker in _DATA_MARKERS):
        return "data_error"
    if any(marker in error_str for marker in _CONNECTION_MARKERS):
        return "connection_lost"
    return "database_error"


class PyodbcSqlChannel(SqlChannelInterface):
    """Statement-execution channel backed by a single pyodbc connection."""

    def __init__(self, connection_string: str, timeout: int = 30):
        """
        Initialize the channel.

        Args:
            connection_string: Server-level ODBC connection string
            timeout: Login timeout in seconds
        """
        self.logger = logging.getLogger(__name__)
        self.connection_string = connection_string
        self.timeout = timeout
        self._connection: Optional[pyodbc.Connection] = None
        self._in_transaction = False

    def connect(self) -> None:
        if self._connection is not None:
            return
        try:
            self._connection = pyodbc.connect(
                self.connection_string,
                autocommit=False,  # Explicit transaction control per batch
                timeout=self.timeout
            )
            self._connection.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            self._connection.setdecoding(pyodbc.SQL_WCHAR, encoding='utf-8')
            self._connection.setencoding(encoding='utf-8')
        except pyodbc.Error as e:
            self.logger.error(f"Database connection failed: {e}")
            raise DatabaseConnectionError(f"Failed to connect to database server: {e}",
                                          error_category="connection_failed")
        self.logger.info("Connected to destination server")

    def close(self) -> None:
        if self._connection is None:
            return
        try:
            if self._in_transaction:
                self._connection.rollback()
            self._connection.close()
        except pyodbc.Error as e:
            self.logger.warning(f"Error while closing connection: {e}")
        finally:
            self._connection = None
            self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def change_database(self, database_name: str) -> None:
        self._run(f"USE {IdentifierUtils.quote(database_name)}").close()
        self._connection.commit()
        self.logger.debug(f"Active database changed to {database_name}")

    def execute_ddl(self, sql: str) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"DDL: {sql}")
        self._run(sql).close()
        self._connection.commit()

    def begin(self) -> None:
        # autocommit is off, so the driver opens the transaction on the next statement
        self._require_connection()
        self._in_transaction = True

    def commit(self) -> None:
        self._require_connection()
        try:
            self._connection.commit()
        except pyodbc.Error as e:
            raise self._translate(e)
        finally:
            self._in_transaction = False

    def rollback(self) -> None:
        self._require_connection()
        try:
            self._connection.rollback()
        except pyodbc.Error as e:
            raise self._translate(e)
        finally:
            self._in_transaction = False

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        cursor = self._run(sql, params)
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Tuple[Any, ...]]:
        cursor = self._run(sql, params)
        try:
            return [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _require_connection(self) -> None:
        if self._connection is None:
            raise DatabaseConnectionError("Channel is not connected", error_category="connection_lost")

    def _run(self, sql: str, params: Optional[Sequence[Any]] = None):
        self._require_connection()
        cursor = self._connection.cursor()
        try:
            if params:
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
        except pyodbc.Error as e:
            cursor.close()
            raise self._translate(e)
        return cursor

    def _translate(self, error: pyodbc.Error) -> Exception:
        """Connection-class driver errors become DatabaseConnectionError; others pass through."""
        if categorize_database_error(error) == "connection_lost":
            self.logger.error(f"Lost connection to destination: {error}")
            return DatabaseConnectionError(f"Lost connection to destination: {error}",
                                           error_category="connection_lost")
        return error
