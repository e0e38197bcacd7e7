"""
Batch Writer - transactional multi-row inserts.

Accumulates BatchRows for one table and commits them in one transaction per
batch. A batch is either committed completely or not at all: on any failure
the transaction is rolled back, the pending rows are dropped and a
BatchCommitError naming the batch sequence number is raised.
"""

import logging

from typing import Any, List, Sequence, Tuple

from ..interfaces import SqlChannelInterface
from ..exceptions import BatchCommitError
from ..models import BatchRow, MigrationMode, TableMigrationPlan
from ..utils import IdentifierUtils
from .sql_channel import categorize_database_error


# MySQL caps the number of placeholders in one prepared statement
MAX_STATEMENT_PARAMETERS = 65535


class BatchWriter:
    """
    Writes rows for one destination table in fixed-size transactional batches.

    Merge mode uses INSERT IGNORE so re-running a partially loaded table skips
    rows that collide on a unique key; replace mode uses a plain INSERT.
    """

    def __init__(self, channel: SqlChannelInterface, plan: TableMigrationPlan, mode: MigrationMode,
                 logger: logging.Logger = None):
        """
        Initialize the writer.

        Args:
            channel: Connected SQL channel with the destination database active
            plan: Table plan; rows must align with plan.insert_columns
            mode: Migration mode selecting the insert variant
            logger: Optional logger instance
        """
        self.channel = channel
        self.plan = plan
        self.mode = mode
        self.logger = logger or logging.getLogger(__name__)

        self._columns = plan.insert_columns
        self._rows: List[BatchRow] = []
        self.batch_number = 0

        verb = "INSERT IGNORE INTO" if mode == MigrationMode.MERGE else "INSERT INTO"
        column_list = ", ".join(IdentifierUtils.quote(name) for name in self._columns)
        self._statement_prefix = f"{verb} {IdentifierUtils.quote(plan.table_name)} ({column_list}) VALUES "
        self._row_placeholder = "(" + ", ".join("?" * len(self._columns)) + ")"
        self._rows_per_statement = max(1, MAX_STATEMENT_PARAMETERS // len(self._columns))

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def pending_batch_number(self) -> int:
        """Sequence number the in-flight batch will carry."""
        return self.batch_number + 1

    def append(self, row: BatchRow) -> None:
        if len(row) != len(self._columns):
            raise ValueError(
                f"Row has {len(row)} values but {self.plan.table_name} expects {len(self._columns)}"
            )
        self._rows.append(tuple(row))

    def flush(self) -> int:
        """
        Commit all pending rows as one batch.

        Returns:
            Number of rows committed (0 when nothing was pending)

        Raises:
            BatchCommitError: If the insert or commit fails; nothing from the batch is committed
        """
        if not self._rows:
            return 0

        self.batch_number += 1
        batch_number = self.batch_number
        rows = self._rows
        self._rows = []

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Starting batch #{batch_number} for {self.plan.table_name}: {len(rows)} records")

        try:
            if not self.channel.in_transaction:
                self.channel.begin()
            for sql, params in self._build_statements(rows):
                self.channel.execute(sql, params)
            self.channel.commit()
        except Exception as e:
            self._rollback_after_failure()
            category = categorize_database_error(e)
            error_msg = (f"Batch #{batch_number} for table {self.plan.table_name} failed and was rolled back "
                         f"({len(rows)} records): {e}")
            self.logger.error(error_msg)
            raise BatchCommitError(error_msg, batch_number=batch_number, rows_lost=len(rows),
                                   table_name=self.plan.table_name, error_category=category) from e

        self.logger.info(f"Batch #{batch_number} committed: {len(rows)} records into {self.plan.table_name}")
        return len(rows)

    def discard(self) -> int:
        """
        Drop the in-flight batch without writing it.

        The discarded batch consumes its sequence number.

        Returns:
            Number of rows dropped
        """
        count = len(self._rows)
        self._rows = []
        if self.channel.in_transaction:
            self._rollback_after_failure()
        if count:
            self.batch_number += 1
            self.logger.warning(f"Batch #{self.batch_number} for {self.plan.table_name} discarded: {count} records")
        return count

    def _build_statements(self, rows: Sequence[BatchRow]) -> List[Tuple[str, List[Any]]]:
        """One multi-row parameterized INSERT per chunk of rows."""
        statements = []
        for start in range(0, len(rows), self._rows_per_statement):
            chunk = rows[start:start + self._rows_per_statement]
            sql = self._statement_prefix + ", ".join([self._row_placeholder] * len(chunk))
            params = [value for row in chunk for value in row]
            statements.append((sql, params))
        return statements

    def _rollback_after_failure(self) -> None:
        try:
            self.channel.rollback()
        except Exception as rollback_error:
            self.logger.critical(
                f"ROLLBACK FAILED for {self.plan.table_name} - destination may hold a partial batch: {rollback_error}"
            )
