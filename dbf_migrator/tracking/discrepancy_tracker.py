"""
Discrepancy Tracker - CSV logs of skipped and failed source records.

Per table, two CSV files are opened lazily on first use:
``SkippedRecords/<table>_skipped.csv`` and ``ErrorRecords/<table>_errors.csv``.
The header is the source column names in their original casing followed by
a reason column. Rows are flushed as they are written so a crash mid-table
never loses entries already recorded.
"""

import csv
import logging

from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from ..models import DiscrepancyRecord


NULL_MARKER = "NULL"
UNREADABLE_MARKER = "ERROR_READING_VALUE"

SKIP_REASON_DELETED = "Record marked as deleted in source file"


def format_value(value: Any) -> str:
    """Render an original source value for a discrepancy log cell."""
    if value is None:
        return NULL_MARKER
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class _CsvLog:
    """One lazily opened append-only CSV file."""

    def __init__(self, path: Path, header: List[str]):
        self.path = path
        self.header = header
        self.rows_written = 0
        self._file = None
        self._writer = None

    def write(self, row: List[str]) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, 'w', encoding='utf-8', newline='')
            self._writer = csv.writer(self._file, quoting=csv.QUOTE_MINIMAL)
            self._writer.writerow(self.header)
        self._writer.writerow(row)
        self._file.flush()
        self.rows_written += 1

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None


class DiscrepancyTracker:
    """
    Records skipped and errored records of one table.

    Usable as a context manager; the logs are closed when the table ends,
    whether it succeeded or failed.
    """

    def __init__(self, table_name: str, column_names: Sequence[str],
                 skipped_folder: Union[str, Path], error_folder: Union[str, Path]):
        """
        Initialize the tracker.

        Args:
            table_name: Table name used in the log file names
            column_names: Source column names in original casing
            skipped_folder: Folder for <table>_skipped.csv
            error_folder: Folder for <table>_errors.csv
        """
        self.table_name = table_name
        self.logger = logging.getLogger(__name__)
        columns = ["RecordNumber"] + list(column_names)
        self._skipped = _CsvLog(Path(skipped_folder) / f"{table_name}_skipped.csv", columns + ["Reason"])
        self._errors = _CsvLog(Path(error_folder) / f"{table_name}_errors.csv", columns + ["ErrorMessage"])

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def skipped_log_path(self) -> Optional[Path]:
        return self._skipped.path if self._skipped.rows_written else None

    @property
    def error_log_path(self) -> Optional[Path]:
        return self._errors.path if self._errors.rows_written else None

    def log_skipped(self, record: DiscrepancyRecord) -> None:
        self._skipped.write(self._row(record))

    def log_error(self, record: DiscrepancyRecord) -> None:
        self._errors.write(self._row(record))

    def close(self) -> None:
        for log in (self._skipped, self._errors):
            if log.is_open:
                log.close()
                self.logger.info(f"{self.table_name}: {log.rows_written} entries written to {log.path}")

    @staticmethod
    def _row(record: DiscrepancyRecord) -> List[str]:
        return [str(record.record_number)] + [format_value(v) for v in record.values] + [record.reason]
