"""
Unit tests for DiscrepancyTracker CSV logs.
"""

import csv

from datetime import date

from dbf_migrator.models import DiscrepancyRecord
from dbf_migrator.tracking.discrepancy_tracker import DiscrepancyTracker, format_value


def read_csv(path):
    with open(path, encoding="utf-8", newline="") as f:
        return list(csv.reader(f))


class TestDiscrepancyTracker:

    def test_logs_are_created_lazily(self, tmp_path):
        with DiscrepancyTracker("customers", ["ID"], tmp_path / "skipped", tmp_path / "errors") as tracker:
            pass
        assert not (tmp_path / "skipped").exists()
        assert tracker.skipped_log_path is None
        assert tracker.error_log_path is None

    def test_skipped_log_header_and_rows(self, tmp_path):
        with DiscrepancyTracker("customers", ["ID", "Name"], tmp_path / "skipped", tmp_path / "errors") as tracker:
            tracker.log_skipped(DiscrepancyRecord(3, [7, "Ann"], "Record marked as deleted in source file"))

        rows = read_csv(tmp_path / "skipped" / "customers_skipped.csv")
        assert rows == [
            ["RecordNumber", "ID", "Name", "Reason"],
            ["3", "7", "Ann", "Record marked as deleted in source file"],
        ]
        assert tracker.skipped_log_path == tmp_path / "skipped" / "customers_skipped.csv"
        assert tracker.error_log_path is None

    def test_values_with_commas_and_quotes_survive(self, tmp_path):
        awkward = 'Smith, "Bob"\nJr'
        with DiscrepancyTracker("people", ["NAME", "BORN"], tmp_path / "s", tmp_path / "e") as tracker:
            tracker.log_error(DiscrepancyRecord(1, [awkward, None], 'Data too long, "NAME"'))

        rows = read_csv(tmp_path / "e" / "people_errors.csv")
        assert rows[0] == ["RecordNumber", "NAME", "BORN", "ErrorMessage"]
        assert rows[1] == ["1", awkward, "NULL", 'Data too long, "NAME"']
        assert tracker.error_log_path == tmp_path / "e" / "people_errors.csv"


class TestFormatValue:

    def test_rendering(self):
        assert format_value(None) == "NULL"
        assert format_value(b"\x01\xff") == "01ff"
        assert format_value(date(2024, 1, 2)) == "2024-01-02"
        assert format_value(12.5) == "12.5"
