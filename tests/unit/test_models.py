"""
Unit tests for core data models.
"""

import pytest

from datetime import datetime

from dbf_migrator.exceptions import BatchCommitError, ConfigurationError, DatabaseConnectionError
from dbf_migrator.models import (
    DiscrepancyRecord, MigrationCheckpoint, MigrationMode, MigrationRunResult, MigrationSettings,
    RunStatistics, RunStatus, TableMigrationResult
)


class TestMigrationSettings:

    def test_mode_string_is_coerced(self):
        settings = MigrationSettings(source_folder="src", target_database="db", mode="MERGE")
        assert settings.mode == MigrationMode.MERGE

    @pytest.mark.parametrize("batch_size", [0, 10001, "100"])
    def test_batch_size_bounds(self, batch_size):
        with pytest.raises(ConfigurationError):
            MigrationSettings(source_folder="src", target_database="db", batch_size=batch_size)

    def test_batch_size_limits_are_inclusive(self):
        assert MigrationSettings(source_folder="src", target_database="db", batch_size=1).batch_size == 1
        assert MigrationSettings(source_folder="src", target_database="db", batch_size=10000).batch_size == 10000

    def test_required_fields(self):
        with pytest.raises(ConfigurationError):
            MigrationSettings(source_folder="", target_database="db")
        with pytest.raises(ConfigurationError):
            MigrationSettings(source_folder="src", target_database="")

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError):
            MigrationSettings(source_folder="src", target_database="db", mode="upsert")


class TestMigrationCheckpoint:

    def test_round_trip_through_document(self):
        checkpoint = MigrationCheckpoint(source_folder="src", target_database="db",
                                         start_time=datetime(2024, 1, 1), last_update_time=datetime(2024, 1, 1))
        checkpoint.mark_table_completed("b")
        checkpoint.mark_table_completed("a")

        restored = MigrationCheckpoint.from_dict(checkpoint.to_dict())

        assert checkpoint.to_dict()["completedTables"] == ["a", "b"]
        assert restored.completed_tables == {"a", "b"}
        assert restored.is_table_completed("a")
        assert restored.matches("src", "db")
        assert not restored.matches("src", "other")

    def test_malformed_document(self):
        with pytest.raises(KeyError):
            MigrationCheckpoint.from_dict({"sourceFolder": "src"})


class TestResults:

    def test_row_accounting(self):
        result = TableMigrationResult(table_name="t", row_count=5, skipped_count=2, error_count=1,
                                      rows_discarded=2, rows_read=10)
        assert result.is_balanced
        result.rows_read = 11
        assert not result.is_balanced

    def test_statistics_ignore_resumed_rows(self):
        statistics = RunStatistics()
        statistics.add_table(TableMigrationResult(table_name="a", row_count=3, rows_read=3))
        statistics.add_table(TableMigrationResult(table_name="b", resumed=True))
        statistics.add_table(TableMigrationResult(table_name="c", rows_read=1, error_message="boom"))

        assert statistics.tables_migrated == 1
        assert statistics.tables_resumed == 1
        assert statistics.tables_failed == 1
        assert statistics.rows_migrated == 3
        assert statistics.rows_read == 4

    def test_connectivity_failure_detection(self):
        lost = BatchCommitError("lost", batch_number=1, error_category="connection_lost")
        data = BatchCommitError("bad", batch_number=1, error_category="data_error")

        assert MigrationRunResult(status=RunStatus.FAILED, error=lost).is_connectivity_failure
        assert MigrationRunResult(status=RunStatus.FAILED, error=DatabaseConnectionError("x")).is_connectivity_failure
        assert not MigrationRunResult(status=RunStatus.FAILED, error=data).is_connectivity_failure

    def test_record_numbers_are_one_based(self):
        with pytest.raises(ValueError):
            DiscrepancyRecord(0, [], "reason")
