"""
Unit tests for BatchWriter transactional behavior.
"""

import pytest

from pathlib import Path
from unittest.mock import Mock

from dbf_migrator.database.batch_writer import BatchWriter
from dbf_migrator.exceptions import BatchCommitError
from dbf_migrator.models import MigrationMode, NativeType, SourceColumnDescriptor, TableMigrationPlan


@pytest.fixture
def plan():
    columns = [
        SourceColumnDescriptor(name="ID", safe_name="id", native_type=NativeType.NUMERIC, length=5, ordinal=0),
        SourceColumnDescriptor(name="NAME", safe_name="name", native_type=NativeType.CHARACTER, length=10, ordinal=1),
    ]
    return TableMigrationPlan(source_path=Path("customers.dbf"), table_name="customers",
                              columns=columns, column_types=["INT", "VARCHAR(60)"])


class TestBatchWriterStatements:

    def test_replace_mode_uses_plain_insert(self, fake_channel, plan):
        writer = BatchWriter(fake_channel, plan, MigrationMode.REPLACE)
        writer.append((1, "a", False))
        writer.append((2, "b", False))
        writer.flush()

        sql, params = fake_channel.statements[0]
        assert sql == ("INSERT INTO `customers` (`id`, `name`, `is_deleted`) "
                       "VALUES (?, ?, ?), (?, ?, ?)")
        assert params == [1, "a", False, 2, "b", False]

    def test_merge_mode_uses_insert_ignore(self, fake_channel, plan):
        writer = BatchWriter(fake_channel, plan, MigrationMode.MERGE)
        writer.append((1, "a", False))
        writer.flush()
        assert fake_channel.statements[0][0].startswith("INSERT IGNORE INTO `customers`")

    def test_append_rejects_wrong_width(self, fake_channel, plan):
        writer = BatchWriter(fake_channel, plan, MigrationMode.REPLACE)
        with pytest.raises(ValueError):
            writer.append((1, "a"))


class TestBatchWriterAtomicity:
    """A batch is committed completely or not at all."""

    def test_flush_commits_rows_and_numbers_batches(self, fake_channel, plan):
        writer = BatchWriter(fake_channel, plan, MigrationMode.REPLACE)
        writer.append((1, "a", False))
        assert writer.flush() == 1
        writer.append((2, "b", True))
        assert writer.flush() == 1

        assert writer.batch_number == 2
        assert fake_channel.rows("customers") == [(1, "a", False), (2, "b", True)]
        assert fake_channel.commits == 2

    def test_empty_flush_is_a_no_op(self, fake_channel, plan):
        writer = BatchWriter(fake_channel, plan, MigrationMode.REPLACE)
        assert writer.flush() == 0
        assert writer.batch_number == 0
        assert fake_channel.statements == []

    def test_failure_rolls_back_the_whole_batch(self, fake_channel_class, plan):
        channel = fake_channel_class(fail_on_value="boom")
        writer = BatchWriter(channel, plan, MigrationMode.REPLACE)
        writer.append((1, "ok", False))
        writer.flush()

        writer.append((2, "fine", False))
        writer.append((3, "boom", False))
        writer.append((4, "also fine", False))
        with pytest.raises(BatchCommitError) as exc_info:
            writer.flush()

        error = exc_info.value
        assert error.batch_number == 2
        assert error.rows_lost == 3
        assert error.table_name == "customers"
        assert error.error_category == "data_error"
        assert "Batch #2" in str(error)
        assert channel.rows("customers") == [(1, "ok", False)]
        assert channel.rollbacks == 1
        assert len(writer) == 0

    def test_commit_failure_is_connectivity_failure(self, fake_channel, plan):
        writer = BatchWriter(fake_channel, plan, MigrationMode.REPLACE)
        writer.append((1, "a", False))
        fake_channel.fail_on_commit = True

        with pytest.raises(BatchCommitError) as exc_info:
            writer.flush()

        assert exc_info.value.is_connectivity_failure
        assert fake_channel.rows("customers") == []

    def test_rollback_failure_is_logged_critical(self, plan, caplog):
        channel = Mock()
        channel.in_transaction = False
        channel.execute.side_effect = RuntimeError("statement failed")
        channel.rollback.side_effect = RuntimeError("rollback failed")
        writer = BatchWriter(channel, plan, MigrationMode.REPLACE)
        writer.append((1, "a", False))

        with pytest.raises(BatchCommitError):
            writer.flush()

        assert "ROLLBACK FAILED" in caplog.text

    def test_discard_drops_rows_and_consumes_batch_number(self, fake_channel, plan):
        writer = BatchWriter(fake_channel, plan, MigrationMode.REPLACE)
        writer.append((1, "a", False))
        assert writer.pending_batch_number == 1

        assert writer.discard() == 1
        assert writer.batch_number == 1
        assert writer.pending_batch_number == 2
        writer.append((2, "b", False))
        writer.flush()
        assert writer.batch_number == 2
        assert fake_channel.rows("customers") == [(2, "b", False)]

    def test_large_batches_are_split_into_several_statements(self, fake_channel, plan, monkeypatch):
        monkeypatch.setattr("dbf_migrator.database.batch_writer.MAX_STATEMENT_PARAMETERS", 6)
        writer = BatchWriter(fake_channel, plan, MigrationMode.REPLACE)
        for i in range(5):
            writer.append((i, str(i), False))

        assert writer.flush() == 5
        assert len(fake_channel.statements) == 3
        assert fake_channel.commits == 1
        assert len(fake_channel.rows("customers")) == 5
