"""
Unit tests for CheckpointManager persistence and run locking.
"""

import json
import os
import pytest

from datetime import datetime
from unittest.mock import patch

from dbf_migrator.exceptions import MigrationLockError
from dbf_migrator.models import MigrationCheckpoint
from dbf_migrator.tracking.checkpoint_manager import CheckpointManager


@pytest.fixture
def manager(tmp_path):
    return CheckpointManager(tmp_path / "logs")


@pytest.fixture
def checkpoint():
    started = datetime(2024, 3, 1, 8, 30, 0)
    return MigrationCheckpoint(
        source_folder="/data/legacy",
        target_database="warehouse",
        start_time=started,
        last_update_time=started,
        completed_tables={"customers", "orders"},
        total_tables=5,
    )


class TestCheckpointPersistence:

    def test_save_then_load_returns_same_progress(self, manager, checkpoint):
        assert manager.save(checkpoint)

        loaded = manager.load("/data/legacy", "warehouse")

        assert loaded is not None
        assert loaded.completed_tables == {"customers", "orders"}
        assert loaded.total_tables == 5
        assert loaded.start_time == checkpoint.start_time
        assert not loaded.is_completed

    def test_document_layout(self, manager, checkpoint):
        manager.save(checkpoint)
        with open(manager.checkpoint_path("warehouse"), encoding="utf-8") as f:
            document = json.load(f)

        assert document["sourceFolder"] == "/data/legacy"
        assert document["targetDatabase"] == "warehouse"
        assert document["completedTables"] == ["customers", "orders"]
        assert document["startTime"] == "2024-03-01T08:30:00"
        assert not os.path.exists(str(manager.checkpoint_path("warehouse")) + ".tmp")

    def test_missing_checkpoint_loads_as_none(self, manager):
        assert manager.load("/data/legacy", "warehouse") is None
        assert not manager.exists("warehouse")

    def test_mismatched_folder_is_ignored(self, manager, checkpoint):
        manager.save(checkpoint)
        assert manager.load("/data/other", "warehouse") is None

    def test_mismatched_database_is_ignored(self, manager, checkpoint):
        manager.save(checkpoint)
        assert manager.load("/data/legacy", "archive") is None

        # A slot whose document names another database is not resumed either
        manager.checkpoint_path("warehouse").replace(manager.checkpoint_path("archive"))
        assert manager.exists("archive")
        assert manager.load("/data/legacy", "archive") is None

    def test_completed_checkpoint_is_ignored(self, manager, checkpoint):
        checkpoint.is_completed = True
        manager.save(checkpoint)
        assert manager.load("/data/legacy", "warehouse") is None

    def test_corrupt_checkpoint_is_ignored(self, manager):
        path = manager.checkpoint_path("warehouse")
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")
        assert manager.load("/data/legacy", "warehouse") is None

    def test_delete_removes_slot_and_tolerates_absence(self, manager, checkpoint):
        manager.save(checkpoint)
        manager.delete("warehouse")
        assert not manager.exists("warehouse")
        manager.delete("warehouse")

    def test_save_failure_returns_false(self, manager, checkpoint):
        with patch("dbf_migrator.tracking.checkpoint_manager.os.replace", side_effect=OSError("disk full")):
            assert manager.save(checkpoint) is False

    def test_slot_name_is_escaped(self, manager):
        assert manager.checkpoint_path("my db/x").name == "checkpoint_my%20db%2Fx.json"
        assert manager.lock_path("my db") != manager.lock_path("my_db")


class TestRunLock:

    def test_lock_is_released_on_exit(self, manager):
        with manager.lock("warehouse") as path:
            assert path.exists()
        assert not path.exists()

    def test_second_live_holder_is_refused(self, manager):
        with manager.lock("warehouse"):
            with pytest.raises(MigrationLockError):
                with manager.lock("warehouse"):
                    pass

    def test_stale_lock_is_taken_over(self, manager):
        path = manager.lock_path("warehouse")
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"pid": 999999}), encoding="utf-8")

        with patch("dbf_migrator.tracking.checkpoint_manager.psutil.pid_exists", return_value=False):
            with manager.lock("warehouse"):
                with open(path, encoding="utf-8") as f:
                    assert json.load(f)["pid"] == os.getpid()

    def test_lock_being_written_is_respected(self, manager):
        path = manager.lock_path("warehouse")
        path.parent.mkdir(parents=True)
        path.write_text("", encoding="utf-8")

        with pytest.raises(MigrationLockError):
            with manager.lock("warehouse"):
                pass
        assert path.exists()

    def test_old_unreadable_lock_is_taken_over(self, manager):
        path = manager.lock_path("warehouse")
        path.parent.mkdir(parents=True)
        path.write_text("", encoding="utf-8")
        old = path.stat().st_mtime - 60
        os.utime(path, (old, old))

        with manager.lock("warehouse"):
            with open(path, encoding="utf-8") as f:
                assert json.load(f)["pid"] == os.getpid()
