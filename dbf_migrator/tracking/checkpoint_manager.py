"""
Checkpoint Manager - durable per-table completion state.

One JSON document per destination database (``checkpoint_<database>.json``)
records which tables of the current run are fully committed. The document
is overwritten wholesale on every save using a temp file and an atomic
rename, so a crash never leaves a half-written checkpoint behind.

Checkpointing is best-effort: load problems mean "no checkpoint" and save
failures are logged without stopping the run.
"""

import json
import logging
import os
import time
import psutil

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote

from ..exceptions import MigrationLockError
from ..models import MigrationCheckpoint


# An unreadable lock file younger than this is still being written by its owner
LOCK_SETTLE_SECONDS = 5.0


class CheckpointManager:
    """Loads, saves and deletes checkpoint slots under a log root folder."""

    def __init__(self, log_root: Union[str, Path]):
        """
        Initialize the manager.

        Args:
            log_root: Folder holding checkpoint and lock files
        """
        self.log_root = Path(log_root)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _slot_name(database_name: str) -> str:
        # Percent-escaped: distinct database names map to distinct slots
        return quote(database_name, safe='')

    def checkpoint_path(self, database_name: str) -> Path:
        return self.log_root / f"checkpoint_{self._slot_name(database_name)}.json"

    def lock_path(self, database_name: str) -> Path:
        return self.log_root / f"checkpoint_{self._slot_name(database_name)}.lock"

    def exists(self, database_name: str) -> bool:
        """True if an unfinished run left a checkpoint for this database."""
        return self.checkpoint_path(database_name).exists()

    def load(self, source_folder: str, target_database: str) -> Optional[MigrationCheckpoint]:
        """
        Load the checkpoint for a (source folder, database) pair.

        Returns:
            The checkpoint, or None if absent, unreadable, for a different
            folder/database, or already complete
        """
        path = self.checkpoint_path(target_database)
        if not path.exists():
            return None

        try:
            with open(path, 'r', encoding='utf-8') as file:
                checkpoint = MigrationCheckpoint.from_dict(json.load(file))
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Ignoring unreadable checkpoint {path}: {e}")
            return None

        if not checkpoint.matches(source_folder, target_database):
            self.logger.info(
                f"Checkpoint {path.name} belongs to {checkpoint.source_folder} -> {checkpoint.target_database}; ignoring"
            )
            return None
        if checkpoint.is_completed:
            self.logger.info(f"Checkpoint {path.name} is already complete; ignoring")
            return None

        self.logger.info(
            f"Loaded checkpoint: {len(checkpoint.completed_tables)}/{checkpoint.total_tables} tables completed"
        )
        return checkpoint

    def save(self, checkpoint: MigrationCheckpoint) -> bool:
        """
        Persist a checkpoint, replacing any previous one for its database.

        Returns:
            True if the checkpoint was written, False if saving failed (logged)
        """
        path = self.checkpoint_path(checkpoint.target_database)
        temp_path = path.with_suffix('.json.tmp')
        try:
            self.log_root.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as file:
                json.dump(checkpoint.to_dict(), file, indent=2)
                file.flush()
                os.fsync(file.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            self.logger.error(f"Failed to save checkpoint {path}: {e}")
            return False
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Checkpoint saved: {sorted(checkpoint.completed_tables)}")
        return True

    def delete(self, database_name: str) -> None:
        """Remove the checkpoint slot after a fully successful run."""
        path = self.checkpoint_path(database_name)
        try:
            path.unlink()
            self.logger.info(f"Checkpoint {path.name} deleted")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.error(f"Failed to delete checkpoint {path}: {e}")

    @contextmanager
    def lock(self, database_name: str):
        """
        Advisory lock serializing runs against one destination database.

        A lock left behind by a process that no longer exists is taken over.

        Raises:
            MigrationLockError: If another live run holds the lock
        """
        path = self.lock_path(database_name)
        self.log_root.mkdir(parents=True, exist_ok=True)
        self._acquire(path, database_name)
        try:
            yield path
        finally:
            try:
                path.unlink()
            except OSError as e:
                self.logger.warning(f"Failed to release lock {path}: {e}")

    def _acquire(self, path: Path, database_name: str) -> None:
        for _ in range(2):
            try:
                fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                holder = self._read_lock_holder(path)
                if holder is not None and psutil.pid_exists(holder):
                    raise MigrationLockError(
                        f"Database {database_name} is locked by another migration run (pid {holder})",
                        error_category="locked"
                    )
                if holder is None and self._lock_age(path) < LOCK_SETTLE_SECONDS:
                    # Another run created the file and has not written its pid yet
                    raise MigrationLockError(
                        f"Database {database_name} is being locked by another migration run",
                        error_category="locked"
                    )
                self.logger.warning(f"Removing stale lock {path.name} (pid {holder})")
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                continue
            with os.fdopen(fd, 'w', encoding='utf-8') as file:
                json.dump({"pid": os.getpid(), "acquired": datetime.now().isoformat()}, file)
            return
        raise MigrationLockError(f"Could not acquire lock for database {database_name}", error_category="locked")

    @staticmethod
    def _lock_age(path: Path) -> float:
        try:
            return time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return LOCK_SETTLE_SECONDS

    @staticmethod
    def _read_lock_holder(path: Path) -> Optional[int]:
        try:
            with open(path, 'r', encoding='utf-8') as file:
                return int(json.load(file)["pid"])
        except (OSError, ValueError, KeyError, TypeError):
            return None
