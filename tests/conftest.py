"""
Shared fakes for the migration engine tests.

FakeSqlChannel keeps committed rows per table and stages rows inside a
transaction so tests can assert on atomicity. InMemorySourceCursor and
InMemorySourceCatalog stand in for dbfread-backed tables.
"""

import re

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from dbf_migrator.exceptions import DatabaseConnectionError, SourceReadError
from dbf_migrator.interfaces import SourceCatalogInterface, SourceCursorInterface, SqlChannelInterface
from dbf_migrator.models import MigrationSettings, NativeType


_INSERT_PATTERN = re.compile(r"INTO `([^`]+)` \((.*?)\) VALUES")
_CREATE_PATTERN = re.compile(r"CREATE TABLE (?:IF NOT EXISTS )?`([^`]+)` \((.*)\)$")
_DROP_PATTERN = re.compile(r"DROP TABLE IF EXISTS `([^`]+)`")
_COLUMN_PATTERN = re.compile(r"^`([^`]+)` ")


class FakeSqlChannel(SqlChannelInterface):
    """
    In-memory destination.

    Failure injection:
        fail_on_value: any execute() whose params contain this value raises fail_message
        fail_on_commit: the next commit() raises and stages nothing
        connect_error: connect() raises DatabaseConnectionError
    """

    def __init__(self, fail_on_value: Any = None, connect_error: bool = False,
                 fail_message: str = "Data too long for column (1406)"):
        self.tables: Dict[str, List[Tuple[Any, ...]]] = {}
        self.columns: Dict[str, List[str]] = {}
        self.ddl: List[str] = []
        self.statements: List[Tuple[str, List[Any]]] = []
        self.database: Optional[str] = None
        self.connected = False
        self.closed = False
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_value = fail_on_value
        self.fail_message = fail_message
        self.fail_on_commit = False
        self.connect_error = connect_error
        self._staged: List[Tuple[str, Tuple[Any, ...]]] = []
        self._in_transaction = False

    def connect(self) -> None:
        if self.connect_error:
            raise DatabaseConnectionError("Failed to connect to database server: (2003) Can't connect",
                                          error_category="connection_failed")
        self.connected = True

    def close(self) -> None:
        self._staged = []
        self._in_transaction = False
        self.connected = False
        self.closed = True

    def change_database(self, database_name: str) -> None:
        self.database = database_name

    def execute_ddl(self, sql: str) -> None:
        self.ddl.append(sql)
        drop = _DROP_PATTERN.match(sql)
        if drop:
            self.tables.pop(drop.group(1), None)
            self.columns.pop(drop.group(1), None)
            return
        create = _CREATE_PATTERN.match(sql)
        if create and create.group(1) not in self.tables:
            name = create.group(1)
            self.tables[name] = []
            self.columns[name] = [
                match.group(1) for match in
                (_COLUMN_PATTERN.match(part.strip()) for part in create.group(2).split(", "))
                if match
            ]

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin(self) -> None:
        self._in_transaction = True

    def commit(self) -> None:
        if self.fail_on_commit:
            self.fail_on_commit = False
            raise RuntimeError("Lost connection to MySQL server during query (2013)")
        for table, row in self._staged:
            self.tables.setdefault(table, []).append(row)
        self._staged = []
        self._in_transaction = False
        self.commits += 1

    def rollback(self) -> None:
        self._staged = []
        self._in_transaction = False
        self.rollbacks += 1

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        params = list(params or [])
        self.statements.append((sql, params))
        if self.fail_on_value is not None and self.fail_on_value in params:
            raise RuntimeError(f"{self.fail_message}: {self.fail_on_value!r}")
        match = _INSERT_PATTERN.search(sql)
        if not match:
            return 0
        width = len(match.group(2).split(", "))
        rows = [tuple(params[i:i + width]) for i in range(0, len(params), width)]
        for row in rows:
            self._staged.append((match.group(1), row))
        return len(rows)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Tuple[Any, ...]]:
        table = (params or [None])[0]
        return [(name,) for name in self.columns.get(table, [])]

    def rows(self, table: str) -> List[Tuple[Any, ...]]:
        return list(self.tables.get(table, []))


class InMemorySourceCursor(SourceCursorInterface):
    """
    Cursor over a list of (is_deleted, values) records.

    A value that is an Exception instance is raised from get_value();
    ``truncated_after`` makes read() fail like a truncated file.
    """

    def __init__(self, fields: Sequence[Tuple[str, NativeType, int, int]],
                 records: Sequence[Tuple[bool, Sequence[Any]]], truncated_after: Optional[int] = None):
        self.fields = list(fields)
        self.records = list(records)
        self.truncated_after = truncated_after
        self.position = -1
        self.closed = False

    @property
    def field_count(self) -> int:
        return len(self.fields)

    def describe_field(self, index: int):
        return self.fields[index]

    def read(self) -> bool:
        if self.truncated_after is not None and self.position + 1 >= self.truncated_after:
            raise SourceReadError(f"table is truncated after record {self.truncated_after}")
        self.position += 1
        return self.position < len(self.records)

    @property
    def is_deleted(self) -> bool:
        return self.records[self.position][0]

    def get_value(self, index: int) -> Any:
        value = self.records[self.position][1][index]
        if isinstance(value, Exception):
            raise value
        return value

    def close(self) -> None:
        self.closed = True


class InMemorySourceCatalog(SourceCatalogInterface):
    """Catalog of in-memory tables keyed by file name (e.g. 'CUSTOMERS.DBF')."""

    def __init__(self, tables: Dict[str, dict]):
        self.tables = tables
        self.opened: List[str] = []

    def list_tables(self, folder: Path) -> List[Path]:
        return [Path(folder) / name for name in sorted(self.tables, key=str.lower)]

    def open_table(self, path: Path) -> InMemorySourceCursor:
        name = Path(path).name
        self.opened.append(name)
        return InMemorySourceCursor(**self.tables[name])


@pytest.fixture
def fake_channel():
    return FakeSqlChannel()


@pytest.fixture
def fake_channel_class():
    return FakeSqlChannel


@pytest.fixture
def cursor_class():
    return InMemorySourceCursor


@pytest.fixture
def catalog_class():
    return InMemorySourceCatalog


@pytest.fixture
def source_folder(tmp_path):
    folder = tmp_path / "source"
    folder.mkdir()
    return folder


@pytest.fixture
def make_settings(tmp_path, source_folder):
    """Factory for MigrationSettings rooted in the test's temp folder."""
    def _make(**overrides) -> MigrationSettings:
        values = dict(
            source_folder=str(source_folder),
            target_database="warehouse",
            connection_string="DRIVER={fake};",
            batch_size=2,
            log_root=str(tmp_path / "logs"),
        )
        values.update(overrides)
        return MigrationSettings(**values)
    return _make
