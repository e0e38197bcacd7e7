"""
Integration tests for the dbfread-backed source cursor.

Tables are generated byte-for-byte as dBase III files so the cursor runs
against real header, field descriptor and record layouts.
"""

import struct
import pytest

from datetime import date

from dbf_migrator.exceptions import SourceReadError
from dbf_migrator.models import NativeType
from dbf_migrator.source.dbf_cursor import DbfSourceCatalog, DbfSourceCursor


FIELDS = [
    ("ID", "N", 5, 0),
    ("NAME", "C", 10, 0),
    ("PRICE", "N", 8, 2),
    ("BORN", "D", 8, 0),
    ("ACTIVE", "L", 1, 0),
]


def encode_record(marker, values, fields=FIELDS):
    data = marker
    for (_, _, length, _), value in zip(fields, values):
        raw = value if isinstance(value, bytes) else value.encode("cp1252")
        data += raw.ljust(length, b" ")[:length]
    return data


def write_dbf(path, records, terminator=b"\x1a", fields=FIELDS, version=0x03):
    """Write a dBase III (or, with version 0x30, Visual FoxPro) table; records are (marker, [field value, ...])."""
    record_length = 1 + sum(length for _, _, length, _ in fields)
    header_length = 32 + 32 * len(fields) + 1
    header = struct.pack("<BBBBLHH20x", version, 124, 1, 2, len(records), header_length, record_length)
    descriptors = b""
    for name, field_type, length, decimals in fields:
        descriptors += (name.encode("ascii").ljust(11, b"\x00") + field_type.encode("ascii")
                        + b"\x00" * 4 + bytes([length, decimals]) + b"\x00" * 14)
    body = b"".join(encode_record(marker, values, fields) for marker, values in records)
    path.write_bytes(header + descriptors + b"\r" + body + terminator)
    return path


def write_fpt(path, memos, block_size=64):
    """Write a Visual FoxPro memo file; memos are binary payloads stored from block 8 on."""
    data = struct.pack(">LHH504s", 0, 0, block_size, b"")
    indexes = []
    for memo in memos:
        indexes.append(len(data) // block_size)
        block = struct.pack(">LL", 0, len(memo)) + memo
        padding = -len(block) % block_size
        data += block + b"\x00" * padding
    path.write_bytes(data)
    return indexes


@pytest.fixture
def customers_dbf(tmp_path):
    return write_dbf(tmp_path / "CUSTOMERS.DBF", [
        (b" ", ["1", "Ann", "12.50", "20240102", "T"]),
        (b"*", ["2", "Bob", "3.00", "19991231", "F"]),
        (b" ", ["3", "Zoë", "", "", "?"]),
    ])


class TestDbfSourceCursor:

    def test_describes_fields(self, customers_dbf):
        with DbfSourceCursor(customers_dbf) as cursor:
            assert cursor.field_count == 5
            assert cursor.describe_field(0) == ("ID", NativeType.NUMERIC, 5, 0)
            assert cursor.describe_field(1) == ("NAME", NativeType.CHARACTER, 10, 0)
            assert cursor.describe_field(2) == ("PRICE", NativeType.NUMERIC, 8, 2)
            assert cursor.describe_field(3) == ("BORN", NativeType.DATE, 8, 0)
            assert cursor.describe_field(4) == ("ACTIVE", NativeType.LOGICAL, 1, 0)

    def test_reads_live_and_deleted_records_in_file_order(self, customers_dbf):
        with DbfSourceCursor(customers_dbf) as cursor:
            assert cursor.read()
            assert not cursor.is_deleted
            assert [cursor.get_value(i) for i in range(5)] == [1, "Ann", 12.5, date(2024, 1, 2), True]

            assert cursor.read()
            assert cursor.is_deleted
            assert cursor.get_value(1) == "Bob"
            assert cursor.get_value(4) is False

            assert cursor.read()
            assert not cursor.is_deleted
            assert cursor.get_value(1) == "Zoë"
            assert cursor.get_value(2) is None
            assert cursor.get_value(3) is None
            assert cursor.get_value(4) is None
            assert cursor.record_number == 3

            assert not cursor.read()
            assert not cursor.read()

    def test_missing_end_marker_is_end_of_table(self, tmp_path):
        path = write_dbf(tmp_path / "t.dbf", [(b" ", ["1", "A", "1", "20240101", "T"])], terminator=b"")
        with DbfSourceCursor(path) as cursor:
            assert cursor.read()
            assert not cursor.read()

    def test_truncated_record_raises(self, tmp_path):
        path = write_dbf(tmp_path / "t.dbf", [(b" ", ["1", "A", "1", "20240101", "T"])], terminator=b"")
        path.write_bytes(path.read_bytes()[:-4])
        with DbfSourceCursor(path) as cursor:
            with pytest.raises(SourceReadError):
                cursor.read()

    def test_get_value_before_read(self, customers_dbf):
        with DbfSourceCursor(customers_dbf) as cursor:
            with pytest.raises(RuntimeError):
                cursor.get_value(0)

    def test_missing_file_raises_source_read_error(self, tmp_path):
        with pytest.raises(SourceReadError):
            DbfSourceCursor(tmp_path / "absent.dbf")


class TestVisualFoxProBinaryTypes:

    def test_varbinary_field_is_read_as_stored(self, tmp_path):
        fields = [("ID", "N", 3, 0), ("HASH", "Q", 4, 0)]
        path = write_dbf(tmp_path / "T.DBF", [(b" ", ["1", b"\x01\x02\x00\xff"])], fields=fields, version=0x30)

        with DbfSourceCursor(path) as cursor:
            assert cursor.describe_field(1) == ("HASH", NativeType.BINARY, 4, 0)
            assert cursor.read()
            assert cursor.get_value(0) == 1
            assert cursor.get_value(1) == b"\x01\x02\x00\xff"

    def test_blob_field_is_read_from_memo_file(self, tmp_path):
        fields = [("ID", "N", 3, 0), ("PHOTO", "W", 4, 0)]
        first, second = write_fpt(tmp_path / "BLOBS.FPT", [b"\x89PNG\r\n", b"\x00" * 100])
        path = write_dbf(tmp_path / "BLOBS.DBF", [
            (b" ", ["1", struct.pack("<I", first)]),
            (b" ", ["2", struct.pack("<I", second)]),
            (b" ", ["3", b"\x00" * 4]),
        ], fields=fields, version=0x30)

        with DbfSourceCursor(path) as cursor:
            assert cursor.describe_field(1) == ("PHOTO", NativeType.BINARY, 4, 0)
            values = []
            while cursor.read():
                values.append(cursor.get_value(1))

        assert values == [b"\x89PNG\r\n", b"\x00" * 100, None]

    def test_unrecognised_field_code_is_passed_through_as_bytes(self, tmp_path):
        fields = [("ID", "N", 3, 0), ("ODD", "Z", 3, 0)]
        path = write_dbf(tmp_path / "T.DBF", [(b" ", ["1", b"abc"])], fields=fields, version=0x30)

        with DbfSourceCursor(path) as cursor:
            assert cursor.describe_field(1) == ("ODD", NativeType.UNKNOWN, 3, 0)
            assert cursor.read()
            assert cursor.get_value(1) == b"abc"


class TestDbfSourceCatalog:

    def test_lists_tables_case_insensitively(self, tmp_path):
        write_dbf(tmp_path / "b.DBF", [])
        write_dbf(tmp_path / "A.dbf", [])
        (tmp_path / "notes.txt").write_text("not a table")

        tables = DbfSourceCatalog().list_tables(tmp_path)

        assert [p.name for p in tables] == ["A.dbf", "b.DBF"]

    def test_opens_cursor(self, customers_dbf):
        with DbfSourceCatalog(encoding="cp1252").open_table(customers_dbf) as cursor:
            assert cursor.read()
