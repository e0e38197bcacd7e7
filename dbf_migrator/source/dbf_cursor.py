"""
Source cursor over FoxPro / dBase tables backed by dbfread.

dbfread decodes the header, the field descriptors, memo side-files and field
values. Its record iterators yield live and deleted records separately, so
this cursor walks the record area itself to keep file order and expose the
deletion marker as a typed flag.
"""

import logging
import struct

from contextlib import ExitStack
from pathlib import Path
from typing import Any, List, Optional, Tuple

from dbfread import DBF, DBFNotFound, FieldParser, MissingMemoFile
from dbfread.memo import find_memofile

from ..interfaces import SourceCatalogInterface, SourceCursorInterface
from ..exceptions import SourceReadError
from ..models import NativeType


NATIVE_TYPES = {
    'C': NativeType.CHARACTER,
    'V': NativeType.CHARACTER,
    'N': NativeType.NUMERIC,
    'F': NativeType.FLOAT,
    'B': NativeType.FLOAT,
    'O': NativeType.FLOAT,
    'D': NativeType.DATE,
    'T': NativeType.DATETIME,
    '@': NativeType.DATETIME,
    'L': NativeType.LOGICAL,
    'M': NativeType.MEMO,
    'G': NativeType.BINARY,
    'P': NativeType.BINARY,
    'W': NativeType.BINARY,
    'Q': NativeType.BINARY,
    'I': NativeType.INTEGER,
    '+': NativeType.INTEGER,
    'Y': NativeType.CURRENCY,
}

# Visual FoxPro system column holding null flags
NULL_FLAGS_TYPE = '0'

LIVE_MARKER = b' '
DELETED_MARKER = b'*'
END_MARKERS = (b'\x1a', b'')

# Visual FoxPro 9 blob; stored in the memo file, which dbfread only looks for when M/G/P/B fields exist
BLOB_TYPE = 'W'
MEMO_TYPES = ('M', BLOB_TYPE)


class LegacyFieldParser(FieldParser):
    """
    dbfread field parser extended with the Visual FoxPro 9 binary types.

    Blob (W) values are read from the memo file the way General fields are,
    varbinary (Q) values are returned as stored, and field codes dbfread does
    not recognise are passed through as raw bytes instead of rejecting the table.
    """

    def field_type_supported(self, field_type):
        return True

    def parse(self, field, data):
        if not super().field_type_supported(field.type):
            return bytes(data)
        return super().parse(field, data)

    def parseW(self, field, data):
        return self.parseG(field, data)

    def parseQ(self, field, data):
        return bytes(data)


class DbfSourceCursor(SourceCursorInterface):
    """Sequential cursor over one .dbf file, deleted records included."""

    def __init__(self, path: Path, encoding: str = 'cp1252', char_decode_errors: str = 'strict'):
        """
        Open a table.

        Args:
            path: Path to the .dbf file; a companion .fpt/.dbt is picked up automatically
            encoding: Character encoding of text fields
            char_decode_errors: Error handler for undecodable text ('strict' or 'replace')

        Raises:
            SourceReadError: If the file or its header cannot be read
        """
        self.logger = logging.getLogger(__name__)
        self.path = Path(path)
        self._resources = ExitStack()
        try:
            self._table = DBF(
                str(self.path),
                encoding=encoding,
                load=False,
                ignore_missing_memofile=True,
                char_decode_errors=char_decode_errors,
                parserclass=LegacyFieldParser,
            )
            if self._table.memofilename is None and any(f.type == BLOB_TYPE for f in self._table.fields):
                self._table.memofilename = find_memofile(self._table.filename)
            self._file = self._resources.enter_context(open(self.path, 'rb'))
            # dbfread opens the memo side-file per iteration; one handle is kept for the cursor's life
            memofile = self._resources.enter_context(self._table._open_memofile())
        except (DBFNotFound, MissingMemoFile, OSError, ValueError, struct.error) as e:
            self._resources.close()
            raise SourceReadError(f"Cannot open source table {self.path}: {e}", table_name=self.path.stem)

        self._parser = self._table.parserclass(self._table, memofile)
        self._record_length = self._table.header.recordlen

        self._fields = []
        self._slices: List[Tuple[Any, int, int]] = []
        offset = 0
        for dbf_field in self._table.fields:
            if dbf_field.type != NULL_FLAGS_TYPE:
                self._fields.append(dbf_field)
                self._slices.append((dbf_field, offset, offset + dbf_field.length))
            offset += dbf_field.length

        self._file.seek(self._table.header.headerlen)
        self._record: Optional[bytes] = None
        self._deleted = False
        self.record_number = 0

        if self._table.memofilename is None and any(f.type in MEMO_TYPES for f in self._fields):
            self.logger.warning(f"{self.path.name}: memo fields present but no memo file found; memo values read as NULL")

    @property
    def field_count(self) -> int:
        return len(self._fields)

    def describe_field(self, index: int):
        dbf_field = self._fields[index]
        native_type = NATIVE_TYPES.get(dbf_field.type, NativeType.UNKNOWN)
        return dbf_field.name, native_type, dbf_field.length, dbf_field.decimal_count

    def read(self) -> bool:
        while True:
            marker = self._file.read(1)
            if marker in END_MARKERS:
                self._record = None
                return False
            data = self._file.read(self._record_length - 1)
            if len(data) < self._record_length - 1:
                raise SourceReadError(
                    f"{self.path.name} is truncated after record {self.record_number}",
                    table_name=self.path.stem, record_number=self.record_number + 1
                )
            if marker in (LIVE_MARKER, DELETED_MARKER):
                self._record = data
                self._deleted = marker == DELETED_MARKER
                self.record_number += 1
                return True
            self.logger.warning(f"{self.path.name}: skipping record with unknown marker {marker!r}")

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    def get_value(self, index: int) -> Any:
        if self._record is None:
            raise RuntimeError("No current record; call read() first")
        dbf_field, start, end = self._slices[index]
        return self._parser.parse(dbf_field, self._record[start:end])

    def close(self) -> None:
        self._resources.close()


class DbfSourceCatalog(SourceCatalogInterface):
    """Finds .dbf files in a folder and opens DbfSourceCursors over them."""

    def __init__(self, encoding: str = 'cp1252', char_decode_errors: str = 'strict'):
        self.encoding = encoding
        self.char_decode_errors = char_decode_errors

    def list_tables(self, folder: Path) -> List[Path]:
        folder = Path(folder)
        tables = [p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == '.dbf']
        return sorted(tables, key=lambda p: p.name.lower())

    def open_table(self, path: Path) -> DbfSourceCursor:
        return DbfSourceCursor(path, encoding=self.encoding, char_decode_errors=self.char_decode_errors)
