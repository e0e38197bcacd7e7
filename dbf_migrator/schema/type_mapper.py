"""
Schema Translator - legacy column descriptors to MySQL column types.

``map_column_type`` is a pure, deterministic function of a column descriptor
and the safe-mode flag. ``build_table_plan`` reads a source cursor's field
descriptions once per table and produces the TableMigrationPlan the
provisioner and batch writer work from.
"""

import logging

from pathlib import Path
from typing import List

from ..interfaces import SourceCursorInterface
from ..models import NativeType, SourceColumnDescriptor, TableMigrationPlan
from ..utils import IdentifierUtils


logger = logging.getLogger(__name__)

UNBOUNDED_TEXT = "LONGTEXT"
BINARY_OBJECT = "LONGBLOB"

DEFAULT_CHARACTER_LENGTH = 255
MAX_VARCHAR_LENGTH = 65535
SAFE_MODE_MIN_PADDING = 50

# Character columns whose names contain one of these are treated as free text
LARGE_TEXT_KEYWORDS = (
    "memo", "note", "notes", "comment", "description", "particular",
    "remarks", "detail", "content", "text", "message",
    "body", "summary", "narrative", "observation", "review",
    "address",
)
MEMO_SUFFIX = "_memo"

# Destination columns added to every table
IDENTITY_COLUMN = "primary_id"
SOFT_DELETE_COLUMN = "is_deleted"
SOFT_DELETE_INDEX = "idx_is_deleted"

_FIXED_TYPES = {
    NativeType.DATE: "DATE",
    NativeType.DATETIME: "DATETIME",
    NativeType.LOGICAL: "BOOLEAN",
    NativeType.INTEGER: "INT",
    NativeType.FLOAT: "DOUBLE",
    NativeType.CURRENCY: "DECIMAL(19,4)",
    NativeType.MEMO: UNBOUNDED_TEXT,
    NativeType.BINARY: BINARY_OBJECT,
}


def is_large_text_column(descriptor: SourceColumnDescriptor) -> bool:
    """True if a character column's name marks it as free text."""
    names = (descriptor.name.lower(), descriptor.safe_name.lower())
    if any(name.endswith(MEMO_SUFFIX) for name in names):
        return True
    return any(keyword in name for keyword in LARGE_TEXT_KEYWORDS for name in names)


def effective_character_length(declared_length: int, safe_mode: bool) -> int:
    """
    Width used for a character column.

    Safe mode pads the declared width by the larger of +50 characters and +20%.
    """
    length = declared_length if declared_length and declared_length > 0 else DEFAULT_CHARACTER_LENGTH
    if safe_mode:
        # ceil(length * 1.2) in integer arithmetic
        length = max(length + SAFE_MODE_MIN_PADDING, (length * 6 + 4) // 5)
    return length


def map_column_type(descriptor: SourceColumnDescriptor, safe_mode: bool) -> str:
    """
    Map one source column to a MySQL column type.

    Args:
        descriptor: Source column descriptor
        safe_mode: Whether to inflate character widths

    Returns:
        MySQL type string, e.g. "DECIMAL(10,2)", "VARCHAR(360)", "LONGTEXT"
    """
    native_type = descriptor.native_type

    if native_type in _FIXED_TYPES:
        return _FIXED_TYPES[native_type]

    if native_type == NativeType.NUMERIC:
        if descriptor.decimal_count and descriptor.decimal_count > 0:
            return f"DECIMAL({descriptor.length},{descriptor.decimal_count})"
        if descriptor.length <= 10:
            return "INT"
        return "BIGINT"

    if native_type == NativeType.CHARACTER:
        if is_large_text_column(descriptor):
            return UNBOUNDED_TEXT
        length = effective_character_length(descriptor.length, safe_mode)
        if length > MAX_VARCHAR_LENGTH:
            return UNBOUNDED_TEXT
        return f"VARCHAR({length})"

    logger.warning(
        f"Unknown native type for column {descriptor.name!r}; falling back to {UNBOUNDED_TEXT}"
    )
    return UNBOUNDED_TEXT


def table_name_for(source_path: Path) -> str:
    """Destination table name derived from the source file name."""
    return IdentifierUtils.safe_sql_name(Path(source_path).stem)


def build_table_plan(source_path: Path, cursor: SourceCursorInterface, safe_mode: bool) -> TableMigrationPlan:
    """
    Describe a source table and resolve destination names and types.

    Column names are normalized and de-duplicated; the synthetic identity and
    soft-delete column names are never reused for source columns.
    """
    raw_fields = [cursor.describe_field(index) for index in range(cursor.field_count)]
    safe_names = IdentifierUtils.unique_names(
        (IdentifierUtils.safe_sql_name(name) for name, _, _, _ in raw_fields),
        taken={IDENTITY_COLUMN, SOFT_DELETE_COLUMN},
    )

    columns: List[SourceColumnDescriptor] = []
    for ordinal, ((name, native_type, length, decimal_count), safe_name) in enumerate(zip(raw_fields, safe_names)):
        columns.append(SourceColumnDescriptor(
            name=name,
            safe_name=safe_name,
            native_type=native_type,
            length=length or 0,
            decimal_count=decimal_count or 0,
            ordinal=ordinal,
        ))

    column_types = [map_column_type(column, safe_mode) for column in columns]
    plan = TableMigrationPlan(
        source_path=Path(source_path),
        table_name=table_name_for(source_path),
        columns=columns,
        column_types=column_types,
    )

    if logger.isEnabledFor(logging.DEBUG):
        for column, column_type in zip(columns, column_types):
            marker = " [large text]" if column_type == UNBOUNDED_TEXT else ""
            logger.debug(f"{plan.table_name}: {column.name} -> {column.safe_name} {column_type}{marker}")

    return plan
