"""
Value mapping from decoded source values to destination parameters.

Each column gets a converter chosen from its destination type once per
table. Converters either return a value the destination accepts as-is or
raise DataMappingError, which the orchestrator treats as a recoverable
row-level error.
"""

import logging
import re

from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, List, Sequence

from ..exceptions import DataMappingError
from ..models import BatchRow, SourceColumnDescriptor, TableMigrationPlan
from ..utils import StringUtils


INT_RANGE = (-2 ** 31, 2 ** 31 - 1)
BIGINT_RANGE = (-2 ** 63, 2 ** 63 - 1)

_TYPE_PATTERN = re.compile(r'^(\w+)(?:\((\d+)(?:,(\d+))?\))?$')


class ValueMapper:
    """Converts one source record into a BatchRow for a table plan."""

    def __init__(self, plan: TableMigrationPlan, safe_mode: bool = True):
        self.plan = plan
        self.safe_mode = safe_mode
        self.logger = logging.getLogger(__name__)
        self._converters: List[Callable[[Any], Any]] = [
            self._converter_for(column, column_type)
            for column, column_type in zip(plan.columns, plan.column_types)
        ]

    def map_row(self, values: Sequence[Any], is_deleted: bool) -> BatchRow:
        """
        Map a record's values and append the soft-delete flag.

        Raises:
            DataMappingError: If any value cannot be represented in its column
        """
        if len(values) != len(self._converters):
            raise DataMappingError(
                f"Record has {len(values)} values, table {self.plan.table_name} has {len(self._converters)} columns",
                table_name=self.plan.table_name
            )
        mapped = []
        for column, column_type, convert, value in zip(self.plan.columns, self.plan.column_types,
                                                       self._converters, values):
            if value is None:
                mapped.append(None)
                continue
            try:
                mapped.append(convert(value))
            except DataMappingError:
                raise
            except (ValueError, TypeError, ArithmeticError) as e:
                raise DataMappingError(
                    f"Cannot convert {column.name} value {value!r} to {column_type}: {e}",
                    field_name=column.name, source_value=value, target_type=column_type,
                    table_name=self.plan.table_name
                )
        mapped.append(bool(is_deleted))
        return tuple(mapped)

    def _converter_for(self, column: SourceColumnDescriptor, column_type: str) -> Callable[[Any], Any]:
        match = _TYPE_PATTERN.match(column_type)
        base = match.group(1).upper() if match else column_type.upper()
        size = int(match.group(2)) if match and match.group(2) else None
        scale = int(match.group(3)) if match and match.group(3) else 0

        if base == 'VARCHAR':
            return lambda value: self._to_bounded_text(column, column_type, value, size)
        if base == 'LONGTEXT':
            return self._to_text
        if base == 'INT':
            return lambda value: self._to_integer(column, column_type, value, INT_RANGE)
        if base == 'BIGINT':
            return lambda value: self._to_integer(column, column_type, value, BIGINT_RANGE)
        if base == 'DECIMAL':
            return lambda value: self._to_decimal(column, column_type, value, size, scale)
        if base == 'DOUBLE':
            return float
        if base == 'DATE':
            return self._to_date
        if base == 'DATETIME':
            return self._to_datetime
        if base == 'BOOLEAN':
            return bool
        if base == 'LONGBLOB':
            return self._to_bytes
        self.logger.warning(f"No converter for {column_type} ({column.name}); values passed through")
        return lambda value: value

    def _to_text(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        text = value if isinstance(value, str) else str(value)
        return StringUtils.clean_text(text) if self.safe_mode else text

    def _to_bounded_text(self, column: SourceColumnDescriptor, column_type: str, value: Any, size: int) -> Any:
        text = self._to_text(value)
        if size is not None and len(text) > size:
            raise DataMappingError(
                f"Data too long for {column.name}: {len(text)} characters exceeds {column_type}",
                field_name=column.name, source_value=value, target_type=column_type,
                table_name=self.plan.table_name
            )
        return text

    def _to_integer(self, column: SourceColumnDescriptor, column_type: str, value: Any, bounds) -> int:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        number = Decimal(str(value))
        if number != number.to_integral_value():
            raise DataMappingError(
                f"Non-integral value {value!r} for integer column {column.name}",
                field_name=column.name, source_value=value, target_type=column_type,
                table_name=self.plan.table_name
            )
        result = int(number)
        if not bounds[0] <= result <= bounds[1]:
            raise DataMappingError(
                f"Value {result} out of range for {column.name} ({column_type})",
                field_name=column.name, source_value=value, target_type=column_type,
                table_name=self.plan.table_name
            )
        return result

    def _to_decimal(self, column: SourceColumnDescriptor, column_type: str, value: Any,
                    precision: int, scale: int) -> Decimal:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            raise DataMappingError(
                f"Invalid numeric value {value!r} for {column.name}",
                field_name=column.name, source_value=value, target_type=column_type,
                table_name=self.plan.table_name
            )
        quantum = Decimal(1).scaleb(-scale)
        number = number.quantize(quantum, rounding=ROUND_HALF_UP)
        integer_digits = len(str(abs(int(number)))) if int(number) != 0 else 0
        if precision is not None and integer_digits > precision - scale:
            raise DataMappingError(
                f"Value {value!r} out of range for {column.name} ({column_type})",
                field_name=column.name, source_value=value, target_type=column_type,
                table_name=self.plan.table_name
            )
        return number

    @staticmethod
    def _to_date(value: Any) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        raise TypeError(f"expected a date, got {type(value).__name__}")

    @staticmethod
    def _to_datetime(value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, time())
        raise TypeError(f"expected a datetime, got {type(value).__name__}")

    @staticmethod
    def _to_bytes(value: Any) -> bytes:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode('utf-8')
        raise TypeError(f"expected binary data, got {type(value).__name__}")
