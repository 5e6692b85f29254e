"""
Typed, bounded-lifetime views over cursor rows.

A `Row` is handed to an extractor once per result row and is released as
soon as the extractor returns; touching it afterwards raises
`StaleRowError`. Every accessor comes in two flavours:

- ``row.get_int('id')`` raises `MissingValue` when the column is SQL NULL
- ``row.get_int_or_none('id')`` returns None for SQL NULL

Column names are matched exactly first, then case-insensitively.

A `RowSet` is a `Row` the extractor advances itself with `next()`.
"""
import datetime
import decimal
import io
import json
import logging
import math
from collections.abc import Callable, Iterator, Sequence
from typing import Any, TypeVar

import dateutil.parser
from dbaccess.exceptions import MissingValue, QueryError, StaleRowError
from dbaccess.exceptions import TypeConversionError

from libb import attrdict

logger = logging.getLogger(__name__)

__all__ = [
    'Row',
    'RowSet',
    'ColumnIndex',
    'Extractor',
    'RowSetExtractor',
    'create_extractor',
]

T = TypeVar('T')

BYTE_RANGE = (-2**7, 2**7 - 1)
SHORT_RANGE = (-2**15, 2**15 - 1)
INT_RANGE = (-2**31, 2**31 - 1)
LONG_RANGE = (-2**63, 2**63 - 1)
FLOAT_MAX = 3.4028234663852886e38

TRUE_STRINGS = {'true', 't', 'yes', 'y', 'on', '1'}
FALSE_STRINGS = {'false', 'f', 'no', 'n', 'off', '0'}


class ColumnIndex:
    """Column name lookup built once per result set.

    When a name appears twice the first column wins, for both the exact and
    the case-insensitive match.
    """

    def __init__(self, description: Sequence | None) -> None:
        self.names = [desc[0] for desc in (description or ())]
        self._exact: dict[str, int] = {}
        self._folded: dict[str, int] = {}
        for position, name in enumerate(self.names):
            self._exact.setdefault(name, position)
            self._folded.setdefault(name.lower(), position)

    def __len__(self) -> int:
        return len(self.names)

    def position(self, name: str) -> int:
        """Return the 0-based position of column `name`.

        Raises
            QueryError: If the result set has no such column
        """
        if name in self._exact:
            return self._exact[name]
        folded = name.lower()
        if folded in self._folded:
            return self._folded[folded]
        raise QueryError(f'Unknown column {name!r}, available: {self.names}')


def _conversion_error(value: Any, target: str, column: str) -> TypeConversionError:
    return TypeConversionError(
        f'Cannot convert {type(value).__name__} value {value!r} in column {column!r} to {target}')


def _to_bool(value: Any, column: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float | decimal.Decimal):
        return value != 0
    if isinstance(value, str):
        folded = value.strip().lower()
        if folded in TRUE_STRINGS:
            return True
        if folded in FALSE_STRINGS:
            return False
    raise _conversion_error(value, 'bool', column)


def _to_integral(value: Any, column: str, target: str, bounds: tuple[int, int]) -> int:
    if isinstance(value, bool):
        result = int(value)
    elif isinstance(value, int):
        result = value
    elif isinstance(value, float | decimal.Decimal):
        if not math.isfinite(value) or value != int(value):
            raise _conversion_error(value, target, column)
        result = int(value)
    elif isinstance(value, str):
        try:
            result = int(value.strip())
        except ValueError as err:
            raise _conversion_error(value, target, column) from err
    else:
        raise _conversion_error(value, target, column)

    low, high = bounds
    if not low <= result <= high:
        raise TypeConversionError(f'Value {result} in column {column!r} is out of range for {target}')
    return result


def _to_double(value: Any, column: str) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int | float | decimal.Decimal):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError as err:
            raise _conversion_error(value, 'float', column) from err
    raise _conversion_error(value, 'float', column)


def _to_float(value: Any, column: str) -> float:
    result = _to_double(value, column)
    if math.isfinite(result) and abs(result) > FLOAT_MAX:
        raise TypeConversionError(f'Value {result} in column {column!r} is out of range for float')
    return result


def _to_decimal(value: Any, column: str) -> decimal.Decimal:
    if isinstance(value, decimal.Decimal):
        return value
    if isinstance(value, bool):
        return decimal.Decimal(int(value))
    if isinstance(value, int):
        return decimal.Decimal(value)
    if isinstance(value, float):
        return decimal.Decimal(str(value))
    if isinstance(value, str):
        try:
            return decimal.Decimal(value.strip())
        except decimal.InvalidOperation as err:
            raise _conversion_error(value, 'decimal', column) from err
    raise _conversion_error(value, 'decimal', column)


def _to_string(value: Any, column: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bytes | bytearray | memoryview):
        try:
            return bytes(value).decode()
        except UnicodeDecodeError as err:
            raise _conversion_error(value, 'str', column) from err
    if isinstance(value, datetime.date | datetime.time):
        return value.isoformat()
    return str(value)


def _to_bytes(value: Any, column: str) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, bytearray | memoryview):
        return bytes(value)
    if isinstance(value, str):
        return value.encode()
    raise _conversion_error(value, 'bytes', column)


def _to_timestamp(value: Any, column: str) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if isinstance(value, str):
        try:
            return dateutil.parser.isoparse(value.strip())
        except ValueError as err:
            raise _conversion_error(value, 'datetime', column) from err
    raise _conversion_error(value, 'datetime', column)


def _to_date(value: Any, column: str) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        try:
            return dateutil.parser.isoparse(value.strip()).date()
        except ValueError as err:
            raise _conversion_error(value, 'date', column) from err
    raise _conversion_error(value, 'date', column)


def _to_time(value: Any, column: str) -> datetime.time:
    if isinstance(value, datetime.datetime):
        return value.timetz()
    if isinstance(value, datetime.time):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return dateutil.parser.isoparser().parse_isotime(text)
        except ValueError:
            logger.debug(f'Column {column!r} is not a bare time, parsing as a timestamp')
        try:
            return dateutil.parser.isoparse(text).timetz()
        except ValueError as err:
            raise _conversion_error(value, 'time', column) from err
    raise _conversion_error(value, 'time', column)


def _to_array(value: Any, column: str) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as err:
            raise _conversion_error(value, 'list', column) from err
        if isinstance(decoded, list):
            return decoded
    raise _conversion_error(value, 'list', column)


class Row:
    """Read-only typed view over the current row of a result set.

    Instances are created by the executor; extractors only read from them.
    """

    def __init__(self, columns: ColumnIndex, values: Sequence | None = None) -> None:
        self._columns = columns
        self._values = values
        self._released = False

    def release(self) -> None:
        """End the row's lifetime; later access raises StaleRowError."""
        self._released = True
        self._values = None

    @property
    def is_released(self) -> bool:
        return self._released

    def _current(self) -> Sequence:
        if self._released:
            raise StaleRowError('Row used after its extractor returned')
        if self._values is None:
            raise StaleRowError('No current row')
        return self._values

    def _value(self, name: str) -> Any:
        values = self._current()
        return values[self._columns.position(name)]

    def _required(self, name: str) -> Any:
        value = self._value(name)
        if value is None:
            raise MissingValue(name)
        return value

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return self._current()[key]
        return self._value(key)

    def __contains__(self, name: str) -> bool:
        try:
            self._columns.position(name)
        except QueryError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._columns)

    def keys(self) -> list[str]:
        """Column names in result order."""
        return list(self._columns.names)

    def to_dict(self) -> dict[str, Any]:
        values = self._current()
        return dict(zip(self._columns.names, values))

    def to_attrdict(self) -> attrdict:
        return attrdict(self.to_dict())

    def __repr__(self) -> str:
        if self._released:
            return f'{type(self).__name__}(<released>)'
        if self._values is None:
            return f'{type(self).__name__}(<no current row>)'
        return f'{type(self).__name__}({self.to_dict()!r})'

    # object

    def get_object(self, name: str) -> Any:
        return self._required(name)

    def get_object_or_none(self, name: str) -> Any | None:
        return self._value(name)

    # bool

    def get_bool(self, name: str) -> bool:
        return _to_bool(self._required(name), name)

    def get_bool_or_none(self, name: str) -> bool | None:
        value = self._value(name)
        return None if value is None else _to_bool(value, name)

    # integral types, range-checked

    def get_byte(self, name: str) -> int:
        return _to_integral(self._required(name), name, 'byte', BYTE_RANGE)

    def get_byte_or_none(self, name: str) -> int | None:
        value = self._value(name)
        return None if value is None else _to_integral(value, name, 'byte', BYTE_RANGE)

    def get_short(self, name: str) -> int:
        return _to_integral(self._required(name), name, 'short', SHORT_RANGE)

    def get_short_or_none(self, name: str) -> int | None:
        value = self._value(name)
        return None if value is None else _to_integral(value, name, 'short', SHORT_RANGE)

    def get_int(self, name: str) -> int:
        return _to_integral(self._required(name), name, 'int', INT_RANGE)

    def get_int_or_none(self, name: str) -> int | None:
        value = self._value(name)
        return None if value is None else _to_integral(value, name, 'int', INT_RANGE)

    def get_long(self, name: str) -> int:
        return _to_integral(self._required(name), name, 'long', LONG_RANGE)

    def get_long_or_none(self, name: str) -> int | None:
        value = self._value(name)
        return None if value is None else _to_integral(value, name, 'long', LONG_RANGE)

    # floating point

    def get_float(self, name: str) -> float:
        return _to_float(self._required(name), name)

    def get_float_or_none(self, name: str) -> float | None:
        value = self._value(name)
        return None if value is None else _to_float(value, name)

    def get_double(self, name: str) -> float:
        return _to_double(self._required(name), name)

    def get_double_or_none(self, name: str) -> float | None:
        value = self._value(name)
        return None if value is None else _to_double(value, name)

    def get_decimal(self, name: str) -> decimal.Decimal:
        return _to_decimal(self._required(name), name)

    def get_decimal_or_none(self, name: str) -> decimal.Decimal | None:
        value = self._value(name)
        return None if value is None else _to_decimal(value, name)

    # text and binary

    def get_string(self, name: str) -> str:
        return _to_string(self._required(name), name)

    def get_string_or_none(self, name: str) -> str | None:
        value = self._value(name)
        return None if value is None else _to_string(value, name)

    def get_bytes(self, name: str) -> bytes:
        return _to_bytes(self._required(name), name)

    def get_bytes_or_none(self, name: str) -> bytes | None:
        value = self._value(name)
        return None if value is None else _to_bytes(value, name)

    def get_character_stream(self, name: str) -> io.StringIO:
        return io.StringIO(self.get_string(name))

    def get_character_stream_or_none(self, name: str) -> io.StringIO | None:
        value = self.get_string_or_none(name)
        return None if value is None else io.StringIO(value)

    def get_binary_stream(self, name: str) -> io.BytesIO:
        return io.BytesIO(self.get_bytes(name))

    def get_binary_stream_or_none(self, name: str) -> io.BytesIO | None:
        value = self.get_bytes_or_none(name)
        return None if value is None else io.BytesIO(value)

    # temporal

    def get_timestamp(self, name: str) -> datetime.datetime:
        return _to_timestamp(self._required(name), name)

    def get_timestamp_or_none(self, name: str) -> datetime.datetime | None:
        value = self._value(name)
        return None if value is None else _to_timestamp(value, name)

    def get_date(self, name: str) -> datetime.date:
        return _to_date(self._required(name), name)

    def get_date_or_none(self, name: str) -> datetime.date | None:
        value = self._value(name)
        return None if value is None else _to_date(value, name)

    def get_time(self, name: str) -> datetime.time:
        return _to_time(self._required(name), name)

    def get_time_or_none(self, name: str) -> datetime.time | None:
        value = self._value(name)
        return None if value is None else _to_time(value, name)

    # arrays: driver lists on PostgreSQL, JSON text on SQLite

    def get_array(self, name: str) -> list:
        return _to_array(self._required(name), name)

    def get_array_or_none(self, name: str) -> list | None:
        value = self._value(name)
        return None if value is None else _to_array(value, name)


class RowSet(Row):
    """A Row over a live cursor that the extractor advances with `next()`.

    Positioned before the first row; accessors raise StaleRowError until
    `next()` has returned True.

    Examples
        def names(rs):
            result = []
            while rs.next():
                result.append(rs.get_string('name'))
            return result
    """

    def __init__(self, cursor: Any) -> None:
        super().__init__(ColumnIndex(cursor.description))
        self._cursor = cursor
        self._exhausted = cursor.description is None

    def next(self) -> bool:
        """Advance to the next row; False once the result set is exhausted."""
        if self._released:
            raise StaleRowError('RowSet used after its extractor returned')
        if self._exhausted:
            self._values = None
            return False
        values = self._cursor.fetchone()
        if values is None:
            self._exhausted = True
        self._values = values
        return values is not None

    def __iter__(self) -> Iterator['RowSet']:
        while self.next():
            yield self

    def release(self) -> None:
        super().release()
        self._cursor = None


Extractor = Callable[[Row], T]
RowSetExtractor = Callable[[RowSet], T]


def create_extractor(func: Callable[[Row], T]) -> Callable[[Row], T]:
    """Name an extractor for reuse; returns `func` unchanged.

    Examples
        person = create_extractor(lambda row: Person(row.get_int('id'), row.get_string('name')))
    """
    return func
