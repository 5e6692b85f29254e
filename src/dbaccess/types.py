"""
Type handling shared by the binder, the row accessors and the strategies.

This module provides:
- TypeConverter: Convert Python values to database-compatible parameters
- IsolationLevel: Transaction isolation levels accepted by the controller
- SQLite adapters/converters for temporal, decimal and JSON values
"""
import datetime
import decimal
import json
import logging
from enum import Enum
from typing import Any

import dateutil.parser
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)


class IsolationLevel(Enum):
    """Transaction isolation levels.

    ``DEFAULT`` leaves the connection at whatever level the driver and
    server are configured with.
    """
    DEFAULT = 'DEFAULT'
    READ_UNCOMMITTED = 'READ UNCOMMITTED'
    READ_COMMITTED = 'READ COMMITTED'
    REPEATABLE_READ = 'REPEATABLE READ'
    SERIALIZABLE = 'SERIALIZABLE'

    @classmethod
    def parse(cls, value: 'IsolationLevel | str | None') -> 'IsolationLevel':
        """Accept an enum member, its value or its name (any case).

        `None` maps to DEFAULT.
        """
        if value is None:
            return cls.DEFAULT
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace('_', ' ')
        for level in cls:
            if level.value == normalized:
                return level
        raise ValueError(f'Unknown isolation level: {value!r}')


def _convert_numpy_value(val: Any) -> float | int | bool | datetime.datetime | None:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    return val.item()


class TypeConverter:
    """Conversion of parameter values before they reach the driver.

    Handles NumPy and Pandas scalars. Plain Python values, `None` included,
    pass through untouched.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.bool_, np.datetime64)):
            return _convert_numpy_value(value)

        if value is pd.NaT or value is pd.NA:
            return None

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        if isinstance(value, float) and pd.isna(value):
            return None

        return value


# SQLite Adapters - Python values stored as text

def adapt_date(val: datetime.date) -> str:
    """Store a date as ISO 8601 text."""
    return val.isoformat()


def adapt_datetime(val: datetime.datetime) -> str:
    """Store a datetime as ISO 8601 text."""
    return val.isoformat(sep=' ')


def adapt_time(val: datetime.time) -> str:
    """Store a time as ISO 8601 text."""
    return val.isoformat()


def adapt_decimal(val: decimal.Decimal) -> str:
    """Store a decimal as text so no precision is lost to REAL."""
    return str(val)


def adapt_json(val: dict | list) -> str:
    return json.dumps(val)


# SQLite Converters - Declared column types parsed back into Python values

def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def convert_time(val: bytes) -> datetime.time:
    """Convert ISO 8601 time string to time object."""
    return dateutil.parser.isoparser().parse_isotime(val.decode())
