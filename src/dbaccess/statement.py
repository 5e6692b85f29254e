"""
Immutable SQL statements and parameter binding.

A Statement pairs SQL text with its parameters in one of two styles:

- positional: ``params_list('select * from t where a = ? and b = ?', 1, 2)``
- named: ``params('select * from t where a = :a', a=1)``

`bind()` turns a Statement into the (sql, args) pair handed to the driver
for a given dialect strategy.
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from dbaccess.sql import bind_named, bind_positional
from dbaccess.types import TypeConverter

if TYPE_CHECKING:
    from dbaccess.strategy import DatabaseStrategy

logger = logging.getLogger(__name__)

__all__ = [
    'Statement',
    'params_list',
    'params',
    'as_statement',
    'bind',
]


@dataclass(frozen=True, slots=True)
class Statement:
    """SQL text plus bound parameters.

    `params` is a tuple for positional statements and a read-only mapping for
    named ones. `key_columns` names the generated columns an insert should
    report (see `returning`).
    """
    sql: str
    params: tuple | Mapping[str, Any] = ()
    key_columns: tuple[str, ...] = ()

    def __post_init__(self):
        if isinstance(self.params, str | bytes):
            raise TypeError('Statement params must be a sequence or a mapping, not a string')
        if isinstance(self.params, Mapping):
            frozen = MappingProxyType(dict(self.params))
        else:
            frozen = tuple(self.params)
        object.__setattr__(self, 'params', frozen)
        object.__setattr__(self, 'key_columns', tuple(self.key_columns))

    @property
    def is_named(self) -> bool:
        """True when parameters bind by name."""
        return isinstance(self.params, Mapping)

    def returning(self, *columns: str) -> 'Statement':
        """Copy of this statement that asks an insert for `columns`."""
        return replace(self, key_columns=columns)


def params_list(sql: str, *values: Any) -> Statement:
    """Build a positional statement; values bind to `?` left to right."""
    return Statement(sql, values)


def params(sql: str, mapping: Mapping[str, Any] | None = None, **values: Any) -> Statement:
    """Build a named statement; values bind to `:name` markers.

    Keyword arguments override entries of `mapping`.
    """
    merged = dict(mapping or {})
    merged.update(values)
    return Statement(sql, merged)


def as_statement(statement: Statement | str) -> Statement:
    """Treat plain SQL text as a zero-parameter statement."""
    if isinstance(statement, Statement):
        return statement
    if isinstance(statement, str):
        return Statement(statement)
    raise TypeError(f'Expected Statement or str, got {type(statement).__name__}')


def bind(statement: Statement, strategy: 'DatabaseStrategy',
         sql: str | None = None) -> tuple[str, tuple | None]:
    """Rewrite placeholders for the strategy's dialect and collect arguments.

    Args:
        statement: Statement to bind
        strategy: Dialect strategy supplying the placeholder marker
        sql: Replacement SQL text (e.g. with a RETURNING clause appended)

    Returns
        Tuple of (sql, args); args is None when the SQL runs without parameters
    """
    sql = statement.sql if sql is None else sql
    placeholder = strategy.get_placeholder_style()
    escape = strategy.escapes_percent()

    if statement.is_named:
        values = {k: TypeConverter.convert_value(v) for k, v in statement.params.items()}
        return bind_named(sql, values, placeholder, escape)

    values = tuple(TypeConverter.convert_value(v) for v in statement.params)
    return bind_positional(sql, values, placeholder, escape)
