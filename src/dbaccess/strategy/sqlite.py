"""
SQLite-specific strategy implementation.

This module implements the DatabaseStrategy interface with SQLite-specific operations.
It handles SQLite's unique features and limitations such as:
- Explicit BEGIN statements (the driver is kept out of its implicit transaction mode)
- No per-transaction isolation levels beyond BEGIN IMMEDIATE and read_uncommitted
- Generated keys through lastrowid and the table's INTEGER PRIMARY KEY
- Temporal and decimal values stored as text
"""
import datetime
import decimal
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbaccess.sql import insert_target_table
from dbaccess.strategy.base import DatabaseStrategy, register_strategy
from dbaccess.types import IsolationLevel, adapt_date, adapt_datetime
from dbaccess.types import adapt_decimal, adapt_json, adapt_time, convert_date
from dbaccess.types import convert_datetime, convert_time
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from dbaccess.options import DatabaseOptions

logger = logging.getLogger(__name__)

MEMORY_DATABASES = {'', ':memory:'}


def is_memory_database(database: str | None) -> bool:
    """Check if a SQLite database name refers to a private in-memory database."""
    return (database or '') in MEMORY_DATABASES


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite.

        In-memory databases live and die with their connection, so every
        checkout must share the same one. Returning it to the pool must not
        roll back, since a transaction may still be open on it.
        """
        connect_args = {
            'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            'check_same_thread': False,
        }
        if options.timeout:
            connect_args['timeout'] = options.timeout

        kwargs: dict[str, Any] = {'connect_args': connect_args}
        if is_memory_database(options.database):
            kwargs['poolclass'] = StaticPool
            kwargs['pool_reset_on_return'] = None
        return kwargs

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def register_type_adapters(self) -> None:
        """Register type adapters and converters for SQLite.

        Adapters (Python -> SQLite) store values as text; converters parse
        columns declared as date/datetime/timestamp/time back into Python.
        """
        sqlite3.register_adapter(dict, adapt_json)
        sqlite3.register_adapter(list, adapt_json)
        sqlite3.register_adapter(decimal.Decimal, adapt_decimal)
        sqlite3.register_adapter(datetime.date, adapt_date)
        sqlite3.register_adapter(datetime.datetime, adapt_datetime)
        sqlite3.register_adapter(datetime.time, adapt_time)

        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        sqlite3.register_converter('timestamp', convert_datetime)
        sqlite3.register_converter('time', convert_time)

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure connection settings for SQLite.
        """
        self.register_type_adapters()
        raw_conn.execute('PRAGMA foreign_keys = ON')
        self.enable_autocommit(raw_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.

        With isolation_level None the driver never opens a transaction on
        its own; `begin` issues BEGIN explicitly.
        """
        raw_conn.isolation_level = None

    def begin(self, raw_conn: Any, isolation_level: IsolationLevel) -> None:
        """Open a transaction with an explicit BEGIN.

        SQLite transactions are always serializable. SERIALIZABLE takes the
        write lock up front with BEGIN IMMEDIATE; READ_UNCOMMITTED only has
        an effect on shared-cache connections.
        """
        if isolation_level == IsolationLevel.READ_UNCOMMITTED:
            raw_conn.execute('PRAGMA read_uncommitted = 1')
        if isolation_level == IsolationLevel.SERIALIZABLE:
            raw_conn.execute('BEGIN IMMEDIATE')
        else:
            raw_conn.execute('BEGIN')

    def end(self, raw_conn: Any, isolation_level: IsolationLevel) -> None:
        """Undo the read_uncommitted pragma set by `begin`.
        """
        if isolation_level == IsolationLevel.READ_UNCOMMITTED:
            raw_conn.execute('PRAGMA read_uncommitted = 0')
        self.enable_autocommit(raw_conn)

    def get_placeholder_style(self) -> str:
        """Return SQLite's placeholder marker.
        """
        return '?'

    def default_returning_sql(self, sql: str) -> str:
        """Leave the insert untouched; keys come from lastrowid.
        """
        return sql

    def get_integer_primary_key(self, raw_conn: Any, table: str,
                                schema: str | None = None) -> str | None:
        """Return the column aliasing the rowid of `table`, if any.

        Only a single-column primary key declared INTEGER aliases the rowid.
        """
        if schema:
            sql = 'select name, type from pragma_table_info(?, ?) where pk > 0'
            params = (table, schema)
        else:
            sql = 'select name, type from pragma_table_info(?) where pk > 0'
            params = (table,)
        columns = self._select_raw(raw_conn, sql, params)
        if len(columns) != 1 or columns[0]['type'].upper() != 'INTEGER':
            return None
        return columns[0]['name']

    def fetch_generated_keys(self, raw_conn: Any, cursor: Any, sql: str) -> dict[str, Any]:
        """Read generated keys from RETURNING rows or from lastrowid.
        """
        if cursor.description is not None:
            return super().fetch_generated_keys(raw_conn, cursor, sql)

        target = insert_target_table(sql)
        if target is None or cursor.rowcount < 1 or cursor.lastrowid is None:
            return {}

        schema, table = target
        column = self.get_integer_primary_key(raw_conn, table, schema)
        if column is None:
            logger.debug(f'Table {table} has no INTEGER PRIMARY KEY, no keys reported')
            return {}
        return {column: cursor.lastrowid}
