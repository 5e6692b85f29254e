"""
PostgreSQL-specific strategy implementation.

This module implements the DatabaseStrategy interface with PostgreSQL-specific operations.
It handles PostgreSQL's unique features such as:
- Per-transaction isolation levels through psycopg's connection attributes
- `%s` placeholders (literal percent signs are doubled when parameters are bound)
- RETURNING for generated keys
"""
import logging
from typing import TYPE_CHECKING, Any

import psycopg
import sqlalchemy as sa
from dbaccess.sql import strip_statement_end
from dbaccess.strategy.base import DatabaseStrategy, register_strategy
from dbaccess.types import IsolationLevel

logger = logging.getLogger(__name__)


if TYPE_CHECKING:
    from dbaccess.options import DatabaseOptions


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query
        )

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for PostgreSQL."""
        return {}

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port']

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure connection settings for PostgreSQL.
        """
        self.enable_autocommit(raw_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for PostgreSQL.
        """
        raw_conn.autocommit = True

    def begin(self, raw_conn: Any, isolation_level: IsolationLevel) -> None:
        """Leave auto-commit and pin the isolation level.

        psycopg opens the transaction with the first statement and applies
        the connection's isolation_level to it.
        """
        raw_conn.autocommit = False
        if isolation_level != IsolationLevel.DEFAULT:
            raw_conn.isolation_level = psycopg.IsolationLevel[isolation_level.name]

    def end(self, raw_conn: Any, isolation_level: IsolationLevel) -> None:
        """Restore the server default isolation level and auto-commit.
        """
        raw_conn.isolation_level = None
        self.enable_autocommit(raw_conn)

    def default_returning_sql(self, sql: str) -> str:
        """Ask for every column of the inserted row.
        """
        return f'{strip_statement_end(sql)} RETURNING *'
