"""
Base strategy interface for database operations.

Defines the abstract base class that all database-specific strategy implementations
must inherit from. The strategy pattern keeps placeholder style, autocommit
handling, isolation levels and generated-key capture out of the executor, so
the executor runs the same code against every backend.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbaccess.sql import has_returning_clause
from dbaccess.sql import quote_identifier as sql_quote_identifier
from dbaccess.sql import strip_statement_end
from dbaccess.types import IsolationLevel

if TYPE_CHECKING:
    from dbaccess.options import DatabaseOptions

logger = logging.getLogger(__name__)

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for database-specific operations.
    """

    @contextmanager
    def _cursor(self, raw_conn: Any, sql: str, params: tuple | None = None):
        """Context manager for cursor lifecycle.

        Handles cursor creation, SQL execution, and cleanup.
        """
        cursor = raw_conn.cursor()
        try:
            cursor.execute(sql, params or ())
            yield cursor
        finally:
            cursor.close()

    def _select_raw(self, raw_conn: Any, sql: str,
                    params: tuple | None = None) -> list[dict]:
        """Execute SQL and return results as list of dicts.

        Used internally by strategy methods for metadata queries.
        """
        with self._cursor(raw_conn, sql, params) as cursor:
            if cursor.description is None:
                return []
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the database connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            SQLAlchemy URL suitable for create_engine
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            Dictionary of keyword arguments for create_engine
        """

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.

        Returns
            List of field names that must have non-None/non-zero values
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Args:
            options: DatabaseOptions to validate

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    @abstractmethod
    def configure_connection(self, raw_conn: Any) -> None:
        """Configure a freshly opened DBAPI connection.

        Called once per physical connection. Leaves the connection in
        auto-commit mode so standalone statements commit on their own.

        Args:
            raw_conn: The raw DBAPI connection (not wrapped)
        """

    @abstractmethod
    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw database connection.

        Args:
            raw_conn: The raw DBAPI connection (not wrapped)
        """

    @abstractmethod
    def begin(self, raw_conn: Any, isolation_level: IsolationLevel) -> None:
        """Open a transaction at the requested isolation level.

        Takes the connection out of auto-commit mode.

        Args:
            raw_conn: The raw DBAPI connection (not wrapped)
            isolation_level: Level to run the transaction at; DEFAULT keeps
                the connection's own level
        """

    @abstractmethod
    def end(self, raw_conn: Any, isolation_level: IsolationLevel) -> None:
        """Return a connection to auto-commit after commit or rollback.

        Undoes whatever `begin` changed so a pooled connection goes back
        exactly as it was handed out.
        """

    def get_placeholder_style(self) -> str:
        """Return the positional placeholder marker for this database.

        Returns
            str: '%s' for PostgreSQL-style, '?' for SQLite-style
        """
        return '%s'

    def escapes_percent(self) -> bool:
        """Whether a literal % must be doubled when parameters are passed."""
        return self.get_placeholder_style() == '%s'

    def quote_identifier(self, identifier: str) -> str:
        """Quote a database identifier.

        Default implementation uses standard SQL double-quote escaping.

        Args:
            identifier: Database identifier to be quoted

        Returns
            str: Properly quoted identifier according to database-specific rules
        """
        return sql_quote_identifier(identifier, self.dialect_name)

    def returning_sql(self, sql: str, key_columns: tuple[str, ...]) -> str:
        """Rewrite an insert so the driver hands back generated keys.

        Declared key columns are always requested with RETURNING. Without a
        declaration the dialect decides (see `default_returning_sql`). SQL that
        already carries a RETURNING clause is left alone.
        """
        if has_returning_clause(sql):
            return sql
        if key_columns:
            columns = ', '.join(self.quote_identifier(col) for col in key_columns)
            return f'{strip_statement_end(sql)} RETURNING {columns}'
        return self.default_returning_sql(sql)

    @abstractmethod
    def default_returning_sql(self, sql: str) -> str:
        """Rewrite an insert that declared no key columns."""

    def fetch_generated_keys(self, raw_conn: Any, cursor: Any, sql: str) -> dict[str, Any]:
        """Read the generated keys of the statement just executed on `cursor`.

        The default reads the first row produced by a RETURNING clause.

        Returns
            dict: Column name -> value, empty when the driver produced nothing
        """
        if cursor.description is None:
            return {}
        row = cursor.fetchone()
        if row is None:
            return {}
        columns = [desc[0] for desc in cursor.description]
        extra = cursor.fetchall()
        if extra:
            logger.debug(f'Insert produced {len(extra) + 1} key rows, reporting the first')
        return dict(zip(columns, row))
