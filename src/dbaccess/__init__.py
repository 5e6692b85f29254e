"""
Lightweight data access for PostgreSQL and SQLite.

Statements carry positional (`?`) or named (`:name`) parameters, rows are
mapped through extractor callables, and groups of statements run inside
managed transactions.

All operations can be called either as:
- Module functions: db.find_all(database, sql, extractor)
- Database methods: database.find_all(sql, extractor)

The module functions are facades over the methods.
"""
__version__ = '0.1.0'

from collections.abc import Callable
from typing import Any, TypeVar

from dbaccess.connection import connect, dispose_all_engines
from dbaccess.database import Database
from dbaccess.exceptions import BindingError, DatabaseError
from dbaccess.exceptions import DbConnectionError, ExecutionError
from dbaccess.exceptions import IntegrityError
from dbaccess.exceptions import MissingValue, OperationalError
from dbaccess.exceptions import ProgrammingError, QueryError, StaleRowError
from dbaccess.exceptions import TransactionFailure, TypeConversionError
from dbaccess.exceptions import UniqueViolation
from dbaccess.options import DatabaseOptions
from dbaccess.row import Extractor, Row, RowSet, RowSetExtractor
from dbaccess.row import create_extractor
from dbaccess.statement import Statement, as_statement, params, params_list
from dbaccess.transaction import Transaction, TransactionState
from dbaccess.transaction import TransactionStatus
from dbaccess.types import IsolationLevel

T = TypeVar('T')


def find_one(db: Database, statement: Statement | str,
             extractor: Callable[[Row], T]) -> T | None:
    """Run a query and convert its first row, or return None when empty.
    """
    return db.find_one(statement, extractor)


def find_all(db: Database, statement: Statement | str,
             extractor: Callable[[Row], T]) -> list[T]:
    """Run a query and convert every row.
    """
    return db.find_all(statement, extractor)


def query(db: Database, statement: Statement | str,
          extractor: Callable[[RowSet], T]) -> T:
    """Run a query and hand the extractor a RowSet.
    """
    return db.query(statement, extractor)


def update(db: Database, statement: Statement | str) -> int:
    """Execute a statement and return the affected row count.
    """
    return db.update(statement)


def insert(db: Database, statement: Statement | str) -> Any:
    """Execute an insert and return the generated keys.
    """
    return db.insert(statement)


def transaction(db: Database, unit_of_work: Callable[[], Any],
                isolation_level: IsolationLevel | str | None = None) -> None:
    """Run `unit_of_work` inside a transaction on `db`.
    """
    db.transaction(unit_of_work, isolation_level)


__all__ = [
    'connect',
    'dispose_all_engines',
    'Database',
    'DatabaseOptions',
    'Statement',
    'params',
    'params_list',
    'as_statement',
    'Row',
    'RowSet',
    'Extractor',
    'RowSetExtractor',
    'create_extractor',
    'Transaction',
    'TransactionState',
    'TransactionStatus',
    'IsolationLevel',
    'find_one',
    'find_all',
    'query',
    'update',
    'insert',
    'transaction',
    'BindingError',
    'DatabaseError',
    'DbConnectionError',
    'ExecutionError',
    'IntegrityError',
    'MissingValue',
    'OperationalError',
    'ProgrammingError',
    'QueryError',
    'StaleRowError',
    'TransactionFailure',
    'TypeConversionError',
    'UniqueViolation',
]
