"""
Database-specific exception classes.

Errors raised by the driver are never wrapped. The tuples at the bottom of
this module group driver exceptions with our own so callers can catch a
whole family without caring which backend raised it.
"""
import sqlite3

import psycopg


class DatabaseError(Exception):
    """Base class for all dbaccess errors.
    """


class QueryError(DatabaseError):
    """Error in query syntax or execution.
    """


class BindingError(QueryError):
    """A named parameter referenced in the SQL has no value in the mapping.
    """

    def __init__(self, name: str, sql: str | None = None) -> None:
        self.name = name
        self.sql = sql
        super().__init__(f'No value supplied for named parameter :{name}')


class TypeConversionError(DatabaseError):
    """Error converting types between Python and database.
    """


class MissingValue(DatabaseError):
    """A strict row accessor found SQL NULL in the column.
    """

    def __init__(self, column: str) -> None:
        self.column = column
        super().__init__(f"Unexpected null for column '{column}'")


class StaleRowError(DatabaseError):
    """A row was used outside the extractor call that received it.
    """


class TransactionFailure(DatabaseError):
    """The transaction protocol itself was violated.

    Errors raised by a unit of work are re-raised as they are; this class is
    reserved for misuse of the controller (a finished status, a connection
    enrolled twice).
    """


ExecutionError = (
    psycopg.Error,
    sqlite3.Error,
    QueryError,
    )

DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    sqlite3.ProgrammingError,
    QueryError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )

UniqueViolation = (
    psycopg.errors.UniqueViolation,
    sqlite3.IntegrityError,
    )
