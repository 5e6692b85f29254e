"""
The statement executor.

A `Database` binds statements to a live connection, runs them and hands the
results to extractors:

- find_one(statement, extractor) - First row through the extractor, or None
- find_all(statement, extractor) - Every row through the extractor
- query(statement, rowset_extractor) - The whole result set as a RowSet
- update(statement) - Affected row count
- insert(statement) - Generated keys

Standalone calls borrow a pooled connection in auto-commit mode and return
it before the method returns. Inside `transaction()` (or `begin()`) calls
made on the same Database from the same thread run on the transaction's
connection instead.
"""
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Self, TypeVar

from dbaccess.cursor import Cursor, IterChunk
from dbaccess.exceptions import TransactionFailure
from dbaccess.row import ColumnIndex, Row, RowSet
from dbaccess.statement import Statement, as_statement, bind
from dbaccess.strategy import get_db_strategy
from dbaccess.transaction import Transaction, TransactionState
from dbaccess.transaction import TransactionStatus, current_transaction
from dbaccess.transaction import is_enrolled
from dbaccess.types import IsolationLevel
from dbaccess.utils import get_raw_connection
from sqlalchemy.engine import Engine

from libb import attrdict

if TYPE_CHECKING:
    from dbaccess.options import DatabaseOptions

logger = logging.getLogger(__name__)

__all__ = ['Database']

T = TypeVar('T')


def _extract(columns: ColumnIndex, values: Any, extractor: Callable[[Row], T]) -> T:
    """Run `extractor` on a row that is released as soon as it returns."""
    row = Row(columns, values)
    try:
        return extractor(row)
    finally:
        row.release()


class Database:
    """Executes statements against a SQLAlchemy engine's connections.

    Tracks query counts and execution time, logged on `close()`.
    """

    def __init__(self, engine: Engine, options: 'DatabaseOptions | None' = None) -> None:
        self.engine = engine
        self.options = options
        self.strategy = get_db_strategy(engine)
        self.calls = 0
        self.time = 0
        self._stats_lock = threading.Lock()

    def __enter__(self) -> Self:
        """Support for context manager protocol
        """
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.engine.url.render_as_string(hide_password=True)!r})'

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql' or 'sqlite')."""
        return self.strategy.dialect_name

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        with self._stats_lock:
            self.time += elapsed
            self.calls += 1

    def close(self) -> None:
        """Log execution statistics; pooled connections stay with the engine.
        """
        logger.debug(f'Database closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1,self.calls):.3f}s per query)')

    def pin(self, transaction: Transaction) -> 'Database':
        """Return a view of this Database that only uses `transaction`'s connection."""
        return PinnedDatabase(self, transaction)

    # connections

    def _acquire(self) -> Any:
        """Borrow a pooled DBAPI connection; closing it returns it to the pool."""
        return self.engine.raw_connection()

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        """Yield the connection a call should run on.

        Raises
            TransactionFailure: If the pool hands out a connection that another
                thread's transaction owns (SQLite `:memory:` has only one)
        """
        transaction = current_transaction(self)
        if transaction is not None:
            yield transaction.connection
            return

        pooled = self._acquire()
        raw_conn = get_raw_connection(pooled)
        if is_enrolled(raw_conn):
            pooled.close()
            raise TransactionFailure('Connection is already enrolled in a transaction')
        try:
            yield raw_conn
        finally:
            pooled.close()

    @contextmanager
    def _execute(self, statement: Statement, sql: str | None = None) -> Iterator[tuple[Any, Cursor]]:
        """Bind and execute `statement`, yielding (connection, cursor).

        The cursor is closed on every exit path.
        """
        bound_sql, args = bind(statement, self.strategy, sql)
        with self._connection() as raw_conn, Cursor(raw_conn.cursor(), self) as cursor:
            cursor.execute(bound_sql, args)
            yield raw_conn, cursor

    # queries

    def find_one(self, statement: Statement | str, extractor: Callable[[Row], T]) -> T | None:
        """Run a query and convert its first row.

        Returns
            The extractor's result for the first row, None when there are no
            rows. Further rows are ignored.
        """
        statement = as_statement(statement)
        with self._execute(statement) as (_, cursor):
            if cursor.description is None:
                return None
            values = cursor.fetchone()
            if values is None:
                return None
            return _extract(ColumnIndex(cursor.description), values, extractor)

    def find_all(self, statement: Statement | str, extractor: Callable[[Row], T]) -> list[T]:
        """Run a query and convert every row, in cursor order.
        """
        statement = as_statement(statement)
        with self._execute(statement) as (_, cursor):
            if cursor.description is None:
                return []
            columns = ColumnIndex(cursor.description)
            return [_extract(columns, values, extractor) for values in IterChunk(cursor)]

    def query(self, statement: Statement | str, extractor: Callable[[RowSet], T]) -> T:
        """Run a query and hand the extractor a RowSet positioned before the first row.
        """
        statement = as_statement(statement)
        with self._execute(statement) as (_, cursor):
            rowset = RowSet(cursor)
            try:
                return extractor(rowset)
            finally:
                rowset.release()

    # mutations

    def update(self, statement: Statement | str) -> int:
        """Execute a statement and return the driver's affected-row count.
        """
        statement = as_statement(statement)
        with self._execute(statement) as (_, cursor):
            return cursor.rowcount

    def insert(self, statement: Statement | str) -> attrdict:
        """Execute an insert and return the keys the database generated.

        Columns declared with `Statement.returning()` are always requested.
        Otherwise PostgreSQL returns every column of the new row and SQLite
        reports its rowid under the table's INTEGER PRIMARY KEY column.

        Returns
            attrdict of column -> value, empty when nothing was generated
        """
        statement = as_statement(statement)
        sql = self.strategy.returning_sql(statement.sql, statement.key_columns)
        with self._execute(statement, sql) as (raw_conn, cursor):
            keys = self.strategy.fetch_generated_keys(raw_conn, cursor, sql)
        return attrdict(keys)

    # transactions

    def begin(self, isolation_level: IsolationLevel | str | None = None) -> Transaction:
        """Return a transaction context manager yielding its TransactionStatus.

        Args:
            isolation_level: Level for this transaction; None uses the
                options' isolation_level
        """
        return Transaction(self, isolation_level)

    def transaction(self, unit_of_work: Callable[[], Any],
                    isolation_level: IsolationLevel | str | None = None) -> None:
        """Run `unit_of_work` in a transaction; commit on return, roll back on error.
        """
        with self.begin(isolation_level):
            unit_of_work()

    def transaction_with_status(self, unit_of_work: Callable[[TransactionStatus], Any],
                                isolation_level: IsolationLevel | str | None = None) -> None:
        """Like `transaction`, passing the unit its TransactionStatus.
        """
        with self.begin(isolation_level) as status:
            unit_of_work(status)

    def transaction_with_connection(self, unit_of_work: Callable[['Database'], Any],
                                    isolation_level: IsolationLevel | str | None = None) -> None:
        """Like `transaction`, passing the unit a Database pinned to the transaction's connection.
        """
        with self.begin(isolation_level) as status:
            unit_of_work(status.database)


class PinnedDatabase(Database):
    """A Database that runs every call on one transaction's connection.

    Usable only while that transaction is active. A transaction opened on it
    fails, since its only connection is already enrolled.
    """

    def __init__(self, parent: Database, transaction: Transaction) -> None:
        super().__init__(parent.engine, parent.options)
        self.parent = parent
        self._transaction = transaction

    def addcall(self, elapsed: float) -> None:
        self.parent.addcall(elapsed)

    def _acquire(self) -> Any:
        raise TransactionFailure('Connection is already enrolled in a transaction')

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        if self._transaction.state is not TransactionState.ACTIVE:
            raise TransactionFailure(
                f'Pinned connection used outside its transaction ({self._transaction.state.value})')
        yield self._transaction.connection
