"""
Transaction handling and auto-commit management for database operations.

A `Transaction` borrows one connection from the database's engine, takes it
out of auto-commit at the requested isolation level and routes every call
made on the same `Database` from the same thread to that connection until
the block ends. Normal completion commits, an exception (or a status marked
rollback-only) rolls back. Exceptions from the block are re-raised as they
are.

Examples
    with db.begin('serializable') as status:
        db.update('delete from ...')
        db.insert('insert into ...')

Routing state lives in thread-local storage, so transactions on different
threads never see each other. Opening a transaction inside another one
borrows an independent connection; the outer connection is used again once
the inner block ends.
"""
import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Any

from dbaccess.exceptions import TransactionFailure
from dbaccess.types import IsolationLevel
from dbaccess.utils import get_raw_connection

if TYPE_CHECKING:
    from dbaccess.database import Database

logger = logging.getLogger(__name__)

__all__ = [
    'Transaction',
    'TransactionState',
    'TransactionStatus',
    'current_transaction',
    'is_enrolled',
]

_local = threading.local()

# Physical connections currently inside a transaction, across all threads
_enrolled: set[int] = set()
_enrolled_lock = threading.Lock()


class TransactionState(Enum):
    IDLE = 'idle'
    ACTIVE = 'active'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled back'


def _routes() -> dict[int, list['Transaction']]:
    if not hasattr(_local, 'routes'):
        _local.routes = {}
    return _local.routes


def current_transaction(database: 'Database') -> 'Transaction | None':
    """Return the innermost transaction of `database` on this thread."""
    stack = _routes().get(id(database))
    return stack[-1] if stack else None


def _push(transaction: 'Transaction') -> None:
    _routes().setdefault(id(transaction.database), []).append(transaction)


def _pop(transaction: 'Transaction') -> None:
    routes = _routes()
    key = id(transaction.database)
    stack = routes.get(key, [])
    if transaction in stack:
        stack.remove(transaction)
    if not stack:
        routes.pop(key, None)


def _enroll(raw_conn: Any) -> None:
    with _enrolled_lock:
        if id(raw_conn) in _enrolled:
            raise TransactionFailure('Connection is already enrolled in a transaction')
        _enrolled.add(id(raw_conn))


def _unenroll(raw_conn: Any) -> None:
    with _enrolled_lock:
        _enrolled.discard(id(raw_conn))


def is_enrolled(raw_conn: Any) -> bool:
    """True while `raw_conn` belongs to an open transaction on any thread."""
    with _enrolled_lock:
        return id(raw_conn) in _enrolled


class TransactionStatus:
    """Handle given to a unit of work to inspect and steer its transaction.

    The controller makes the final commit/rollback decision; a unit can only
    ask for a rollback with `set_rollback_only()`.
    """

    def __init__(self, transaction: 'Transaction') -> None:
        self._transaction = transaction
        self._rollback_only = False

    def set_rollback_only(self) -> None:
        """Roll back instead of committing when the unit completes normally."""
        if self.is_completed:
            raise TransactionFailure(f'Transaction already {self.state.value}')
        self._rollback_only = True

    @property
    def is_rollback_only(self) -> bool:
        return self._rollback_only

    @property
    def state(self) -> TransactionState:
        return self._transaction.state

    @property
    def is_completed(self) -> bool:
        return self.state in {TransactionState.COMMITTED, TransactionState.ROLLED_BACK}

    @property
    def isolation_level(self) -> IsolationLevel:
        return self._transaction.isolation_level

    @property
    def database(self) -> 'Database':
        """A Database whose calls all run on this transaction's connection."""
        return self._transaction.pinned_database()

    def __repr__(self) -> str:
        return (f'TransactionStatus(state={self.state.value!r}, '
                f'isolation_level={self.isolation_level.name}, '
                f'rollback_only={self._rollback_only})')


class Transaction:
    """Context manager for running multiple commands in a transaction.

    Each instance runs exactly one transaction; the connection is released
    exactly once when the block exits, whatever the outcome.
    """

    def __init__(self, database: 'Database',
                 isolation_level: IsolationLevel | str | None = None) -> None:
        self.database = database
        if isolation_level is None:
            isolation_level = getattr(database.options, 'isolation_level', None)
        self.isolation_level = IsolationLevel.parse(isolation_level)
        self.state = TransactionState.IDLE
        self.status = TransactionStatus(self)
        self.connection: Any = None
        self._pooled: Any = None
        self._broken = False
        self._pinned: Database | None = None

    @property
    def strategy(self):
        return self.database.strategy

    def pinned_database(self) -> 'Database':
        if self._pinned is None:
            self._pinned = self.database.pin(self)
        return self._pinned

    def __enter__(self) -> TransactionStatus:
        if self.state is not TransactionState.IDLE:
            raise TransactionFailure('A Transaction can only be entered once')

        pooled = self.database._acquire()
        raw_conn = get_raw_connection(pooled)
        try:
            _enroll(raw_conn)
        except TransactionFailure:
            pooled.close()
            raise

        try:
            self.strategy.begin(raw_conn, self.isolation_level)
        except Exception:
            _unenroll(raw_conn)
            pooled.invalidate()
            raise

        self._pooled = pooled
        self.connection = raw_conn
        self.state = TransactionState.ACTIVE
        _push(self)
        logger.debug(f'Started transaction for connection {id(raw_conn)} '
                     f'at isolation level {self.isolation_level.name}')
        return self.status

    def __exit__(self, exc_type: type | None, value: BaseException | None,
                 traceback: Any | None) -> None:
        completed = False
        try:
            if exc_type is not None:
                self._rollback(error=value)
            elif self.status.is_rollback_only:
                self._rollback()
            else:
                self._commit()
            completed = True
        finally:
            self._release(raise_errors=completed and exc_type is None)

    def _commit(self) -> None:
        try:
            self.connection.commit()
        except Exception as err:
            logger.error(f'Commit failed for connection {id(self.connection)}, rolling back')
            self._rollback(error=err)
            raise
        self.state = TransactionState.COMMITTED
        logger.debug(f'Committed transaction for connection {id(self.connection)}')

    def _rollback(self, error: BaseException | None = None) -> None:
        logger.warning('Rolling back the current transaction')
        try:
            self.connection.rollback()
        except Exception:
            self._broken = True
            self.state = TransactionState.ROLLED_BACK
            if error is None:
                raise
            logger.exception(f'Rollback failed while handling {type(error).__name__}: {error}')
            return
        self.state = TransactionState.ROLLED_BACK

    def _release(self, raise_errors: bool) -> None:
        _pop(self)
        try:
            if not self._broken:
                self.strategy.end(self.connection, self.isolation_level)
        except Exception:
            self._broken = True
            if raise_errors:
                raise
            logger.exception(f'Could not restore connection {id(self.connection)} after transaction')
        finally:
            _unenroll(self.connection)
            if self._broken:
                logger.warning(f'Discarding connection {id(self.connection)}')
                self._pooled.invalidate()
            else:
                self._pooled.close()
            logger.debug(f'Transaction cleanup complete for connection {id(self.connection)}')
