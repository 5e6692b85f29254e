"""
Cursor wrapper adding SQL logging and timing to DB-API 2.0 cursors.
"""
import logging
import time
from collections.abc import Iterator
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_FETCH_SIZE = 500


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(self, operation: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{operation}\nargs: {args}')
        try:
            result = func(self, operation, *args, **kwargs)
            if hasattr(self.dbapi_cursor, 'statusmessage'):
                logger.debug(f'Query result: {self.dbapi_cursor.statusmessage}')
            return result
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            if self.stats is not None:
                self.stats.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Cursor:
    """Thin DB-API cursor wrapper.

    SQL reaching `execute` is already bound for the dialect (see
    `dbaccess.statement.bind`); the wrapper only logs, times and delegates.
    """

    def __init__(self, cursor: Any, stats: Any = None) -> None:
        """Initialize cursor wrapper.

        Args:
            cursor: The underlying database cursor
            stats: Object with an `addcall(elapsed)` method receiving query timings
        """
        self.dbapi_cursor = cursor
        self.stats = stats
        self._arraysize: int = DEFAULT_FETCH_SIZE

    def __getattr__(self, name: str) -> Any:
        """Delegate members to underlying cursor."""
        return getattr(self.dbapi_cursor, name)

    def __iter__(self) -> Iterator:
        """Return iterator for cursor results."""
        return IterChunk(self)

    def __enter__(self) -> 'Cursor':
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    @property
    def description(self) -> list[tuple] | None:
        """Column descriptions for last query."""
        return self.dbapi_cursor.description

    @property
    def rowcount(self) -> int:
        """Number of rows produced/affected by last operation."""
        return self.dbapi_cursor.rowcount

    @property
    def lastrowid(self) -> Any:
        """Row id of the last inserted row, where the driver reports one."""
        return getattr(self.dbapi_cursor, 'lastrowid', None)

    @property
    def arraysize(self) -> int:
        """Number of rows fetched by fetchmany()."""
        return self._arraysize

    @arraysize.setter
    def arraysize(self, value: int) -> None:
        self._arraysize = value

    def close(self) -> None:
        """Close cursor."""
        self.dbapi_cursor.close()

    def fetchone(self) -> tuple | None:
        """Fetch next row."""
        return self.dbapi_cursor.fetchone()

    def fetchmany(self, size: int | None = None) -> list[tuple]:
        """Fetch next set of rows."""
        if size is None:
            size = self.arraysize
        return self.dbapi_cursor.fetchmany(size)

    def fetchall(self) -> list[tuple]:
        """Fetch all remaining rows."""
        return self.dbapi_cursor.fetchall()

    @dumpsql
    def execute(self, operation: str, args: tuple | None = None) -> int:
        """Execute a bound operation.

        With `args` None the SQL is sent as a plain query, so drivers do not
        look for placeholders in it.
        """
        if args is None:
            self.dbapi_cursor.execute(operation)
        else:
            self.dbapi_cursor.execute(operation, args)
        return self.dbapi_cursor.rowcount


def IterChunk(cursor: Any, size: int | None = None) -> Iterator[tuple]:
    """Iterate through cursor results in chunks."""
    while True:
        chunked = cursor.fetchmany(size)
        if not chunked:
            break
        yield from chunked
