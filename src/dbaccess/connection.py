"""
Database connection handling with SQLAlchemy.

This module provides:
1. The `connect()` function returning a `Database` for a set of options
2. Engine creation and management through a thread-safe registry
3. Per-connection configuration through the dialect strategy

SQLAlchemy is only used as the connection source: engines pool DBAPI
connections and the `Database` borrows them with `engine.raw_connection()`.
"""
import atexit
import logging
import threading
from collections.abc import Callable
from dataclasses import fields
from typing import Any

import sqlalchemy as sa
from dbaccess.database import Database
from dbaccess.options import DatabaseOptions
from dbaccess.strategy import DatabaseStrategy, get_strategy
from dbaccess.utils import get_dialect_name, get_raw_connection
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from libb import load_options

__all__ = [
    'connect',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
    'get_dialect_name',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options: DatabaseOptions) -> sa.URL:
    """Convert DatabaseOptions to SQLAlchemy URL.
    """
    return get_strategy(options.drivername).build_connection_url(options)


def _connection_configurator(strategy: DatabaseStrategy) -> Callable[[Any, Any], None]:
    """Build the engine 'connect' listener run once per physical connection."""
    def configure(dbapi_connection: Any, connection_record: Any) -> None:
        strategy.configure_connection(get_raw_connection(dbapi_connection))
        logger.debug(f'Configured new {strategy.dialect_name} connection')
    return configure


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    Engines are cached per options. Dialects that need a particular pool
    (SQLite in-memory databases) override the pooling options.
    """
    key = str(options)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = strategy.build_connection_url(options)
        dialect_kwargs = strategy.get_engine_kwargs(options)

        engine_kwargs: dict[str, Any] = {'echo': False}

        if 'poolclass' in dialect_kwargs:
            pass
        elif not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(dialect_kwargs)
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)
        sa.event.listen(engine, 'connect', _connection_configurator(strategy))

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


@load_options(cls=DatabaseOptions)
def connect(options: DatabaseOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> Database:
    """Connect to a database using SQLAlchemy for connection management

    No connection is opened here; each call on the returned Database
    borrows one from the engine's pool.

    Args:
        options: Can be:
                - DatabaseOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Connection pooling options:
        use_pool: Whether to use connection pooling (default: False)
        pool_max_connections: Maximum connections in pool (default: 5)
        pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
        pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Returns
        Database executor bound to the options' engine
    """
    if isinstance(options, DatabaseOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=DatabaseOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    engine = get_engine_for_options(options)
    return Database(engine, options)
