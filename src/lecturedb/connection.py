"""
Connection pool handling with SQLAlchemy.

This module provides:
1. The `Pool` class, an explicitly owned pooled engine with connect/close
2. The `get_pool()` process default, created lazily from the environment
3. `shutdown()` to dispose the default pool (registered with atexit)

A pool moves through UNINITIALIZED -> CONNECTING -> CONNECTED and back to
UNINITIALIZED when connecting fails. `close()` leaves it CLOSED; a closed pool
can be connected again.
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, Self

import sqlalchemy as sa
from lecturedb.exceptions import ConnectionFailure
from lecturedb.options import ConnectionConfig
from lecturedb.strategy import DialectStrategy, get_strategy
from sqlalchemy.engine import Engine

__all__ = [
    'Pool',
    'PoolState',
    'get_pool',
    'shutdown',
]

logger = logging.getLogger(__name__)

# Failures while opening or checking out a pooled connection
CONNECT_ERRORS = (sa.exc.DBAPIError, sa.exc.TimeoutError)
# Failures while building the engine (driver import, URL and arguments)
SETUP_ERRORS = (ImportError, sa.exc.ArgumentError, ValueError, TypeError)


class PoolState(Enum):
    UNINITIALIZED = 'uninitialized'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    CLOSED = 'closed'


class Pool:
    """Pooled engine for one database configuration.

    The pool is shared by every caller without per-request locking; only
    state transitions are serialized.

    Usage:
        with Pool(ConnectionConfig(dialect='sqlite', database='portal.db')) as pool:
            QueryAdapter(pool).execute('SELECT 1')
    """

    def __init__(self, config: ConnectionConfig,
                 engine_factory: Callable[..., Engine] = sa.create_engine) -> None:
        self.config = config
        self.strategy: DialectStrategy = get_strategy(config.dialect)
        self._engine_factory = engine_factory
        self._engine: Engine | None = None
        self._state = PoolState.UNINITIALIZED
        self._lock = threading.RLock()

    def __enter__(self) -> Self:
        self.connect()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'<Pool {self.config.describe()} [{self._state.value}]>'

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is PoolState.CONNECTED

    @property
    def engine(self) -> Engine:
        """The connected engine. Raises ConnectionFailure when not connected."""
        if self._engine is None or not self.connected:
            raise ConnectionFailure('Pool is not connected')
        return self._engine

    def _create_engine(self) -> Engine:
        config = self.config
        url = self.strategy.build_connection_url(config)
        engine_kwargs: dict[str, Any] = {'echo': False}
        engine_kwargs.update(self.strategy.get_pool_kwargs(config))
        engine_kwargs.update(self.strategy.get_engine_kwargs(config))
        engine = self._engine_factory(url, **engine_kwargs)

        def on_connect(dbapi_connection, connection_record):
            self.strategy.configure_connection(dbapi_connection, config)

        sa.event.listen(engine, 'connect', on_connect)
        return engine

    def _verify(self, engine: Engine) -> None:
        """Check out and release `max(1, pool_min)` connections."""
        held: list[sa.engine.Connection] = []
        try:
            for _ in range(max(1, self.config.pool_min)):
                conn = engine.connect()
                held.append(conn)
                conn.execute(sa.text('SELECT 1'))
        finally:
            for conn in held:
                conn.close()

    def connect(self) -> Self:
        """Create the engine and verify the server is reachable.

        Idempotent once connected. Any failure returns the pool to
        UNINITIALIZED. Failures to build the engine or reach the backend
        raise ConnectionFailure.
        """
        with self._lock:
            if self.connected:
                return self

            self._state = PoolState.CONNECTING
            logger.info(f'Connecting pool: {self.config.describe()}, Auth: {self.config.auth_mode.value}')
            start = time.time()
            engine = None
            try:
                engine = self._create_engine()
                self._verify(engine)
            except Exception as err:
                if engine is not None:
                    engine.dispose()
                self._state = PoolState.UNINITIALIZED
                if not isinstance(err, CONNECT_ERRORS + SETUP_ERRORS):
                    raise
                orig = getattr(err, 'orig', None) or err
                logger.error(f'Database connection failed: {orig}')
                raise ConnectionFailure(f'Database connection failed: {orig}') from err

            self._engine = engine
            self._state = PoolState.CONNECTED
            logger.info(f'Connected to {self.config.dialect} database {self.config.database!r} '
                        f'in {time.time() - start:.2f}s')
            return self

    @contextmanager
    def connection(self) -> Iterator[sa.engine.Connection]:
        """Check out a pooled connection inside its own transaction.

        Commits when the block exits normally, rolls back otherwise. Raises
        ConnectionFailure when no connection can be obtained.
        """
        if not self.connected:
            self.connect()
        try:
            conn = self.engine.connect()
        except CONNECT_ERRORS as err:
            orig = getattr(err, 'orig', None) or err
            raise ConnectionFailure(f'Could not obtain a pooled connection: {orig}') from err
        with conn, conn.begin():
            yield conn

    def execute_script(self, statements: list[str]) -> None:
        """Run statements verbatim, each in its own transaction.

        Used for bootstrap DDL that must not pass through translation.
        """
        for statement in statements:
            try:
                with self.connection() as conn:
                    conn.exec_driver_sql(statement)
            except sa.exc.DBAPIError as err:
                raise self.strategy.normalize_error(err.orig) from err

    def close(self) -> None:
        """Dispose the engine and every pooled connection."""
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None
                logger.debug(f'Pool closed for {self.config.database!r}')
            self._state = PoolState.CLOSED


_default_pool: Pool | None = None
_default_pool_lock = threading.Lock()


def get_pool(config: ConnectionConfig | None = None) -> Pool:
    """Return the process default pool, creating and connecting it on first call.

    Later calls return the same pool whatever `config` they pass.
    """
    global _default_pool
    pool = _default_pool
    if pool is not None and pool.connected:
        return pool

    with _default_pool_lock:
        if _default_pool is None:
            _default_pool = Pool(config or ConnectionConfig.from_env())
        pool = _default_pool
    return pool.connect()


def shutdown() -> None:
    """Close and forget the process default pool."""
    global _default_pool
    with _default_pool_lock:
        if _default_pool is not None:
            _default_pool.close()
            _default_pool = None
            logger.debug('Default pool disposed')


atexit.register(shutdown)
