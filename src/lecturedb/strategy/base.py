"""
Base strategy interface for dialect-specific translation and connectivity.

Defines the abstract base class every dialect strategy inherits from. A
strategy knows how to reach its engine (URL, engine kwargs, per-connection
setup), how to express the two rewritten statement shapes in its dialect, how
its backend reports errors, and the bootstrap DDL for the portal schema.
"""
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from lecturedb.exceptions import BackendError, ErrorKind, normalize_error
from sqlalchemy.engine import Engine

if TYPE_CHECKING:
    from lecturedb.options import ConnectionConfig

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DialectStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('mssql')
        class SQLServerStrategy(DialectStrategy):
            ...
    """
    def decorator(cls: type['DialectStrategy']) -> type['DialectStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DialectStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    # Backend error code -> normalized kind. Extend per dialect.
    error_kinds: dict[int, ErrorKind] = {}

    # Where the identity clause goes in a single-row INSERT:
    # 'before_values' or 'end'
    identity_position: str = 'end'

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier."""

    @classmethod
    def validate_config(cls, config: 'ConnectionConfig') -> None:
        """Validate dialect-specific configuration. Raise ValueError if invalid."""

    @abstractmethod
    def build_connection_url(self, config: 'ConnectionConfig',
                             database: str | None = None) -> sa.URL:
        """Build the SQLAlchemy connection URL.

        Args:
            config: Connection configuration
            database: Override for the configured database name
        """

    def get_engine_kwargs(self, config: 'ConnectionConfig') -> dict[str, Any]:
        """Return driver connect arguments for create_engine."""
        return {}

    def get_pool_kwargs(self, config: 'ConnectionConfig') -> dict[str, Any]:
        """Return pool sizing arguments for create_engine."""
        return {
            'pool_size': config.pool_max,
            'max_overflow': 0,
            'pool_timeout': config.connect_timeout,
            'pool_recycle': config.idle_timeout,
            'pool_pre_ping': True,
            }

    def configure_connection(self, dbapi_connection: Any, config: 'ConnectionConfig') -> None:
        """Apply per-connection settings when the pool opens a connection."""

    @abstractmethod
    def string_agg(self, expr: str) -> str:
        """Ordered string aggregation of `expr` separated by ``', '``."""

    @abstractmethod
    def identity_clause(self, identity_column: str) -> str:
        """Clause that makes a single-row INSERT return its identity value."""

    def quote_identifier(self, identifier: str) -> str:
        """Quote an identifier."""
        return '"' + identifier.replace('"', '""') + '"'

    def normalize_error(self, exc: BaseException) -> BackendError:
        """Map a driver exception to the normalized taxonomy."""
        return normalize_error(exc, self.error_kinds)

    def create_database(self, config: 'ConnectionConfig',
                        engine_factory: Callable[..., Engine] = sa.create_engine) -> bool:
        """Create the configured database if it does not exist.

        Returns True if the database was checked or created, False when the
        dialect has nothing to create.
        """
        return False

    @abstractmethod
    def schema_objects(self) -> list[tuple[str, str]]:
        """Bootstrap DDL as (object name, guarded statement) pairs.

        Each statement must be idempotent on its own.
        """
