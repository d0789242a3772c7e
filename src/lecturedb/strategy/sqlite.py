"""
SQLite-specific strategy implementation.

Used for local development and tests. It handles SQLite's features such as:
- group_concat with an explicit separator
- RETURNING for identity retrieval (SQLite 3.35+)
- Extended result codes for unique violations (2067, 1555)
- Foreign keys enabled per connection
- A single static connection for in-memory databases
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from lecturedb.exceptions import ErrorKind
from lecturedb.strategy.base import DialectStrategy, register_strategy
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from lecturedb.options import ConnectionConfig

logger = logging.getLogger(__name__)

_SCHEMA = [
    ('sections', """
CREATE TABLE IF NOT EXISTS sections (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  description TEXT,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""),
    ('users', """
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  email TEXT NOT NULL UNIQUE,
  password_hash TEXT NOT NULL,
  role TEXT NOT NULL DEFAULT 'student' CHECK (role IN ('admin', 'student')),
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
  updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""),
    ('user_sections', """
CREATE TABLE IF NOT EXISTS user_sections (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  section_id INTEGER NOT NULL REFERENCES sections(id) ON DELETE CASCADE,
  assigned_at DATETIME DEFAULT CURRENT_TIMESTAMP,
  CONSTRAINT unique_user_section UNIQUE (user_id, section_id)
)
"""),
    ('videos', """
CREATE TABLE IF NOT EXISTS videos (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  title TEXT NOT NULL,
  section_id INTEGER NOT NULL REFERENCES sections(id) ON DELETE CASCADE,
  s3_key TEXT NOT NULL,
  s3_url TEXT,
  uploaded_by INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
  updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""),
    ('trg_users_updated_at', """
CREATE TRIGGER IF NOT EXISTS trg_users_updated_at
AFTER UPDATE ON users
BEGIN
  UPDATE users SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
END
"""),
    ('trg_videos_updated_at', """
CREATE TRIGGER IF NOT EXISTS trg_videos_updated_at
AFTER UPDATE ON videos
BEGIN
  UPDATE videos SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
END
"""),
    ]


@register_strategy('sqlite')
class SQLiteStrategy(DialectStrategy):
    """SQLite-specific operations.
    """

    error_kinds = {
        2067: ErrorKind.DUPLICATE_ENTRY,  # SQLITE_CONSTRAINT_UNIQUE
        1555: ErrorKind.DUPLICATE_ENTRY,  # SQLITE_CONSTRAINT_PRIMARYKEY
        }

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    @classmethod
    def validate_config(cls, config: 'ConnectionConfig') -> None:
        if not config.database:
            raise ValueError('database path is required for SQLite')

    def build_connection_url(self, config: 'ConnectionConfig',
                             database: str | None = None) -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=database or config.database)

    def get_engine_kwargs(self, config: 'ConnectionConfig') -> dict[str, Any]:
        return {
            'connect_args': {
                'timeout': config.connect_timeout,
                'check_same_thread': False,
                }
            }

    def get_pool_kwargs(self, config: 'ConnectionConfig') -> dict[str, Any]:
        """In-memory databases live in one connection shared by the pool."""
        if config.database == ':memory:':
            logger.debug('In-memory SQLite database, pooling a single static connection')
            return {'poolclass': StaticPool}
        return super().get_pool_kwargs(config)

    def configure_connection(self, dbapi_connection: Any, config: 'ConnectionConfig') -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute('PRAGMA foreign_keys = ON')
        finally:
            cursor.close()

    def string_agg(self, expr: str) -> str:
        return f"group_concat(CAST({expr} AS TEXT), ', ')"

    def identity_clause(self, identity_column: str) -> str:
        return f'RETURNING {self.quote_identifier(identity_column)}'

    def schema_objects(self) -> list[tuple[str, str]]:
        return list(_SCHEMA)
