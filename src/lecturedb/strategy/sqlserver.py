"""
SQL Server-specific strategy implementation.

This module implements the DialectStrategy interface for SQL Server through
pyodbc. It handles SQL Server's unique features such as:
- STRING_AGG in place of GROUP_CONCAT
- OUTPUT INSERTED.<col> for identity retrieval
- Integrated, domain (NTLM) and SQL login authentication
- Native error numbers for unique violations (2627, 2601)
- Proper quoting of identifiers with square brackets
"""
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from lecturedb.exceptions import ConnectionFailure, ErrorKind
from lecturedb.strategy.base import DialectStrategy, register_strategy
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

if TYPE_CHECKING:
    from lecturedb.options import ConnectionConfig

logger = logging.getLogger(__name__)

_TABLES = [
    ('sections', """
IF NOT EXISTS (SELECT * FROM sys.objects WHERE object_id = OBJECT_ID(N'[dbo].[sections]') AND type in (N'U'))
BEGIN
  CREATE TABLE sections (
    id INT IDENTITY(1,1) PRIMARY KEY,
    name NVARCHAR(100) NOT NULL UNIQUE,
    description NVARCHAR(MAX),
    created_at DATETIME DEFAULT GETDATE()
  )
END
"""),
    ('users', """
IF NOT EXISTS (SELECT * FROM sys.objects WHERE object_id = OBJECT_ID(N'[dbo].[users]') AND type in (N'U'))
BEGIN
  CREATE TABLE users (
    id INT IDENTITY(1,1) PRIMARY KEY,
    name NVARCHAR(100) NOT NULL,
    email NVARCHAR(100) NOT NULL UNIQUE,
    password_hash NVARCHAR(255) NOT NULL,
    role NVARCHAR(20) NOT NULL DEFAULT 'student' CHECK (role IN ('admin', 'student')),
    created_at DATETIME DEFAULT GETDATE(),
    updated_at DATETIME DEFAULT GETDATE()
  )
END
"""),
    ('user_sections', """
IF NOT EXISTS (SELECT * FROM sys.objects WHERE object_id = OBJECT_ID(N'[dbo].[user_sections]') AND type in (N'U'))
BEGIN
  CREATE TABLE user_sections (
    id INT IDENTITY(1,1) PRIMARY KEY,
    user_id INT NOT NULL,
    section_id INT NOT NULL,
    assigned_at DATETIME DEFAULT GETDATE(),
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (section_id) REFERENCES sections(id) ON DELETE CASCADE,
    CONSTRAINT unique_user_section UNIQUE (user_id, section_id)
  )
END
"""),
    ('videos', """
IF NOT EXISTS (SELECT * FROM sys.objects WHERE object_id = OBJECT_ID(N'[dbo].[videos]') AND type in (N'U'))
BEGIN
  CREATE TABLE videos (
    id INT IDENTITY(1,1) PRIMARY KEY,
    title NVARCHAR(255) NOT NULL,
    section_id INT NOT NULL,
    s3_key NVARCHAR(500) NOT NULL,
    s3_url NVARCHAR(MAX),
    uploaded_by INT NOT NULL,
    created_at DATETIME DEFAULT GETDATE(),
    updated_at DATETIME DEFAULT GETDATE(),
    FOREIGN KEY (section_id) REFERENCES sections(id) ON DELETE CASCADE,
    FOREIGN KEY (uploaded_by) REFERENCES users(id) ON DELETE CASCADE
  )
END
"""),
    ]


def _updated_at_trigger(table: str, alias: str) -> tuple[str, str]:
    name = f'trg_{table}_updated_at'
    return name, f"""
IF NOT EXISTS (SELECT * FROM sys.triggers WHERE name = '{name}')
BEGIN
  EXEC('
    CREATE TRIGGER {name}
    ON {table}
    AFTER UPDATE
    AS
    BEGIN
      UPDATE {table}
      SET updated_at = GETDATE()
      FROM {table} {alias}
      INNER JOIN inserted i ON {alias}.id = i.id
    END
  ')
END
"""


@register_strategy('mssql')
class SQLServerStrategy(DialectStrategy):
    """SQL Server-specific operations"""

    error_kinds = {
        2627: ErrorKind.DUPLICATE_ENTRY,   # Violation of PRIMARY KEY / UNIQUE constraint
        2601: ErrorKind.DUPLICATE_ENTRY,   # Duplicate key row in unique index
        262: ErrorKind.PERMISSION_DENIED,  # CREATE DATABASE permission denied
        }

    identity_position = 'before_values'

    @property
    def dialect_name(self) -> str:
        return 'mssql'

    @classmethod
    def validate_config(cls, config: 'ConnectionConfig') -> None:
        if not config.hostname:
            raise ValueError('hostname is required for SQL Server')
        if not config.database:
            raise ValueError('database is required for SQL Server')

    def build_connection_url(self, config: 'ConnectionConfig',
                             database: str | None = None) -> sa.URL:
        """Build the mssql+pyodbc URL for the resolved authentication mode.

        Domain credentials are passed as ``DOMAIN\\user`` which ODBC drivers
        with NTLM support (FreeTDS) authenticate as a Windows login.
        """
        from lecturedb.options import AuthMode

        query = {
            'driver': config.odbc_driver,
            'Encrypt': 'yes' if config.encrypt else 'no',
            'TrustServerCertificate': 'yes' if config.trust_server_certificate else 'no',
            }
        username = password = None
        mode = config.auth_mode
        if mode is AuthMode.INTEGRATED:
            query['Trusted_Connection'] = 'yes'
        elif mode is AuthMode.DOMAIN:
            username = f'{config.resolved_domain}\\{config.domain_username}'
            password = config.domain_password
        else:
            username = config.username
            password = config.password

        return sa.URL.create(
            drivername='mssql+pyodbc',
            username=username,
            password=password,
            host=config.hostname,
            port=config.port,
            database=database or config.database,
            query=query,
            )

    def get_engine_kwargs(self, config: 'ConnectionConfig') -> dict[str, Any]:
        return {'connect_args': {'timeout': config.connect_timeout}}

    def configure_connection(self, dbapi_connection: Any, config: 'ConnectionConfig') -> None:
        """Set the pyodbc per-statement timeout"""
        dbapi_connection.timeout = config.request_timeout

    def string_agg(self, expr: str) -> str:
        return f"STRING_AGG(CAST({expr} AS NVARCHAR(MAX)), ', ')"

    def identity_clause(self, identity_column: str) -> str:
        return f'OUTPUT INSERTED.{self.quote_identifier(identity_column)}'

    def quote_identifier(self, identifier: str) -> str:
        """Quote an identifier for SQL Server"""
        return f"[{identifier.replace(']', ']]')}]"

    def create_database(self, config: 'ConnectionConfig',
                        engine_factory: Callable[..., Engine] = sa.create_engine) -> bool:
        """Create the configured database through the server's master database.

        Raises ConnectionFailure if master is unreachable and the normalized
        backend error (e.g. permission denied, code 262) if creation fails.
        """
        url = self.build_connection_url(config, database='master')
        engine = engine_factory(url, poolclass=NullPool, isolation_level='AUTOCOMMIT',
                                **self.get_engine_kwargs(config))
        sql = f"""
IF NOT EXISTS (SELECT * FROM sys.databases WHERE name = :name)
BEGIN
  CREATE DATABASE {self.quote_identifier(config.database)}
END
"""
        try:
            try:
                conn = engine.connect()
            except sa.exc.DBAPIError as err:
                raise ConnectionFailure(f'Cannot reach master on {config.hostname}: {err.orig}') from err
            with conn:
                try:
                    conn.execute(sa.text(sql), {'name': config.database})
                except sa.exc.DBAPIError as err:
                    raise self.normalize_error(err.orig) from err
        finally:
            engine.dispose()

        logger.info(f"Database '{config.database}' checked/created successfully")
        return True

    def schema_objects(self) -> list[tuple[str, str]]:
        return [*_TABLES,
                _updated_at_trigger('users', 'u'),
                _updated_at_trigger('videos', 'v')]
