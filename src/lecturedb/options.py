"""
Connection and storage configuration.

Both configurations are immutable once built. `from_env()` reads the process
environment (after loading a ``.env`` file when present), using the same
variable names as the portal's server deployment.
"""
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv
from lecturedb.strategy import get_available_dialects, get_strategy_class
from lecturedb.strategy import is_supported_dialect

__all__ = [
    'AuthMode',
    'ConnectionConfig',
    'StorageConfig',
    'resolve_auth_mode',
]

_TRUE_STRINGS = {'true', '1', 'yes', 'on'}


class AuthMode(Enum):
    """How the pool authenticates against the server."""
    INTEGRATED = 'integrated'
    DOMAIN = 'domain'
    PASSWORD = 'password'


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_STRINGS


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as err:
        raise ValueError(f'{name} must be an integer, got {value!r}') from err


def _env_str(env: Mapping[str, str], name: str, default: str | None = None) -> str | None:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _load_environ(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    if environ is not None:
        return environ
    load_dotenv()
    return os.environ


def is_usable_username(username: str | None) -> bool:
    """A username is usable unless absent, blank or a ``#`` placeholder."""
    return bool(username and username.strip()) and not username.startswith('#')


def resolve_auth_mode(use_integrated_auth: bool, username: str | None,
                      domain_username: str | None, domain_password: str | None) -> AuthMode:
    """Resolve the credential mode.

    Priority:
    1. Explicit integrated-auth flag -> integrated auth
    2. No usable username -> integrated auth
    3. Otherwise -> username/password auth

    Integrated auth binds explicit domain credentials when both the domain
    user and password are present, otherwise the process identity is used.
    """
    if use_integrated_auth or not is_usable_username(username):
        if domain_username and domain_password:
            return AuthMode.DOMAIN
        return AuthMode.INTEGRATED
    return AuthMode.PASSWORD


@dataclass(frozen=True)
class ConnectionConfig:
    """Options

    supported dialect names: `mssql`, `sqlite`

    Pool options:
    - pool_min: Connections opened and verified when the pool connects (default: 0)
    - pool_max: Maximum connections in pool (default: 10)
    - connect_timeout: Login and pool checkout timeout in seconds (default: 30)
    - request_timeout: Per-statement timeout in seconds (default: 30)
    - idle_timeout: Seconds before a pooled connection is recycled (default: 30)
    """
    dialect: str = 'mssql'
    hostname: str = 'localhost'
    port: int = 1433
    database: str = 'learning_portal'
    username: str | None = None
    password: str | None = None
    use_integrated_auth: bool = False
    domain_username: str | None = None
    domain_password: str | None = None
    domain: str | None = None
    encrypt: bool = False
    trust_server_certificate: bool = True
    odbc_driver: str = 'ODBC Driver 18 for SQL Server'
    pool_min: int = 0
    pool_max: int = 10
    connect_timeout: int = 30
    request_timeout: int = 30
    idle_timeout: int = 30
    identity_column: str = 'id'

    def __post_init__(self):
        if not is_supported_dialect(self.dialect):
            available = get_available_dialects()
            raise ValueError(f'dialect must be one of: {available}')
        if self.pool_max < 1:
            raise ValueError('pool_max must be at least 1')
        if not 0 <= self.pool_min <= self.pool_max:
            raise ValueError('pool_min must be between 0 and pool_max')
        for name in ('connect_timeout', 'request_timeout', 'idle_timeout'):
            if getattr(self, name) <= 0:
                raise ValueError(f'{name} must be positive')
        get_strategy_class(self.dialect).validate_config(self)

    @property
    def auth_mode(self) -> AuthMode:
        return resolve_auth_mode(self.use_integrated_auth, self.username,
                                 self.domain_username, self.domain_password)

    @property
    def resolved_domain(self) -> str:
        """Domain for explicit domain credentials."""
        return self.domain or self.hostname or 'localhost'

    def describe(self) -> str:
        """Loggable summary without secrets."""
        mode = self.auth_mode
        if mode is AuthMode.PASSWORD:
            who = f'User: {self.username}'
        elif mode is AuthMode.DOMAIN:
            who = f'Domain user: {self.resolved_domain}\\{self.domain_username}'
        else:
            who = 'Integrated authentication'
        return f'{self.dialect}://{self.hostname}:{self.port}, {who}, Database: {self.database}'

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> 'ConnectionConfig':
        """Build the configuration from ``DB_*`` environment variables."""
        env = _load_environ(environ)
        return cls(
            dialect=_env_str(env, 'DB_DIALECT', 'mssql'),
            hostname=_env_str(env, 'DB_HOST', 'localhost'),
            port=_env_int(env, 'DB_PORT', 1433),
            database=_env_str(env, 'DB_NAME', 'learning_portal'),
            username=_env_str(env, 'DB_USER'),
            password=env.get('DB_PASSWORD'),
            use_integrated_auth=_env_bool(env, 'DB_USE_WINDOWS_AUTH'),
            domain_username=_env_str(env, 'DB_WINDOWS_USER'),
            domain_password=env.get('DB_WINDOWS_PASSWORD') or None,
            domain=_env_str(env, 'DB_DOMAIN'),
            encrypt=_env_bool(env, 'DB_ENCRYPT'),
            trust_server_certificate=_env_bool(env, 'DB_TRUST_SERVER_CERTIFICATE', True),
            odbc_driver=_env_str(env, 'DB_ODBC_DRIVER', 'ODBC Driver 18 for SQL Server'),
            pool_min=_env_int(env, 'DB_POOL_MIN', 0),
            pool_max=_env_int(env, 'DB_POOL_MAX', 10),
            connect_timeout=_env_int(env, 'DB_CONNECT_TIMEOUT', 30),
            request_timeout=_env_int(env, 'DB_REQUEST_TIMEOUT', 30),
            idle_timeout=_env_int(env, 'DB_IDLE_TIMEOUT', 30),
            )


@dataclass(frozen=True)
class StorageConfig:
    """Object storage options.

    The bucket is private; objects are read through signed URLs that expire
    after `url_expires` seconds (default: 3600).
    """
    bucket: str | None = None
    region: str = 'us-east-1'
    access_key: str | None = None
    secret_key: str | None = None
    endpoint: str = 's3.amazonaws.com'
    secure: bool = True
    url_expires: int = 3600
    max_workers: int = 8

    def __post_init__(self):
        if self.url_expires <= 0:
            raise ValueError('url_expires must be positive')
        if self.max_workers < 1:
            raise ValueError('max_workers must be at least 1')

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> 'StorageConfig':
        """Build the configuration from ``AWS_*`` and ``S3_*`` environment variables."""
        env = _load_environ(environ)
        return cls(
            bucket=_env_str(env, 'S3_BUCKET_NAME'),
            region=_env_str(env, 'AWS_REGION', 'us-east-1'),
            access_key=_env_str(env, 'AWS_ACCESS_KEY_ID'),
            secret_key=env.get('AWS_SECRET_ACCESS_KEY') or None,
            endpoint=_env_str(env, 'S3_ENDPOINT', 's3.amazonaws.com'),
            secure=_env_bool(env, 'S3_SECURE', True),
            url_expires=_env_int(env, 'S3_URL_EXPIRES', 3600),
            max_workers=_env_int(env, 'S3_SIGN_WORKERS', 8),
            )
