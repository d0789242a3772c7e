"""
Data access for the lecture portal: a portable query adapter for SQL Server
(and SQLite) plus private object storage access for lecture media.

Statements can be run either as:
- Module function: lecturedb.execute(sql, params) on the process default pool
- Adapter method: QueryAdapter(pool).execute(sql, params)

The module function is a facade over the default pool from `get_pool()`.
"""
__version__ = '0.1.0'

from collections.abc import Sequence
from typing import Any

from lecturedb.connection import Pool, PoolState, get_pool, shutdown
from lecturedb.exceptions import BackendError, ConnectionFailure, DatabaseError
from lecturedb.exceptions import DuplicateEntryError, ErrorKind
from lecturedb.exceptions import ObjectStorageError, PlaceholderMismatchError
from lecturedb.exceptions import ReferenceResolutionError, SigningError
from lecturedb.exceptions import UploadRejectedError
from lecturedb.options import AuthMode, ConnectionConfig, StorageConfig
from lecturedb.query import QueryAdapter, QueryResult
from lecturedb.schema import initialize
from lecturedb.sql import TranslatedQuery, translate
from lecturedb.storage import ObjectResolver, SignedURLResult, resolve_key
from lecturedb.types import Param, WireType


def execute(sql: str, params: Sequence[Any] | None = ()) -> QueryResult:
    """Execute a statement on the process default pool.
    """
    return QueryAdapter(get_pool()).execute(sql, params)


__all__ = [
    'AuthMode',
    'BackendError',
    'ConnectionConfig',
    'ConnectionFailure',
    'DatabaseError',
    'DuplicateEntryError',
    'ErrorKind',
    'ObjectResolver',
    'ObjectStorageError',
    'Param',
    'PlaceholderMismatchError',
    'Pool',
    'PoolState',
    'QueryAdapter',
    'QueryResult',
    'ReferenceResolutionError',
    'SignedURLResult',
    'SigningError',
    'StorageConfig',
    'TranslatedQuery',
    'UploadRejectedError',
    'WireType',
    'execute',
    'get_pool',
    'initialize',
    'resolve_key',
    'shutdown',
    'translate',
]
