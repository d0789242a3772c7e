"""
Query execution against a pooled connection.

`QueryAdapter.execute` is the single entry point application code uses:
it translates a ``?``-placeholder statement for the pool's dialect, runs it in
its own transaction and returns the rows plus insert metadata.

>>> from lecturedb import ConnectionConfig, Pool, QueryAdapter
>>> pool = Pool(ConnectionConfig(dialect='sqlite', database=':memory:'))
>>> db = QueryAdapter(pool)
>>> db.execute('CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT)')
QueryResult(rows=[], metadata={})
>>> db.execute('INSERT INTO t (name) VALUES (?)', ['a'])
QueryResult(rows=[{'id': 1}], metadata={'insert_id': 1})
>>> db.execute('SELECT GROUP_CONCAT(name) AS names FROM t').rows
[{'names': 'a'}]
>>> pool.close()
"""
import logging
import time
from collections.abc import Sequence
from typing import Any, NamedTuple

import sqlalchemy as sa
from lecturedb.connection import Pool
from lecturedb.exceptions import ConnectionFailure
from lecturedb.sql import TranslatedQuery, translate

__all__ = ['QueryAdapter', 'QueryResult']

logger = logging.getLogger(__name__)


class QueryResult(NamedTuple):
    """Rows as dicts plus metadata (``insert_id`` for rewritten inserts)."""
    rows: list[dict[str, Any]]
    metadata: dict[str, Any]


class QueryAdapter:
    """Translate and execute statements on a `Pool`.
    """

    def __init__(self, pool: Pool) -> None:
        self.pool = pool

    @property
    def strategy(self):
        return self.pool.strategy

    def translate(self, sql: str, params: Sequence[Any] | None = ()) -> TranslatedQuery:
        """Translate without executing."""
        return translate(sql, params, self.strategy,
                         identity_column=self.pool.config.identity_column)

    def execute(self, sql: str, params: Sequence[Any] | None = ()) -> QueryResult:
        """Execute a statement and return its rows and metadata.

        Parameters
            sql: Statement with ``?`` placeholders
            params: One scalar (or `Param`) per placeholder, in order

        Returns
            QueryResult(rows, metadata); metadata holds ``insert_id`` when a
            single-row INSERT was rewritten to return its identity

        Raises
            PlaceholderMismatchError: before execution, on count mismatch
            ConnectionFailure: the pool cannot be connected or checked out
            DuplicateEntryError: unique constraint or unique index violation
            BackendError: any other backend failure
        """
        query = self.translate(sql, params)
        logger.debug(f'Executing with {len(query.bindings)} parameters: {query.sql[:80]}')

        start = time.time()
        try:
            with self.pool.connection() as conn:
                result = conn.execute(query.statement())
                rows = [dict(row._mapping) for row in result] if result.returns_rows else []
        except sa.exc.DBAPIError as err:
            logger.error(f'Query failed: {query.sql}')
            if err.connection_invalidated:
                raise ConnectionFailure(f'Connection lost: {err.orig}') from err
            raise self.strategy.normalize_error(err.orig) from err
        logger.debug(f'Query returned {len(rows)} rows in {time.time() - start:.3f}s')

        metadata: dict[str, Any] = {}
        if query.returns_identity and rows:
            metadata['insert_id'] = rows[0].get(query.identity_column)
        return QueryResult(rows, metadata)
