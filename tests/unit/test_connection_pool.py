from unittest.mock import MagicMock, patch

import pytest
import sqlalchemy as sa
from lecturedb import connection
from lecturedb.connection import Pool, PoolState, get_pool, shutdown
from lecturedb.exceptions import ConnectionFailure
from lecturedb.options import ConnectionConfig

from tests.fixtures.mocks import OdbcError


@pytest.fixture
def mssql_config():
    return ConnectionConfig(hostname='db01', database='portal', username='app',
                            password='pw', pool_min=2, pool_max=5)


@pytest.fixture
def no_event_listen():
    """Mock engines cannot carry SQLAlchemy event listeners"""
    with patch('sqlalchemy.event.listen') as listen:
        yield listen


def test_connect_builds_engine(mssql_config, mock_engine_factory, no_event_listen):
    """Test pool creates its engine from the strategy's URL and sizing"""
    pool = Pool(mssql_config, engine_factory=mock_engine_factory)
    assert pool.state is PoolState.UNINITIALIZED

    pool.connect()

    assert pool.state is PoolState.CONNECTED
    url = mock_engine_factory.call_args.args[0]
    kwargs = mock_engine_factory.call_args.kwargs
    assert url.drivername == 'mssql+pyodbc'
    assert kwargs['pool_size'] == 5
    assert kwargs['max_overflow'] == 0
    assert kwargs['connect_args'] == {'timeout': 30}
    no_event_listen.assert_called_once()
    assert no_event_listen.call_args.args[1] == 'connect'


def test_connect_verifies_pool_min(mssql_config, mock_engine_factory, no_event_listen):
    Pool(mssql_config, engine_factory=mock_engine_factory).connect()
    assert mock_engine_factory.return_value.connect.call_count == 2


def test_connect_is_idempotent(mssql_config, mock_engine_factory, no_event_listen):
    pool = Pool(mssql_config, engine_factory=mock_engine_factory)
    pool.connect()
    pool.connect()
    assert mock_engine_factory.call_count == 1


def test_connect_failure_reverts_state(mssql_config, mock_engine_factory, no_event_listen):
    """Test pool returns to UNINITIALIZED when the server is unreachable"""
    engine = mock_engine_factory.return_value
    engine.connect.side_effect = sa.exc.OperationalError(
        'connect', {}, OdbcError('08001', 'Login timeout expired (0) (SQLDriverConnect)'))
    pool = Pool(mssql_config, engine_factory=mock_engine_factory)

    with pytest.raises(ConnectionFailure, match='Login timeout expired'):
        pool.connect()

    assert pool.state is PoolState.UNINITIALIZED
    assert not pool.connected
    engine.dispose.assert_called_once()


def test_missing_driver_reverts_state(mssql_config, no_event_listen):
    """An engine that cannot be built leaves the pool ready to retry"""
    def missing_driver(url, **kwargs):
        raise ImportError("No module named 'pyodbc'")
    pool = Pool(mssql_config, engine_factory=missing_driver)

    with pytest.raises(ConnectionFailure, match='pyodbc'):
        pool.connect()

    assert pool.state is PoolState.UNINITIALIZED


def test_unexpected_setup_error_propagates(mssql_config, no_event_listen):
    factory = MagicMock(side_effect=RuntimeError('factory broke'))
    pool = Pool(mssql_config, engine_factory=factory)

    with pytest.raises(RuntimeError, match='factory broke'):
        pool.connect()

    assert pool.state is PoolState.UNINITIALIZED


def test_engine_requires_connection(mssql_config):
    with pytest.raises(ConnectionFailure):
        Pool(mssql_config).engine


def test_close(mssql_config, mock_engine_factory, no_event_listen):
    pool = Pool(mssql_config, engine_factory=mock_engine_factory)
    with pool:
        assert pool.connected
    assert pool.state is PoolState.CLOSED
    mock_engine_factory.return_value.dispose.assert_called_once()


def test_sqlite_unreachable(tmp_path):
    config = ConnectionConfig(dialect='sqlite', database=str(tmp_path / 'missing' / 'portal.db'))
    pool = Pool(config)
    with pytest.raises(ConnectionFailure):
        pool.connect()
    assert pool.state is PoolState.UNINITIALIZED


def test_sqlite_reconnect_after_close(tmp_path):
    pool = Pool(ConnectionConfig(dialect='sqlite', database=str(tmp_path / 'portal.db')))
    pool.connect()
    pool.close()
    pool.connect()
    assert pool.connected
    pool.close()


class TestDefaultPool:

    def test_lazy_and_shared(self, tmp_path):
        config = ConnectionConfig(dialect='sqlite', database=str(tmp_path / 'portal.db'))
        first = get_pool(config)
        assert first.connected
        assert get_pool() is first

    def test_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setattr('lecturedb.options.load_dotenv', lambda: None)
        monkeypatch.setenv('DB_DIALECT', 'sqlite')
        monkeypatch.setenv('DB_NAME', str(tmp_path / 'env.db'))
        pool = get_pool()
        assert pool.config.database == str(tmp_path / 'env.db')

    def test_shutdown(self, tmp_path):
        pool = get_pool(ConnectionConfig(dialect='sqlite', database=str(tmp_path / 'portal.db')))
        shutdown()
        assert pool.state is PoolState.CLOSED
        assert connection._default_pool is None
