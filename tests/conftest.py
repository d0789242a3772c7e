import pathlib
import site

import pytest
from lecturedb import connection
from lecturedb.strategy import _get_strategy

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def reset_default_pool():
    """Dispose the process default pool around each test for isolation."""
    connection.shutdown()
    yield
    connection.shutdown()
    _get_strategy.cache_clear()


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.values',
    'tests.fixtures.sqlite',
]
