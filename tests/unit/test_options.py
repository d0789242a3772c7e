import pytest
from lecturedb.options import AuthMode, ConnectionConfig, StorageConfig
from lecturedb.options import is_usable_username, resolve_auth_mode


def test_init_defaults():
    """Test default initialization"""
    config = ConnectionConfig()

    assert config.dialect == 'mssql'
    assert config.hostname == 'localhost'
    assert config.port == 1433
    assert config.database == 'learning_portal'
    assert config.encrypt is False
    assert config.pool_min == 0
    assert config.pool_max == 10
    assert config.connect_timeout == 30
    assert config.request_timeout == 30
    assert config.idle_timeout == 30
    assert config.identity_column == 'id'


@pytest.mark.parametrize('kwargs', [
    {'dialect': 'oracle'},
    {'pool_max': 0},
    {'pool_min': 5, 'pool_max': 2},
    {'pool_min': -1},
    {'connect_timeout': 0},
    {'request_timeout': -5},
    {'hostname': ''},
    {'database': ''},
    {'dialect': 'sqlite', 'database': ''},
], ids=['dialect', 'pool_max', 'min_over_max', 'negative_min', 'connect_timeout',
        'request_timeout', 'mssql_host', 'mssql_database', 'sqlite_path'])
def test_validation(kwargs):
    """Test validation rules"""
    with pytest.raises(ValueError):
        ConnectionConfig(**kwargs)


def test_frozen():
    config = ConnectionConfig()
    with pytest.raises(AttributeError):
        config.hostname = 'other'


class TestAuthMode:
    """Credential mode resolution priority."""

    @pytest.mark.parametrize(('username', 'usable'), [
        ('sa', True),
        (None, False),
        ('', False),
        ('   ', False),
        ('#your_db_user', False),
    ])
    def test_usable_username(self, username, usable):
        assert is_usable_username(username) is usable

    @pytest.mark.parametrize(('flag', 'username', 'domain_user', 'domain_password', 'expected'), [
        (True, 'sa', None, None, AuthMode.INTEGRATED),
        (True, 'sa', 'jdoe', 'secret', AuthMode.DOMAIN),
        (False, None, None, None, AuthMode.INTEGRATED),
        (False, '#placeholder', None, None, AuthMode.INTEGRATED),
        (False, '', 'jdoe', 'secret', AuthMode.DOMAIN),
        (False, '', 'jdoe', None, AuthMode.INTEGRATED),
        (False, 'sa', 'jdoe', 'secret', AuthMode.PASSWORD),
        (False, 'sa', None, None, AuthMode.PASSWORD),
    ], ids=['flag', 'flag_domain', 'no_user', 'placeholder_user', 'blank_user_domain',
            'domain_missing_password', 'password_wins_over_domain', 'password'])
    def test_resolution(self, flag, username, domain_user, domain_password, expected):
        assert resolve_auth_mode(flag, username, domain_user, domain_password) is expected

    def test_resolved_domain_fallbacks(self):
        assert ConnectionConfig(domain='CORP').resolved_domain == 'CORP'
        assert ConnectionConfig(hostname='db01').resolved_domain == 'db01'

    def test_describe_hides_secrets(self):
        config = ConnectionConfig(username='sa', password='Sup3rS3cret')
        text = config.describe()
        assert 'sa' in text
        assert 'Sup3rS3cret' not in text

        config = ConnectionConfig(use_integrated_auth=True, domain_username='jdoe',
                                  domain_password='Sup3rS3cret', domain='CORP')
        assert 'CORP\\jdoe' in config.describe()
        assert 'Sup3rS3cret' not in config.describe()


class TestFromEnv:

    def test_reads_variables(self):
        env = {
            'DB_HOST': 'db01',
            'DB_PORT': '1444',
            'DB_NAME': 'portal',
            'DB_USER': 'app',
            'DB_PASSWORD': 'pw',
            'DB_ENCRYPT': 'true',
            'DB_POOL_MAX': '4',
            'DB_REQUEST_TIMEOUT': '15',
            }
        config = ConnectionConfig.from_env(env)
        assert config.hostname == 'db01'
        assert config.port == 1444
        assert config.database == 'portal'
        assert config.username == 'app'
        assert config.password == 'pw'
        assert config.encrypt is True
        assert config.pool_max == 4
        assert config.request_timeout == 15
        assert config.auth_mode is AuthMode.PASSWORD

    def test_windows_auth_variables(self):
        env = {
            'DB_USE_WINDOWS_AUTH': 'yes',
            'DB_WINDOWS_USER': 'jdoe',
            'DB_WINDOWS_PASSWORD': 'pw',
            'DB_DOMAIN': 'CORP',
            }
        config = ConnectionConfig.from_env(env)
        assert config.use_integrated_auth is True
        assert config.auth_mode is AuthMode.DOMAIN
        assert config.resolved_domain == 'CORP'

    def test_empty_environment_uses_defaults(self):
        assert ConnectionConfig.from_env({}) == ConnectionConfig()

    def test_bad_integer(self):
        with pytest.raises(ValueError, match='DB_PORT'):
            ConnectionConfig.from_env({'DB_PORT': 'abc'})

    def test_dotenv_loaded_when_no_mapping(self, monkeypatch):
        calls = []
        monkeypatch.setattr('lecturedb.options.load_dotenv', lambda: calls.append(True))
        monkeypatch.setenv('DB_NAME', 'from_process_env')
        assert ConnectionConfig.from_env().database == 'from_process_env'
        assert calls == [True]


class TestStorageConfig:

    def test_defaults(self):
        config = StorageConfig()
        assert config.region == 'us-east-1'
        assert config.url_expires == 3600
        assert config.endpoint == 's3.amazonaws.com'

    def test_from_env(self):
        config = StorageConfig.from_env({
            'S3_BUCKET_NAME': 'lectures',
            'AWS_REGION': 'eu-west-1',
            'AWS_ACCESS_KEY_ID': 'AKIA',
            'AWS_SECRET_ACCESS_KEY': 'secret',
            'S3_URL_EXPIRES': '600',
            })
        assert config.bucket == 'lectures'
        assert config.region == 'eu-west-1'
        assert config.access_key == 'AKIA'
        assert config.url_expires == 600

    @pytest.mark.parametrize('kwargs', [{'url_expires': 0}, {'max_workers': 0}])
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            StorageConfig(**kwargs)
