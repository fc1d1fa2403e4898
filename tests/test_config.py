"""
Tests for configuration loading and validation
Every case that touches the environment does so through scoped_env

Run with: pytest tests/test_config.py -v
"""

import os

import pytest

from config import Settings, ConfigError, config, DEFAULT_JWT_SECRET
from vaultke import create_app
from vaultke.store import open_store
from vaultke.testing.environment import scoped_env

ALL_VARS = (
    'ENVIRONMENT', 'PORT', 'DATABASE_URL', 'JWT_SECRET', 'JWT_EXPIRATION',
    'MPESA_CONSUMER_KEY', 'MPESA_CONSUMER_SECRET', 'MPESA_PASSKEY', 'MPESA_SHORTCODE',
    'GOOGLE_CLIENT_ID', 'GOOGLE_CLIENT_SECRET', 'GOOGLE_REDIRECT_URL',
    'SMTP_HOST', 'SMTP_PORT', 'SMTP_USERNAME', 'SMTP_PASSWORD',
    'REDIS_URL', 'REDIS_PASSWORD', 'MAX_FILE_SIZE', 'UPLOAD_PATH',
    'RATE_LIMIT_REQUESTS', 'RATE_LIMIT_WINDOW', 'LOG_LEVEL', 'LOG_FILE',
    'ENABLE_METRICS', 'METRICS_PORT', 'ENABLE_TRACING',
    'BACKUP_ENABLED', 'BACKUP_INTERVAL', 'BACKUP_PATH',
)

VALID_SECRET = 'a-very-secure-secret-key-1234567890'


@pytest.fixture
def clean_env():
    """Unset every recognised variable for the duration of the test."""
    with scoped_env(**{name: None for name in ALL_VARS}):
        yield


# =============================================================================
# SCOPED ENVIRONMENT
# =============================================================================

class TestScopedEnv:
    """Tests for scoped acquisition of environment variables."""

    def test_variable_unset_after_scope(self):
        os.environ.pop('VAULTKE_TEST_VAR', None)
        with scoped_env(VAULTKE_TEST_VAR='on'):
            assert os.environ['VAULTKE_TEST_VAR'] == 'on'
        assert 'VAULTKE_TEST_VAR' not in os.environ

    def test_previous_value_restored(self):
        with scoped_env(VAULTKE_TEST_VAR='outer'):
            with scoped_env(VAULTKE_TEST_VAR='inner'):
                assert os.environ['VAULTKE_TEST_VAR'] == 'inner'
            assert os.environ['VAULTKE_TEST_VAR'] == 'outer'
        assert 'VAULTKE_TEST_VAR' not in os.environ

    def test_restored_when_block_raises(self):
        with pytest.raises(RuntimeError):
            with scoped_env(VAULTKE_TEST_VAR='temporary'):
                raise RuntimeError('assertion failed inside scope')
        assert 'VAULTKE_TEST_VAR' not in os.environ

    def test_none_unsets_and_restores(self):
        with scoped_env(VAULTKE_TEST_VAR='kept'):
            with scoped_env(VAULTKE_TEST_VAR=None):
                assert 'VAULTKE_TEST_VAR' not in os.environ
            assert os.environ['VAULTKE_TEST_VAR'] == 'kept'

    def test_values_are_stringified(self):
        with scoped_env(VAULTKE_TEST_VAR=8080):
            assert os.environ['VAULTKE_TEST_VAR'] == '8080'


# =============================================================================
# LOADING
# =============================================================================

class TestSettingsLoad:
    """Tests for Settings.load defaults and overrides."""

    def test_defaults(self, clean_env):
        settings = Settings.load()
        assert settings.environment == 'development'
        assert settings.server_port == '8080'
        assert settings.database_url == 'vaultke.db'
        assert settings.jwt_secret == DEFAULT_JWT_SECRET
        assert settings.jwt_expiration == 86400
        assert settings.smtp_host == 'smtp.gmail.com'
        assert settings.redis_url == 'redis://localhost:6379'
        assert settings.max_file_size == 5 * 1024 * 1024
        assert settings.upload_path == './uploads'
        assert settings.rate_limit_requests == 100
        assert settings.rate_limit_window == 60
        assert settings.log_level == 'info'
        assert settings.enable_metrics is False
        assert settings.backup_interval == '24h'

    def test_environment_overrides(self, clean_env):
        with scoped_env(ENVIRONMENT='production', PORT='9000', JWT_SECRET=VALID_SECRET,
                        DATABASE_URL='postgresql://db/vaultke', MAX_FILE_SIZE='1048576',
                        ENABLE_METRICS='true', ENABLE_TRACING='0', BACKUP_ENABLED='yes',
                        MPESA_SHORTCODE='174379', LOG_FILE='/var/log/vaultke.log'):
            settings = Settings.load()
        assert settings.environment == 'production'
        assert settings.server_port == '9000'
        assert settings.database_url == 'postgresql://db/vaultke'
        assert settings.max_file_size == 1048576
        assert settings.enable_metrics is True
        assert settings.enable_tracing is False
        assert settings.backup_enabled is True
        assert settings.mpesa_shortcode == '174379'
        assert settings.log_file == '/var/log/vaultke.log'

    def test_non_integer_rejected(self, clean_env):
        with scoped_env(MAX_FILE_SIZE='five megabytes'):
            with pytest.raises(ConfigError, match='MAX_FILE_SIZE'):
                Settings.load()

    def test_reload_picks_up_changes(self, clean_env):
        settings = Settings.load()
        with scoped_env(PORT='7000'):
            settings.reload()
        assert settings.server_port == '7000'

    def test_unknown_setting_rejected(self):
        with pytest.raises(TypeError):
            Settings(not_a_setting=1)


# =============================================================================
# VALIDATION
# =============================================================================

class TestSettingsValidation:
    """Tests for validate_required and validate."""

    def _valid(self, **overrides):
        values = dict(environment='test', database_url='sqlite://', jwt_secret=VALID_SECRET,
                      jwt_expiration=3600)
        values.update(overrides)
        return Settings(**values)

    def test_valid_settings_pass(self):
        self._valid().validate()

    @pytest.mark.parametrize("field,message", [
        ('jwt_secret', 'JWT secret is required'),
        ('database_url', 'Database URL is required'),
        ('environment', 'Environment is required'),
    ])
    def test_required_fields(self, field, message):
        with pytest.raises(ConfigError, match=message):
            self._valid(**{field: ''}).validate_required()

    def test_short_secret_rejected(self):
        with pytest.raises(ConfigError, match='at least 16 characters'):
            self._valid(jwt_secret='short').validate()

    def test_sixteen_character_secret_accepted(self):
        self._valid(jwt_secret='x' * 16).validate()

    @pytest.mark.parametrize("environment", ['development', 'production', 'test'])
    def test_valid_environments(self, environment):
        self._valid(environment=environment).validate()

    def test_invalid_environment(self):
        with pytest.raises(ConfigError, match='Invalid environment: staging'):
            self._valid(environment='staging').validate()

    def test_non_positive_expiration(self):
        with pytest.raises(ConfigError, match='expiration'):
            self._valid(jwt_expiration=0).validate()

    def test_loaded_settings_validate(self, clean_env):
        with scoped_env(ENVIRONMENT='test', JWT_SECRET=VALID_SECRET):
            Settings.load().validate()


# =============================================================================
# VALUE SEMANTICS
# =============================================================================

class TestSettingsValue:
    """Tests for defaults, cloning, equality and masking."""

    def test_set_defaults_fills_only_empty(self):
        settings = Settings(server_port='9999').set_defaults()
        assert settings.server_port == '9999'
        assert settings.environment == 'development'
        assert settings.log_level == 'info'

    def test_clone_is_independent(self, clean_env):
        original = Settings.load()
        copy = original.clone()
        assert copy == original
        copy.server_port = '1234'
        assert original.server_port == '8080'
        assert copy != original

    def test_str_masks_secrets(self):
        settings = Settings(jwt_secret=VALID_SECRET, smtp_password='hunter22',
                            mpesa_consumer_key='public-key')
        text = str(settings)
        assert VALID_SECRET not in text
        assert 'hunter22' not in text
        assert 'JWTSecret=***' in text
        assert 'MpesaConsumerKey=public-key' in text

    def test_is_production(self):
        assert Settings(environment='production').is_production()
        assert not Settings(environment='test').is_production()


# =============================================================================
# FLASK CONFIG
# =============================================================================

class TestFlaskConfig:
    """Tests for the config class map and production secret checks."""

    def test_config_names(self):
        for name in ('development', 'production', 'test', 'testing', 'default'):
            assert name in config

    def test_testing_config(self):
        assert config['testing'].TESTING is True
        assert config['testing'].DATABASE_URL == 'sqlite://'

    def test_production_rejects_default_secret(self):
        store = open_store()
        try:
            original = config['production'].JWT_SECRET
            config['production'].JWT_SECRET = DEFAULT_JWT_SECRET
            with pytest.raises(ValueError, match='secure JWT_SECRET'):
                create_app('production', store=store)
        finally:
            config['production'].JWT_SECRET = original
            store.close()

    def test_production_rejects_short_secret(self):
        store = open_store()
        try:
            original = config['production'].JWT_SECRET
            config['production'].JWT_SECRET = 'x' * 20
            with pytest.raises(ValueError, match='at least 32 characters'):
                create_app('production', store=store)
        finally:
            config['production'].JWT_SECRET = original
            store.close()

    def test_production_accepts_strong_secret(self):
        store = open_store()
        try:
            original = config['production'].JWT_SECRET
            config['production'].JWT_SECRET = 'y' * 40
            app = create_app('production', store=store)
            assert app.config['PREFERRED_URL_SCHEME'] == 'https'
        finally:
            config['production'].JWT_SECRET = original
            store.close()
