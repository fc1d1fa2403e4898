"""
Application Configuration
Loads environment variables and provides configuration classes for different environments
"""

import copy
import os
from datetime import timedelta
from dotenv import load_dotenv

# Load environment variables from .env file
basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))

VALID_ENVIRONMENTS = ('development', 'production', 'test')
DEFAULT_JWT_SECRET = 'your-super-secret-jwt-key-change-in-production'
MIN_JWT_SECRET_LENGTH = 16


class ConfigError(ValueError):
    """Raised when settings fail validation"""


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return value.lower() in ('true', '1', 'yes', 'on')


class Settings:
    """
    Runtime settings read from the process environment.

    Unlike the Flask config classes below, a Settings instance is a value:
    it can be validated, cloned and re-read without touching the app.
    """

    # Attributes masked by __str__
    SECRET_FIELDS = ('jwt_secret', 'mpesa_consumer_secret', 'mpesa_passkey',
                     'google_client_secret', 'smtp_password', 'redis_password')

    def __init__(self, **values):
        self.environment = ''
        self.server_port = ''
        self.database_url = ''
        self.jwt_secret = ''
        self.jwt_expiration = 0

        self.mpesa_consumer_key = ''
        self.mpesa_consumer_secret = ''
        self.mpesa_passkey = ''
        self.mpesa_shortcode = ''

        self.google_client_id = ''
        self.google_client_secret = ''
        self.google_redirect_url = ''

        self.smtp_host = ''
        self.smtp_port = ''
        self.smtp_username = ''
        self.smtp_password = ''

        self.redis_url = ''
        self.redis_password = ''

        self.max_file_size = 0
        self.upload_path = ''

        self.rate_limit_requests = 0
        self.rate_limit_window = 0

        self.log_level = ''
        self.log_file = ''

        self.enable_metrics = False
        self.metrics_port = ''
        self.enable_tracing = False

        self.backup_enabled = False
        self.backup_interval = ''
        self.backup_path = ''

        for key, value in values.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @classmethod
    def load(cls):
        """Build settings from the environment, falling back to defaults"""
        settings = cls()
        settings.reload()
        return settings

    def reload(self):
        """Re-read every value from the environment"""
        env = os.environ.get
        self.environment = env('ENVIRONMENT', 'development')
        self.server_port = env('PORT', '8080')
        self.database_url = env('DATABASE_URL', 'vaultke.db')
        self.jwt_secret = env('JWT_SECRET', DEFAULT_JWT_SECRET)
        self.jwt_expiration = _env_int('JWT_EXPIRATION', 86400)

        self.mpesa_consumer_key = env('MPESA_CONSUMER_KEY', '')
        self.mpesa_consumer_secret = env('MPESA_CONSUMER_SECRET', '')
        self.mpesa_passkey = env('MPESA_PASSKEY', '')
        self.mpesa_shortcode = env('MPESA_SHORTCODE', '')

        self.google_client_id = env('GOOGLE_CLIENT_ID', '')
        self.google_client_secret = env('GOOGLE_CLIENT_SECRET', '')
        self.google_redirect_url = env('GOOGLE_REDIRECT_URL', '')

        self.smtp_host = env('SMTP_HOST', 'smtp.gmail.com')
        self.smtp_port = env('SMTP_PORT', '587')
        self.smtp_username = env('SMTP_USERNAME', '')
        self.smtp_password = env('SMTP_PASSWORD', '')

        self.redis_url = env('REDIS_URL', 'redis://localhost:6379')
        self.redis_password = env('REDIS_PASSWORD', '')

        self.max_file_size = _env_int('MAX_FILE_SIZE', 5 * 1024 * 1024)  # 5MB
        self.upload_path = env('UPLOAD_PATH', './uploads')

        self.rate_limit_requests = _env_int('RATE_LIMIT_REQUESTS', 100)
        self.rate_limit_window = _env_int('RATE_LIMIT_WINDOW', 60)

        self.log_level = env('LOG_LEVEL', 'info')
        self.log_file = env('LOG_FILE', '')

        self.enable_metrics = _env_bool('ENABLE_METRICS')
        self.metrics_port = env('METRICS_PORT', '9090')
        self.enable_tracing = _env_bool('ENABLE_TRACING')

        self.backup_enabled = _env_bool('BACKUP_ENABLED')
        self.backup_interval = env('BACKUP_INTERVAL', '24h')
        self.backup_path = env('BACKUP_PATH', './backups')
        return self

    def set_defaults(self):
        """Fill empty fields with their defaults, leaving set values alone"""
        defaults = {
            'environment': 'development',
            'server_port': '8080',
            'database_url': 'vaultke.db',
            'jwt_secret': DEFAULT_JWT_SECRET,
            'jwt_expiration': 86400,
            'smtp_host': 'smtp.gmail.com',
            'smtp_port': '587',
            'redis_url': 'redis://localhost:6379',
            'max_file_size': 5 * 1024 * 1024,
            'upload_path': './uploads',
            'rate_limit_requests': 100,
            'rate_limit_window': 60,
            'log_level': 'info',
            'metrics_port': '9090',
            'backup_interval': '24h',
            'backup_path': './backups',
        }
        for key, value in defaults.items():
            if not getattr(self, key):
                setattr(self, key, value)
        return self

    def validate_required(self):
        """Check that the fields without usable defaults are present"""
        if not self.jwt_secret:
            raise ConfigError("JWT secret is required")
        if not self.database_url:
            raise ConfigError("Database URL is required")
        if not self.environment:
            raise ConfigError("Environment is required")

    def validate(self):
        """Full validation: required fields, secret strength and environment"""
        self.validate_required()
        if len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH:
            raise ConfigError(
                f"JWT secret must be at least {MIN_JWT_SECRET_LENGTH} characters"
            )
        if self.environment not in VALID_ENVIRONMENTS:
            raise ConfigError(
                f"Invalid environment: {self.environment} "
                f"(expected one of {', '.join(VALID_ENVIRONMENTS)})"
            )
        if self.jwt_expiration <= 0:
            raise ConfigError("JWT expiration must be positive")

    def clone(self):
        """Independent copy; mutating it never affects the original"""
        return copy.deepcopy(self)

    def is_production(self):
        return self.environment == 'production'

    def __eq__(self, other):
        if not isinstance(other, Settings):
            return NotImplemented
        return vars(self) == vars(other)

    def __str__(self):
        parts = []
        for key, value in vars(self).items():
            if key in self.SECRET_FIELDS and value:
                value = '***'
            label = ''.join(word.capitalize() for word in key.split('_'))
            label = label.replace('Url', 'URL').replace('Jwt', 'JWT').replace('Smtp', 'SMTP')
            parts.append(f"{label}={value}")
        return f"Settings({', '.join(parts)})"

    __repr__ = __str__


class Config:
    """Base configuration class"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database
    DATABASE_URL = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'vaultke.db')

    # Authentication
    JWT_SECRET = os.environ.get('JWT_SECRET') or DEFAULT_JWT_SECRET
    JWT_EXPIRATION = timedelta(seconds=int(os.environ.get('JWT_EXPIRATION', 86400)))
    REFRESH_TOKEN_EXPIRATION = timedelta(days=int(os.environ.get('REFRESH_TOKEN_DAYS', 30)))

    # File Upload
    MAX_FILE_SIZE = int(os.environ.get('MAX_FILE_SIZE', 5 * 1024 * 1024))  # 5MB
    UPLOAD_PATH = os.environ.get('UPLOAD_PATH', os.path.join(basedir, 'uploads'))
    ALLOWED_EXTENSIONS = set(os.environ.get('ALLOWED_EXTENSIONS', 'png,jpg,jpeg,gif,webp').split(','))

    # Pagination
    ITEMS_PER_PAGE = int(os.environ.get('ITEMS_PER_PAGE', 20))
    MAX_ITEMS_PER_PAGE = 100

    # Wallets
    CURRENCY = 'KES'
    MAX_TRANSFER_AMOUNT = 1000000

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    LOG_FILE = os.environ.get('LOG_FILE', '')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    PREFERRED_URL_SCHEME = 'https'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DATABASE_URL = 'sqlite://'
    JWT_SECRET = 'test-jwt-secret-key-12345678901234567890'
    ITEMS_PER_PAGE = 20


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'test': TestingConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
