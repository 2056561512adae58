"""
Configuration module for the TourismIQ community API.
Centralizes all configuration settings with environment variable support.
"""
import os


class Config:
    """Base configuration class with settings common to all environments."""
    # Flask settings
    SECRET_KEY = os.environ.get("SESSION_SECRET") or "development-key-not-for-production"
    DEBUG = False
    TESTING = False

    # SQLAlchemy settings
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or "sqlite:///tourismiq.db"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_recycle": 300,            # Recycle connections every 5 minutes to prevent stale connections
        "pool_pre_ping": True,          # Test connections before use to detect broken connections
    }
    SQLALCHEMY_TRACK_MODIFICATIONS = False  # Disable unnecessary event tracking
    SQLALCHEMY_ECHO = False

    # Security settings
    SESSION_COOKIE_SECURE = True            # Only send cookies over HTTPS
    SESSION_COOKIE_HTTPONLY = True          # Prevent JavaScript access to session cookie
    SESSION_COOKIE_SAMESITE = 'Lax'         # Restrict cookie sending to same-site requests
    SESSION_COOKIE_NAME = 'tourismiq_session'
    PERMANENT_SESSION_LIFETIME = 3600       # 1 hour
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024    # JSON bodies only, no uploads

    # CSRF - JSON clients send the token in the X-CSRFToken header
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None
    WTF_CSRF_SSL_STRICT = False

    # Rate limiting settings
    RATELIMIT_DEFAULT = "{}/day;{}/hour;{}/minute".format(
        os.environ.get('RATE_LIMIT_PER_DAY', '50000'),
        os.environ.get('RATE_LIMIT_PER_HOUR', '10000'),
        os.environ.get('RATE_LIMIT_PER_MINUTE', '500'),
    )
    RATELIMIT_STORAGE_URI = "memory://"
    RATELIMIT_STRATEGY = "fixed-window"
    RATELIMIT_SWALLOW_ERRORS = True

    # Hosted pub/sub (Pusher Channels). Relay is disabled when unset.
    PUSHER_APP_ID = os.environ.get("PUSHER_APP_ID")
    PUSHER_KEY = os.environ.get("PUSHER_KEY")
    PUSHER_SECRET = os.environ.get("PUSHER_SECRET")
    PUSHER_CLUSTER = os.environ.get("PUSHER_CLUSTER", "mt1")

    # Application settings
    POSTS_PER_PAGE = int(os.environ.get('POSTS_PER_PAGE', 5))
    MAX_POSTS_PER_PAGE = 50
    MESSAGES_PER_CONVERSATION = 50
    NOTIFICATIONS_DEFAULT_LIMIT = 50
    NOTIFICATIONS_MAX_LIMIT = 100

    # Password requirements
    PASSWORD_MIN_LENGTH = 6
    NAME_MIN_LENGTH = 2


class DevelopmentConfig(Config):
    """Configuration for development environment."""
    DEBUG = True
    SESSION_COOKIE_SECURE = False  # Allow non-HTTPS for development

    SQLALCHEMY_DATABASE_URI = (
        os.environ.get("DEV_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or "sqlite:///tourismiq-dev.db"
    )


class TestingConfig(Config):
    """Configuration for testing environment."""
    TESTING = True
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    WTF_CSRF_ENABLED = False  # Disable CSRF for testing
    RATELIMIT_ENABLED = False

    # Use in-memory database for testing
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Signing works offline; triggers are replaced by a recorder in tests
    PUSHER_APP_ID = "123456"
    PUSHER_KEY = "test-key"
    PUSHER_SECRET = "test-secret"
    PUSHER_CLUSTER = "mt1"


class ProductionConfig(Config):
    """Configuration for production environment."""
    SESSION_COOKIE_SECURE = True

    SQLALCHEMY_DATABASE_URI = os.environ.get("PROD_DATABASE_URL") or os.environ.get("DATABASE_URL")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 10,
        "max_overflow": 5,
        "pool_recycle": 300,
        "pool_pre_ping": True,
        "pool_timeout": 30,
        "connect_args": {
            "connect_timeout": 10,
            "application_name": "tourismiq_api"
        }
    }

    # Ensure these are set in production
    def __init__(self):
        if not os.environ.get("SESSION_SECRET"):
            raise ValueError("SESSION_SECRET must be set in production")
        if not (os.environ.get("PROD_DATABASE_URL") or os.environ.get("DATABASE_URL")):
            raise ValueError("PROD_DATABASE_URL or DATABASE_URL must be set in production")


# Create a mapping of environment names to configuration classes
config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig
}


def get_active_config():
    """Return the configuration object for FLASK_ENV (development by default)."""
    config_class = config_by_name.get(os.environ.get('FLASK_ENV', 'development'), DevelopmentConfig)
    return config_class()
