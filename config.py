import os
import secrets
import warnings

from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


class Config:
    # Generate a secure key if not provided (with a warning)
    _secret_key = os.environ.get("SECRET_KEY")

    if not _secret_key:
        _secret_key = secrets.token_urlsafe(32)
        warnings.warn(
            "SECRET_KEY not set! Using auto-generated key. "
            "This will cause sessions to reset on app restart. "
            "Run 'python3 generate_secrets.py' to generate secure keys.",
            UserWarning,
        )

    SECRET_KEY = _secret_key

    # Shared secret for the admin settlement surface (X-Admin-Token header)
    ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "")

    # Database configuration - built from environment at initialization
    def __init__(self):
        """Initialize configuration with dynamic database URI"""
        self.SQLALCHEMY_DATABASE_URI = self._build_database_uri()

    def _build_database_uri(self):
        """Build database URI from environment variables"""
        database_url = os.environ.get("DATABASE_URL")

        if database_url:
            return database_url

        db_type = os.environ.get("DB_TYPE", "sqlite")

        if db_type.lower() == "postgresql":
            db_host = os.environ.get("DB_HOST") or "localhost"
            db_port = os.environ.get("DB_PORT") or "5432"
            db_name = os.environ.get("DB_NAME") or "streakr_db"
            db_user = os.environ.get("DB_USER") or "streakr"
            db_password = os.environ.get("DB_PASSWORD") or "streakr_password"

            return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
        else:
            # Default to SQLite for development
            return "sqlite:///" + os.path.join(basedir, "streakr.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Competition settings
    CURRENT_SEASON = int(os.environ.get("CURRENT_SEASON") or 2026)

    # Settlement fan-out
    SETTLEMENT_MAX_WORKERS = int(os.environ.get("SETTLEMENT_MAX_WORKERS") or 8)
    SETTLEMENT_MAX_RETRIES = int(os.environ.get("SETTLEMENT_MAX_RETRIES") or 5)
    SETTLEMENT_STRICT_LOOKUP = (
        os.environ.get("SETTLEMENT_STRICT_LOOKUP", "False").lower() == "true"
    )

    # Leaderboards
    LEADERBOARD_LIMIT = int(os.environ.get("LEADERBOARD_LIMIT") or 50)
    LEADERBOARD_CACHE_TIMEOUT = int(os.environ.get("LEADERBOARD_CACHE_TIMEOUT") or 60)

    # Live score API configuration
    SQUIGGLE_BASE_URL = (
        os.environ.get("SQUIGGLE_BASE_URL") or "https://api.squiggle.com.au/"
    )
    SQUIGGLE_CACHE_SECONDS = int(os.environ.get("SQUIGGLE_CACHE_SECONDS") or 30)
    SQUIGGLE_USER_AGENT = os.environ.get(
        "SQUIGGLE_USER_AGENT", "Streakr/1.0 (+https://streakr.app)"
    )

    # Caching configuration
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
    CACHE_DEFAULT_TIMEOUT = int(
        os.environ.get("CACHE_DEFAULT_TIMEOUT", 300)
    )  # 5 minutes
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = "streakr:"

    # Scheduler configuration
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "True").lower() == "true"
    LOCK_SYNC_INTERVAL_SECONDS = int(os.environ.get("LOCK_SYNC_INTERVAL_SECONDS") or 120)

    # Socket.IO
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "eventlet")
    SOCKETIO_CORS_ORIGINS = os.environ.get("SOCKETIO_CORS_ORIGINS", "*")

    # Logging configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = os.environ.get("LOG_TO_CONSOLE", "True").lower() == "true"
    LOG_TO_FILE = os.environ.get("LOG_TO_FILE", "True").lower() == "true"
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    SLOW_FUNCTION_THRESHOLD = float(os.environ.get("SLOW_FUNCTION_THRESHOLD", "1.0"))
    SLOW_REQUEST_THRESHOLD = float(os.environ.get("SLOW_REQUEST_THRESHOLD", "2.0"))

    # Fixture times and display strings use this timezone; storage is UTC
    TIMEZONE = os.environ.get("TIMEZONE", "Australia/Melbourne")

    # Environment detection
    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration with helpful defaults"""

    DEBUG = True
    SQLALCHEMY_ECHO = os.environ.get("SQLALCHEMY_ECHO", "False").lower() == "true"

    def __init__(self):
        super().__init__()
        # Fallback to SimpleCache if Redis isn't available in development
        try:
            import redis

            redis_client = redis.Redis.from_url(self.CACHE_REDIS_URL)
            redis_client.ping()
        except (ImportError, redis.exceptions.ConnectionError):
            self.CACHE_TYPE = "SimpleCache"
            warnings.warn(
                "Redis not available, falling back to SimpleCache for development.",
                UserWarning,
            )


class ProductionConfig(Config):
    """Production configuration with security focus"""

    DEBUG = False

    # In production, require explicit environment variables
    def __init__(self):
        super().__init__()  # Call parent __init__ to build database URI

        if not os.environ.get("SECRET_KEY"):
            warnings.warn(
                "PRODUCTION WARNING: SECRET_KEY not explicitly set! "
                "Using auto-generated key is not recommended for production.",
                UserWarning,
            )
        if not os.environ.get("ADMIN_TOKEN"):
            warnings.warn(
                "PRODUCTION WARNING: ADMIN_TOKEN not set! "
                "Admin endpoints will only accept logged-in admin users.",
                UserWarning,
            )


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    DEBUG = False
    SECRET_KEY = "testing-secret"
    ADMIN_TOKEN = "test-admin-token"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CACHE_TYPE = "SimpleCache"
    SCHEDULER_ENABLED = False
    SOCKETIO_ASYNC_MODE = "threading"
    RATELIMIT_ENABLED = False
    LOG_TO_FILE = False
    LOG_LEVEL = "WARNING"
    SETTLEMENT_MAX_WORKERS = 1
    SETTLEMENT_MAX_RETRIES = 3

    def __init__(self):
        # Keep the in-memory URI instead of building one from the environment
        pass


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
