import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# DevConfig fallback; rejected outside dev and testing
DEV_SECRET = 'dev-secret-change-me-0123456789abcdef'


def _bool(name, default=False):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class BaseConfig:
    # ---------------------
    # Security & Logging
    # ---------------------
    SECRET_KEY = os.getenv('SECRET_KEY')
    JWT_SECRET = os.getenv('JWT_SECRET') or SECRET_KEY
    JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
    JWT_EXPIRES_IN = os.getenv('JWT_EXPIRES_IN', '24h')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

    # ---------------------
    # Persistence
    # ---------------------
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'sql')  # sql | memory
    DATABASE_URL = os.getenv('DATABASE_URL', f"sqlite:///{Path(BASE_DIR) / 'school.db'}")
    # Backfill value for term rows created before academic years were tracked
    DEFAULT_ACADEMIC_YEAR = os.getenv('DEFAULT_ACADEMIC_YEAR', '2024/2025')
    SEED_DEMO_DATA = _bool('SEED_DEMO_DATA', False)

    # ---------------------
    # Uploads
    # ---------------------
    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'uploads'))
    MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', 10 * 1024 * 1024))


class DevConfig(BaseConfig):
    DEBUG = True
    SECRET_KEY = os.getenv('SECRET_KEY', DEV_SECRET)
    JWT_SECRET = os.getenv('JWT_SECRET') or SECRET_KEY
    SEED_DEMO_DATA = _bool('SEED_DEMO_DATA', True)


class ProdConfig(BaseConfig):
    DEBUG = False
    TESTING = False


class TestConfig(BaseConfig):
    TESTING = True
    LOG_LEVEL = 'WARNING'
    LOG_DIR = ''
    SECRET_KEY = 'test-secret-for-signing-tokens-0123456789'
    JWT_SECRET = SECRET_KEY
    SEED_DEMO_DATA = False
    # keep tests isolated
    DATABASE_URL = f"sqlite:///{Path.cwd() / 'test_school.db'}"
    UPLOAD_FOLDER = str(Path.cwd() / 'test_uploads')


def config_for_env(env=None):
    env = (env or os.getenv('FLASK_ENV', 'production')).lower()
    if env == 'development':
        return DevConfig
    if env == 'testing':
        return TestConfig
    return ProdConfig


def check_secrets(config):
    """Refuse to sign tokens with a missing or placeholder key outside dev/testing."""
    if config.get('DEBUG') or config.get('TESTING'):
        return
    secret = config.get('JWT_SECRET')
    if not secret or secret == DEV_SECRET:
        raise RuntimeError('Set JWT_SECRET (or SECRET_KEY) before running in production')
