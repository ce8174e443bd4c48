import os
import secrets
from datetime import timedelta

basedir = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Signing key for identity tokens
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(16)

    # Configure SQLAlchemy
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'nourishlink.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity tokens are accepted for this many seconds
    TOKEN_MAX_AGE = int(float(os.environ.get('TOKEN_MAX_AGE', timedelta(days=1).total_seconds())))
    WTF_CSRF_ENABLED = False

    # Optional bootstrap admin, created by init_db
    ADMIN_UID = os.environ.get('ADMIN_UID')
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@example.com')

    # Google geocoding / places
    GEOCODING_API_KEY = os.environ.get('GEOCODING_API_KEY')
    GEOCODING_TIMEOUT = float(os.environ.get('GEOCODING_TIMEOUT', 10))

    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')

    # Debug and development settings
    DEBUG = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    GEOCODING_API_KEY = 'test-key'
    ADMIN_UID = None
