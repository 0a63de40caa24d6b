import os

from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))


def _database_uri():
    """Build the preference store URI from the DB_* variables, SQLite otherwise"""
    host = os.environ.get('DB_HOST')
    if not host:
        return os.environ.get('DATABASE_URL') or \
            'sqlite:///' + os.path.join(basedir, 'dashboard.db')

    return 'mysql+pymysql://{user}:{password}@{host}:{port}/{name}?charset=utf8mb4'.format(
        user=os.environ.get('DB_USER', 'root'),
        password=os.environ.get('DB_PASSWORD', ''),
        host=host,
        port=int(os.environ.get('DB_PORT', '3306')),
        name=os.environ.get('DB_NAME', 'svenn'),
    )


class Config:
    # Flask configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key'

    # Backend API
    API_BASE_URL = os.environ.get('API_BASE_URL') or 'http://localhost:8000'

    # Identity provider / session store (consumed by the auth layer)
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET')
    JWT_SECRET = os.environ.get('JWT_SECRET')

    # Preference database configuration
    SQLALCHEMY_DATABASE_URI = _database_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Execution polling
    POLL_INTERVAL_SECONDS = float(os.environ.get('POLL_INTERVAL_SECONDS', 3))
    POLL_MAX_FAILURES = int(os.environ.get('POLL_MAX_FAILURES', 5))
    POLL_MAX_BACKOFF_SECONDS = float(os.environ.get('POLL_MAX_BACKOFF_SECONDS', 60))
    POLL_MAX_DURATION_SECONDS = float(os.environ.get('POLL_MAX_DURATION_SECONDS', 3600))

    # Product search
    SEARCH_DEBOUNCE_SECONDS = float(os.environ.get('SEARCH_DEBOUNCE_SECONDS', 0.5))
    SEARCH_MIN_LENGTH = 2
    SEARCH_PAGE_SIZE = 20

    SCHEDULER_AUTOSTART = True


class TestConfig(Config):
    TESTING = True
    API_BASE_URL = 'http://backend.test'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SCHEDULER_AUTOSTART = False
