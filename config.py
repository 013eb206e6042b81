import os

class Config:
    SECRET_KEY = os.environ.get('AGENDA_SECRET_KEY') or 'dev_key_change_in_production'

    # Database - fix for Render's postgres:// URL (SQLAlchemy requires postgresql://)
    basedir = os.path.abspath(os.path.dirname(__file__))
    _db_url = os.environ.get('DATABASE_URL')
    if _db_url and _db_url.startswith('postgres://'):
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)
    SQLALCHEMY_DATABASE_URI = _db_url or 'sqlite:///' + os.path.join(basedir, 'agenda.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ensure generated links use HTTPS
    PREFERRED_URL_SCHEME = 'https'

    # Admin actions (generate/delete year, live controller commands).
    # Empty means open, same as the cron secret convention.
    ADMIN_TOKEN = os.environ.get('ADMIN_TOKEN', '')

    # Church calendar
    SERVICE_UTC_OFFSET_HOURS = int(os.environ.get('SERVICE_UTC_OFFSET_HOURS', '-4'))  # Santo Domingo
    SERVICE_LOCATION = os.environ.get('SERVICE_LOCATION', 'Templo Principal')
    QUARANTINE_CUTOFF = os.environ.get('QUARANTINE_CUTOFF', '02-21')  # MM-DD
    GENERATE_YEAR_SPAN = int(os.environ.get('GENERATE_YEAR_SPAN', '5'))

    # Live event timer
    LIVE_SYNC_MIN_INTERVAL = float(os.environ.get('LIVE_SYNC_MIN_INTERVAL', '2'))  # seconds
    LIVE_SYNC_EVERY_TICKS = int(os.environ.get('LIVE_SYNC_EVERY_TICKS', '5'))
    LIVE_RECOMMENDATION_THRESHOLD = int(os.environ.get('LIVE_RECOMMENDATION_THRESHOLD', '60'))
    LIVE_TICKER_ENABLED = os.environ.get('LIVE_TICKER_ENABLED', 'True').lower() == 'true'

    # Telegram settings
    TELEGRAM_BOT_TOKEN = os.environ.get('TELEGRAM_BOT_TOKEN', '')
    TELEGRAM_CHAT_ID = os.environ.get('TELEGRAM_CHAT_ID', '')


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    ADMIN_TOKEN = ''
    LIVE_TICKER_ENABLED = False
    TELEGRAM_BOT_TOKEN = ''
    TELEGRAM_CHAT_ID = ''
