import os
from dotenv import load_dotenv

# Muat variabel dari file .env (untuk di laptop)
load_dotenv()


def _env_bool(name, default='False'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    # 1. SECRET KEY
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'kunci-rahasia-default-jika-lupa'

    # 2. DATABASE
    db_uri = os.environ.get('DATABASE_URL')

    # Render memberikan URL 'postgres://', SQLAlchemy butuh 'postgresql://'
    if db_uri and db_uri.startswith("postgres://"):
        db_uri = db_uri.replace("postgres://", "postgresql://", 1)

    SQLALCHEMY_DATABASE_URI = db_uri or 'sqlite:///pondok_lokal.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # 3. KEAMANAN API
    WTF_CSRF_ENABLED = _env_bool('WTF_CSRF_ENABLED', 'True')
    WTF_CSRF_TIME_LIMIT = None
    CRON_SECRET = os.environ.get('CRON_SECRET')

    # 4. PAYMENT GATEWAY (MIDTRANS)
    MIDTRANS_SERVER_KEY = os.environ.get('MIDTRANS_SERVER_KEY', '')
    MIDTRANS_CLIENT_KEY = os.environ.get('MIDTRANS_CLIENT_KEY', '')
    MIDTRANS_IS_PRODUCTION = _env_bool('MIDTRANS_IS_PRODUCTION')
    MIDTRANS_NOTIFICATION_MAX_AGE_HOURS = int(os.environ.get('MIDTRANS_NOTIFICATION_MAX_AGE_HOURS', 24))
    WEBHOOK_RATE_LIMIT = int(os.environ.get('WEBHOOK_RATE_LIMIT', 100))
    WEBHOOK_RATE_WINDOW = int(os.environ.get('WEBHOOK_RATE_WINDOW', 60))

    # 5. WHATSAPP & LINE
    WHATSAPP_API_URL = os.environ.get('WHATSAPP_API_URL', 'https://graph.facebook.com/v18.0')
    WHATSAPP_TOKEN = os.environ.get('WHATSAPP_TOKEN', '')
    WHATSAPP_PHONE_NUMBER_ID = os.environ.get('WHATSAPP_PHONE_NUMBER_ID', '')
    WHATSAPP_VERIFY_TOKEN = os.environ.get('WHATSAPP_VERIFY_TOKEN', '')
    LINE_CHANNEL_SECRET = os.environ.get('LINE_CHANNEL_SECRET', '')
    LINE_CHANNEL_ACCESS_TOKEN = os.environ.get('LINE_CHANNEL_ACCESS_TOKEN', '')

    # 6. LAIN-LAIN
    ERROR_LOG_CAPACITY = int(os.environ.get('ERROR_LOG_CAPACITY', 1000))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100
    DEFAULT_PASSWORD = os.environ.get('DEFAULT_PASSWORD', '123456')


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    SECRET_KEY = 'test-secret'
    CRON_SECRET = 'test-cron-secret'
    MIDTRANS_SERVER_KEY = 'SB-Mid-server-test'
    WHATSAPP_TOKEN = 'wa-test-token'
    WHATSAPP_PHONE_NUMBER_ID = '1234567890'
    WHATSAPP_VERIFY_TOKEN = 'wa-verify'
    LINE_CHANNEL_SECRET = 'line-secret'
    LINE_CHANNEL_ACCESS_TOKEN = 'line-token'
    ERROR_LOG_CAPACITY = 5
    LOG_LEVEL = 'WARNING'
