"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _csv(value):
    return [part.strip() for part in (value or '').split(',') if part.strip()]


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Public base URL (checkout return URLs, contact fallback link)
    APP_BASE_URL = os.getenv('APP_BASE_URL', 'http://localhost:3000').rstrip('/')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'kockys')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'kockys')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'kockys')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Business Information (for quote documents and emails)
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', "Kocky's Bar & Grill")
    BUSINESS_TAGLINE = os.getenv('BUSINESS_TAGLINE', 'BAR & GRILL')
    BUSINESS_ADDRESS = os.getenv('BUSINESS_ADDRESS', '123 Main Street, City, State 12345')
    BUSINESS_PHONE = os.getenv('BUSINESS_PHONE', '(559) 217-5719')
    BUSINESS_EMAIL = os.getenv('BUSINESS_EMAIL', 'info@kockysbar.com')
    COMPANY_LOGO_PATH = os.getenv('COMPANY_LOGO_PATH')

    # Quotes
    QUOTE_VALID_DAYS = int(os.getenv('QUOTE_VALID_DAYS', '30'))
    QUOTE_DEFAULT_TERMS = os.getenv(
        'QUOTE_DEFAULT_TERMS',
        'Payment due upon acceptance. All services subject to availability.'
    )
    QUOTE_CC_ADDRESSES = _csv(os.getenv('QUOTE_CC_ADDRESSES', os.getenv('BUSINESS_EMAIL', '')))

    # Payments (Stripe Checkout or Mercado Pago Checkout Pro)
    PAYMENT_PROVIDER = os.getenv('PAYMENT_PROVIDER', 'stripe').lower()
    PAYMENT_CURRENCY = os.getenv('PAYMENT_CURRENCY', 'usd')
    STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.getenv('STRIPE_WEBHOOK_SECRET')
    MP_ACCESS_TOKEN = os.getenv('MP_ACCESS_TOKEN')
    MP_WEBHOOK_SECRET = os.getenv('MP_WEBHOOK_SECRET')
    CHECKOUT_DEPOSIT_PCT = os.getenv('CHECKOUT_DEPOSIT_PCT', '0.20')
    CHECKOUT_MINIMUM_DEPOSIT_CENTS = int(os.getenv('CHECKOUT_MINIMUM_DEPOSIT_CENTS', '5000'))
    PAYMENT_RETRY_ATTEMPTS = int(os.getenv('PAYMENT_RETRY_ATTEMPTS', '2'))
    PAYMENT_RETRY_BASE_DELAY = float(os.getenv('PAYMENT_RETRY_BASE_DELAY', '0.2'))

    # Email - Office 365 / Microsoft Graph (first in the provider chain)
    O365_CLIENT_ID = os.getenv('O365_CLIENT_ID')
    O365_CLIENT_SECRET = os.getenv('O365_CLIENT_SECRET')
    O365_TENANT_ID = os.getenv('O365_TENANT_ID')
    O365_FROM_EMAIL = os.getenv('O365_FROM_EMAIL', 'info@kockys.com')
    O365_FROM_NAME = os.getenv('O365_FROM_NAME', "Kocky's Bar & Grill")

    # Email - SendGrid transactional API (second)
    SENDGRID_API_KEY = os.getenv('SENDGRID_API_KEY')
    SENDGRID_FROM_EMAIL = os.getenv('SENDGRID_FROM_EMAIL', 'noreply@kockysbar.com')
    SENDGRID_FROM_NAME = os.getenv('SENDGRID_FROM_NAME', "Kocky's Bar & Grill")

    # Email - authenticated SMTP relay via Flask-Mail (third)
    MAIL_SERVER = os.getenv('SMTP_HOST', '')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = os.getenv('SMTP_SECURE', 'false').lower() != 'true'
    MAIL_USE_SSL = os.getenv('SMTP_SECURE', 'false').lower() == 'true'
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASS') or os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = False
    EMAIL_TIMEOUT_SECONDS = int(os.getenv('EMAIL_TIMEOUT_SECONDS', '10'))

    # Object Storage for rendered quote PDFs (optional)
    DOCUMENT_STORAGE_ENABLED = os.getenv('DOCUMENT_STORAGE_ENABLED', 'false').lower() == 'true'
    S3_ENDPOINT = os.getenv('S3_ENDPOINT', 'http://minio:9000')
    S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', 'minioadmin')
    S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', 'minioadmin')
    S3_BUCKET = os.getenv('S3_BUCKET', 'quotes')
    S3_REGION = os.getenv('S3_REGION', 'us-east-1')
    S3_PUBLIC_URL = os.getenv('S3_PUBLIC_URL', 'http://localhost:9000')


class TestConfig(Config):
    """Configuration used by the test suite: in-memory DB, no live providers."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ECHO = False
    APP_BASE_URL = 'https://staging.kockys.test'
    COMPANY_LOGO_PATH = None
    QUOTE_CC_ADDRESSES = ['info@kockys.test']
    PAYMENT_PROVIDER = ''
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = None
    MP_ACCESS_TOKEN = None
    MP_WEBHOOK_SECRET = None
    PAYMENT_RETRY_ATTEMPTS = 1
    PAYMENT_RETRY_BASE_DELAY = 0.0
    O365_CLIENT_ID = None
    O365_CLIENT_SECRET = None
    O365_TENANT_ID = None
    SENDGRID_API_KEY = None
    MAIL_SERVER = ''
    MAIL_USERNAME = ''
    MAIL_PASSWORD = ''
    MAIL_SUPPRESS_SEND = True
    DOCUMENT_STORAGE_ENABLED = False
