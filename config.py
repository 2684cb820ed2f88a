"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Bearer tokens issued at login
    TOKEN_TTL_SECONDS = int(os.getenv('TOKEN_TTL_SECONDS', '86400'))  # 24 hours
    TOKEN_ALGORITHM = 'HS256'

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'backoffice')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'backoffice')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'backoffice')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Inventory health thresholds (days until expiry)
    EXPIRY_URGENT_DAYS = int(os.getenv('EXPIRY_URGENT_DAYS', '3'))
    EXPIRY_WARNING_DAYS = int(os.getenv('EXPIRY_WARNING_DAYS', '7'))

    # Invoicing policy
    DEFAULT_TAX_RATE = int(os.getenv('DEFAULT_TAX_RATE', '8'))
    END_OF_MONTH_OFFSET_MONTHS = int(os.getenv('END_OF_MONTH_OFFSET_MONTHS', '1'))
    DEFAULT_PAYMENT_DAYS = int(os.getenv('DEFAULT_PAYMENT_DAYS', '30'))
    PAYMENT_TERMS_DAYS = {
        'immediate': 0,
        '7days': 7,
        '15days': 15,
        '30days': 30,
        '60days': 60,
    }

    # Google Sheets document export (service account)
    GOOGLE_SHEETS_CLIENT_EMAIL = os.getenv('GOOGLE_SHEETS_CLIENT_EMAIL')
    GOOGLE_SHEETS_PRIVATE_KEY = (os.getenv('GOOGLE_SHEETS_PRIVATE_KEY') or '').replace('\\n', '\n')
    GOOGLE_SHEETS_DELIVERY_TEMPLATE_ID = os.getenv('GOOGLE_SHEETS_DELIVERY_TEMPLATE_ID')
    GOOGLE_SHEETS_INVOICE_TEMPLATE_ID = os.getenv('GOOGLE_SHEETS_INVOICE_TEMPLATE_ID')
    SHEETS_MAX_RETRIES = int(os.getenv('SHEETS_MAX_RETRIES', '3'))
    SHEETS_BACKOFF_SECONDS = float(os.getenv('SHEETS_BACKOFF_SECONDS', '1.0'))
    SHEETS_TIMEOUT_SECONDS = int(os.getenv('SHEETS_TIMEOUT_SECONDS', '10'))

    # Redis Cache Configuration
    # Shared cache layer for report rollups
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_REPORTS_TTL = int(os.getenv('CACHE_REPORTS_TTL', '120'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'backoffice')
