import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / '.env')


def env_bool(key, default=False):
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_int(key, default):
    value = os.getenv(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}")


SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'dev-only-change-me')

DEBUG = env_bool('DJANGO_DEBUG', True)

ALLOWED_HOSTS = [h.strip() for h in os.getenv('DJANGO_ALLOWED_HOSTS', '*').split(',') if h.strip()]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'apps.shop',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'petshop.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'petshop.wsgi.application'

# Database: SQLite for local dev. Row locks (select_for_update) only take
# effect on PostgreSQL/MySQL; stock decrements stay compare-and-swap either way.
if os.getenv('DB_ENGINE', 'sqlite') == 'postgresql':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv('DB_NAME', 'petshop'),
            'USER': os.getenv('DB_USER', ''),
            'PASSWORD': os.getenv('DB_PASSWORD', ''),
            'HOST': os.getenv('DB_HOST', 'localhost'),
            'PORT': os.getenv('DB_PORT', '5432'),
        },
    }
else:
    # IMMEDIATE takes the write lock at BEGIN, so concurrent writers queue on
    # the busy timeout instead of failing when a read upgrades to a write.
    # The test database is a file: a shared-cache in-memory database reports
    # lock conflicts immediately and never waits.
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
            'OPTIONS': {
                'transaction_mode': 'IMMEDIATE',
                'timeout': env_int('SQLITE_TIMEOUT', 20),
            },
            'TEST': {'NAME': BASE_DIR / 'test_db.sqlite3'},
        },
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Jakarta'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
        'rest_framework.authentication.BasicAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'EXCEPTION_HANDLER': 'apps.shop.exceptions.shop_exception_handler',
}

# E-mail: console backend for dev; the test runner swaps in locmem.
EMAIL_BACKEND = os.getenv('EMAIL_BACKEND', 'django.core.mail.backends.console.EmailBackend')
EMAIL_HOST = os.getenv('MAIL_HOST', 'localhost')
EMAIL_PORT = env_int('MAIL_PORT', 587)
EMAIL_HOST_USER = os.getenv('MAIL_USER', '')
EMAIL_HOST_PASSWORD = os.getenv('MAIL_PASS', '')
EMAIL_USE_TLS = env_bool('MAIL_USE_TLS', False)
DEFAULT_FROM_EMAIL = os.getenv('MAIL_FROM', 'Holycat <no-reply@holycat.local>')

# Payment gateway (Snap-style checkout sessions + HTTP notifications)
PAYMENT_GATEWAY = {
    'SERVER_KEY': os.getenv('MIDTRANS_SERVER_KEY', ''),
    'SNAP_URL': os.getenv('MIDTRANS_SNAP_URL', 'https://app.sandbox.midtrans.com/snap/v1/transactions'),
    'ORDER_PREFIX': os.getenv('PAYMENT_ORDER_PREFIX', 'HOLYCAT'),
    'TIMEOUT_SECONDS': env_int('MIDTRANS_TIMEOUT_SECONDS', 10),
}

# Post-commit notification outbox
OUTBOX_MAX_ATTEMPTS = env_int('OUTBOX_MAX_ATTEMPTS', 5)
OUTBOX_CLAIM_TIMEOUT = env_int('OUTBOX_CLAIM_TIMEOUT', 300)

# Retries for serialization failures / deadlocks on core mutations
TX_RETRY_ATTEMPTS = env_int('TX_RETRY_ATTEMPTS', 3)
TX_RETRY_BACKOFF = 0.05

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'apps.shop': {
            'handlers': ['console'],
            'level': os.getenv('SHOP_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
}

try:
    from .local_settings import *  # noqa: F401,F403
except ImportError:
    pass
