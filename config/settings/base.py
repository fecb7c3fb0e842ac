"""Base settings for all environments.

This configuration file defines the common settings used by the settlement
engine in every environment. It follows Django's standard configuration
structure and integrates Django Rest Framework, Celery and structlog.
Environment‑specific settings are overridden in `dev.py`, `prod.py` and
`test.py`.
"""

import os
from datetime import timedelta
from pathlib import Path

import structlog

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'replace-me-in-production')

# Encryption key for payout destinations (bank accounts, wallet ids)
# Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY', 'dev-encryption-key-replace-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = False

ALLOWED_HOSTS: list[str] = os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',')

# Application definition

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    # Third‑party apps
    'rest_framework',
    'django_filters',
    'drf_spectacular',
    # Domain apps
    'apps.bookings',
    'apps.finances',
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

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
# https://docs.djangoproject.com/en/5.1/ref/settings/#databases

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', BASE_DIR / 'db.sqlite3'),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
]

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'Asia/Dubai'

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Django Rest Framework
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAdminUser',
    ],
    'DEFAULT_FILTER_BACKENDS': [
        'django_filters.rest_framework.DjangoFilterBackend',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'COERCE_DECIMAL_TO_STRING': True,
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'EXCEPTION_HANDLER': 'shared.infrastructure.exception_handler.settlement_exception_handler',
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=60),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
}

# DRF Spectacular (API docs)
SPECTACULAR_SETTINGS = {
    'TITLE': 'Rental Settlement API',
    'DESCRIPTION': 'Booking lifecycle, ledger and payout operations',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
}

# Celery configuration (Broker and Result backend handled in environment)
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_ACKS_LATE = True

# Settlement engine configuration. The engine only reads these values;
# they are owned by the platform's configuration store.
FINANCE = {
    'DEFAULT_CURRENCY': os.environ.get('FINANCE_DEFAULT_CURRENCY', 'AED'),
    'COMMISSION': {
        'PLATFORM_PCT': os.environ.get('FINANCE_PLATFORM_PCT', '10'),
        'HOST_PCT': os.environ.get('FINANCE_HOST_PCT', '85'),
        'AGENT_PCT': os.environ.get('FINANCE_AGENT_PCT', '5'),
        'TOLERANCE_PCT': os.environ.get('FINANCE_RATE_TOLERANCE_PCT', '0.01'),
    },
    'MINIMUM_PAYOUT': os.environ.get('FINANCE_MINIMUM_PAYOUT', '100'),
    'NON_REFUNDABLE_FEE': os.environ.get('FINANCE_NON_REFUNDABLE_FEE', '0'),
    'CANCELLATION_POLICIES': {
        'FULL': {
            'WINDOW_HOURS': 0,
            'REFUND_BEFORE_WINDOW': '1',
            'REFUND_WITHIN_WINDOW': '1',
            'FEE_REFUNDABLE': True,
        },
        'FLEXIBLE': {
            'WINDOW_HOURS': 6,
            'REFUND_BEFORE_WINDOW': '1',
            'REFUND_WITHIN_WINDOW': '1',
            'FEE_REFUNDABLE': False,
        },
        'STRICT': {
            'WINDOW_HOURS': 24,
            'REFUND_BEFORE_WINDOW': '0.5',
            'REFUND_WITHIN_WINDOW': '0',
            'FEE_REFUNDABLE': False,
        },
    },
    'GATEWAY_TIMEOUT_SECONDS': int(os.environ.get('FINANCE_GATEWAY_TIMEOUT', 30)),
    'RECONCILE_AFTER_MINUTES': int(os.environ.get('FINANCE_RECONCILE_AFTER_MINUTES', 15)),
    'PAYMENT_GATEWAY': os.environ.get(
        'FINANCE_PAYMENT_GATEWAY', 'apps.finances.gateways.HttpPaymentGateway'
    ),
    'PAYOUT_GATEWAY': os.environ.get(
        'FINANCE_PAYOUT_GATEWAY', 'apps.finances.gateways.HttpPayoutGateway'
    ),
    'GATEWAY_API_URL': os.environ.get('GATEWAY_API_URL', 'https://api.gateway.example/v1/'),
    'GATEWAY_API_KEY': os.environ.get('GATEWAY_API_KEY', ''),
    'GATEWAY_SECRET': os.environ.get('GATEWAY_SECRET', ''),
    'WEBHOOK_SECRET': os.environ.get('GATEWAY_WEBHOOK_SECRET', ''),
}

# Logging: stdlib loggers everywhere, rendered as JSON through structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "structlog.stdlib.ProcessorFormatter",
            "processor": structlog.processors.JSONRenderer(),
            "foreign_pre_chain": [
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
            ],
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        }
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "shared": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "audit": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}
