"""Test settings for the rental settlement engine.

Uses an in-memory SQLite database, runs Celery tasks eagerly and keeps
the webhook secret fixed so tests can sign payloads.
"""

from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

ENCRYPTION_KEY = 'test-encryption-key'

FINANCE = {  # noqa: F405
    **FINANCE,  # noqa: F405
    'DEFAULT_CURRENCY': 'AED',
    'MINIMUM_PAYOUT': '100',
    'NON_REFUNDABLE_FEE': '0',
    'PAYMENT_GATEWAY': 'apps.finances.gateways.EmulatedPaymentGateway',
    'PAYOUT_GATEWAY': 'apps.finances.gateways.EmulatedPayoutGateway',
    'WEBHOOK_SECRET': 'test-webhook-secret',
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {'null': {'class': 'logging.NullHandler'}},
    'root': {'handlers': ['null'], 'level': 'WARNING'},
}
