"""Production settings for the rental settlement engine.

This module extends the base settings with production specific
configuration. Ensure that sensitive values are provided via
environment variables and that security settings are appropriate for
production use.
"""

import os

from django.core.exceptions import ImproperlyConfigured  # type: ignore

from .base import *  # noqa: F401,F403

# Never run with debug enabled in production
DEBUG = False

# Allowed hosts should be defined explicitly via environment variable
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', '').split(',')

# Configure secure proxies and cookies
CSRF_COOKIE_SECURE = True
SESSION_COOKIE_SECURE = True

for _required in ('DJANGO_SECRET_KEY', 'ENCRYPTION_KEY', 'GATEWAY_API_KEY', 'GATEWAY_WEBHOOK_SECRET'):
    if not os.environ.get(_required):
        raise ImproperlyConfigured(f"Missing required environment variable: {_required}")
