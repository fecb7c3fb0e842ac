"""Development settings for the rental settlement engine.

This module extends the base settings with development specific
configuration, such as enabling debug and swapping the payment and payout
gateways for their emulated versions. Do not use these settings in
production!
"""

from .base import *  # noqa: F401,F403

# Enable debug mode for development
DEBUG = True

# Allow all hosts in development
ALLOWED_HOSTS = ['*']

# Gateways answer locally so the full lifecycle can be exercised offline
FINANCE = {  # noqa: F405
    **FINANCE,  # noqa: F405
    'PAYMENT_GATEWAY': 'apps.finances.gateways.EmulatedPaymentGateway',
    'PAYOUT_GATEWAY': 'apps.finances.gateways.EmulatedPayoutGateway',
}
