"""
Encryption utilities

Encrypts sensitive settlement data at rest, such as host payout
destinations (IBANs, wallet ids). Uses Fernet symmetric encryption.
"""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


def get_encryption_key() -> bytes:
    """
    Get encryption key from settings

    Any configured string is stretched with SHA-256 into the 32-byte
    URL-safe base64 key Fernet expects.
    """
    key = getattr(settings, 'ENCRYPTION_KEY', None)

    if not key:
        raise ImproperlyConfigured(
            "ENCRYPTION_KEY not configured in settings. "
            "Generate one with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )

    if isinstance(key, str):
        key = base64.urlsafe_b64encode(
            hashlib.sha256(key.encode()).digest()
        )

    return key


def encrypt_string(plaintext: str) -> str:
    """Encrypt a string and return the Fernet token as text"""
    if not plaintext:
        return ''

    fernet = Fernet(get_encryption_key())
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_string(encrypted: str) -> str:
    """
    Decrypt a Fernet token

    Raises ImproperlyConfigured when the token was produced with another key,
    since a silently blank payout destination would misroute money.
    """
    if not encrypted:
        return ''

    fernet = Fernet(get_encryption_key())
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken as exc:
        raise ImproperlyConfigured(
            "Stored value cannot be decrypted with the configured ENCRYPTION_KEY"
        ) from exc


def mask(value: str, visible: int = 4) -> str:
    """Hide all but the last `visible` characters, e.g. '****1234'"""
    if not value:
        return ''
    if len(value) <= visible:
        return '*' * len(value)
    return '*' * (len(value) - visible) + value[-visible:]
