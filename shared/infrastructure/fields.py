"""
Custom Django model fields for sensitive data.

Provides EncryptedCharField that transparently encrypts data
before saving to database and decrypts when loading.
"""

from django.db import models

from .encryption import decrypt_string, encrypt_string


class EncryptedCharField(models.TextField):
    """
    Text field that encrypts on save and decrypts on load.

    Ciphertext is longer than the plaintext, so storage is a TextField;
    `max_length` only validates the plaintext.
    """

    description = "Encrypted text field"

    def __init__(self, *args, **kwargs):
        self.plaintext_max_length = kwargs.pop('max_length', None)
        super().__init__(*args, **kwargs)

    def deconstruct(self):
        name, path, args, kwargs = super().deconstruct()
        if self.plaintext_max_length is not None:
            kwargs['max_length'] = self.plaintext_max_length
        return name, path, args, kwargs

    def from_db_value(self, value, expression, connection):
        if value is None:
            return value
        return decrypt_string(value)

    def get_prep_value(self, value):
        if value is None or value == '':
            return ''
        return encrypt_string(str(value))

    def to_python(self, value):
        if value is None:
            return value
        return str(value)
