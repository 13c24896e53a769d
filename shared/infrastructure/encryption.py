"""
Encryption utilities

Fernet (AES-128-CBC + HMAC) encryption for secrets stored in the
database, e.g. payment gateway credentials.
"""

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import base64
import hashlib


def get_encryption_key() -> bytes:
    """
    Derive the Fernet key from settings.ENCRYPTION_KEY

    Any string is accepted; it is hashed to the 32 bytes Fernet expects.
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
    if not plaintext:
        return ''
    return Fernet(get_encryption_key()).encrypt(plaintext.encode()).decode()


def decrypt_string(encrypted: str) -> str:
    """Raises ``cryptography.fernet.InvalidToken`` when the key does not match."""
    if not encrypted:
        return ''
    return Fernet(get_encryption_key()).decrypt(encrypted.encode()).decode()


__all__ = ["InvalidToken", "decrypt_string", "encrypt_string", "get_encryption_key"]
