"""
Custom Django model fields for sensitive data.

EncryptedJSONField keeps a JSON document (gateway credentials) encrypted
at rest and hands plain dicts to Python code.
"""

import json
import logging

from django.db import models

from .encryption import InvalidToken, decrypt_string, encrypt_string

logger = logging.getLogger(__name__)


class EncryptedJSONField(models.TextField):
    """
    JSON document stored as Fernet ciphertext in a text column.

    Values cannot be filtered on in the database.
    """

    description = "Encrypted JSON document"

    def from_db_value(self, value, expression, connection):
        if value is None or value == '':
            return {}
        try:
            return json.loads(decrypt_string(value))
        except InvalidToken:
            logger.error(f"Cannot decrypt {self.model.__name__}.{self.name}: ENCRYPTION_KEY mismatch")
            return {}

    def get_prep_value(self, value):
        if value is None:
            value = {}
        if isinstance(value, str):
            value = json.loads(value or '{}')
        return encrypt_string(json.dumps(value, sort_keys=True))

    def to_python(self, value):
        if value is None:
            return {}
        if isinstance(value, str):
            return json.loads(value or '{}')
        return value

    def value_to_string(self, obj):
        return json.dumps(self.value_from_object(obj))
