"""Secret providers for ERP credentials.

The sync engine treats credential storage as opaque: it asks a
``SecretProvider`` for a named secret when it builds the session manager.

- EnvSecretProvider: reads ``ERP_SYNC_<NAME>`` environment variables
- EncryptedSecretProvider: AES-256-GCM ciphertext held in the settings store
"""

import base64
import binascii
import json
import os
import secrets
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

SECRET_KEY_PREFIX = "secret:"


class SecretNotFoundError(KeyError):
    """Requested secret is not configured."""
    pass


def generate_encryption_key() -> str:
    """Generate a new base64-encoded 256-bit key."""
    return base64.b64encode(secrets.token_bytes(32)).decode("utf-8")


class SecretProvider(ABC):
    """Source of named secrets (e.g. ``password``)."""

    @abstractmethod
    def get_secret(self, name: str) -> str:
        """Return the secret value.

        Raises:
            SecretNotFoundError: If the secret is not configured
        """
        pass


class StaticSecretProvider(SecretProvider):
    """Secrets supplied in memory, for tests and embedding."""

    def __init__(self, values: Dict[str, str]):
        self._values = dict(values)

    def get_secret(self, name: str) -> str:
        if name not in self._values:
            raise SecretNotFoundError(name)
        return self._values[name]


class EnvSecretProvider(SecretProvider):
    """Secrets from environment variables named ``{prefix}{NAME}``."""

    def __init__(self, prefix: str = "ERP_SYNC_", environ: Optional[Dict[str, str]] = None):
        self.prefix = prefix
        self._environ = os.environ if environ is None else environ

    def get_secret(self, name: str) -> str:
        value = self._environ.get(f"{self.prefix}{name.upper()}")
        if value is None:
            raise SecretNotFoundError(name)
        return value


class EncryptedSecretProvider(SecretProvider):
    """AES-256-GCM encrypted secrets stored in the key-value settings store.

    Each secret is stored as JSON ``{"ciphertext", "nonce", "created_at"}``
    under ``secret:<name>``. The secret name is bound as associated data, so
    a ciphertext copied to a different name fails to decrypt.

    Usage:
        key = generate_encryption_key()
        provider = EncryptedSecretProvider(key, settings_store)
        provider.store_secret("password", "s3cret")
        provider.get_secret("password")
    """

    def __init__(self, encryption_key: str, settings_store):
        """Initialize with a base64-encoded 32-byte key.

        Raises:
            ValueError: If the key is malformed
        """
        try:
            key = base64.b64decode(encryption_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid encryption key: {e}") from e
        if len(key) != 32:
            raise ValueError("Invalid encryption key: must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)
        self.settings_store = settings_store

    def store_secret(self, name: str, value: str) -> None:
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, value.encode("utf-8"), name.encode("utf-8"))
        record = {
            "ciphertext": base64.b64encode(ciphertext).decode("utf-8"),
            "nonce": base64.b64encode(nonce).decode("utf-8"),
            "created_at": datetime.utcnow().isoformat(),
        }
        self.settings_store.set_setting(SECRET_KEY_PREFIX + name, json.dumps(record))

    def get_secret(self, name: str) -> str:
        raw = self.settings_store.get_setting(SECRET_KEY_PREFIX + name)
        if not raw:
            raise SecretNotFoundError(name)

        record = json.loads(raw)
        try:
            plaintext = self._aesgcm.decrypt(
                base64.b64decode(record["nonce"]),
                base64.b64decode(record["ciphertext"]),
                name.encode("utf-8"),
            )
        except (InvalidTag, KeyError, binascii.Error) as e:
            raise ValueError(f"Secret decryption failed for {name!r}") from e
        return plaintext.decode("utf-8")
