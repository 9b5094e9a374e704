"""Security module - secret providers and the session cache."""

from core.security.secrets import (
    SecretProvider,
    SecretNotFoundError,
    StaticSecretProvider,
    EnvSecretProvider,
    EncryptedSecretProvider,
    generate_encryption_key,
)
from core.security.session_store import (
    SessionStore,
    InMemorySessionStore,
)

__all__ = [
    "SecretProvider",
    "SecretNotFoundError",
    "StaticSecretProvider",
    "EnvSecretProvider",
    "EncryptedSecretProvider",
    "generate_encryption_key",
    "SessionStore",
    "InMemorySessionStore",
]
