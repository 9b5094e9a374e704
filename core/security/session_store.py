"""TTL cache for ERP session credentials.

Sessions are cached under a key derived from the connection identity and
dropped once their TTL lapses. They are never persisted beyond the TTL.

- InMemorySessionStore: process-local cache, the default
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


Clock = Callable[[], float]


@dataclass
class CachedEntry:
    """A cached value with its absolute expiry (clock seconds)."""
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SessionStore(ABC):
    """Abstract TTL key-value store for sessions."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Cache ``value`` for ``ttl_seconds``."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a cached value. Returns True if something was removed."""
        pass

    def has(self, key: str) -> bool:
        return self.get(key) is not None


class InMemorySessionStore(SessionStore):
    """Thread-safe in-memory TTL store.

    Args:
        clock: Monotonic time source in seconds, injectable for tests
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CachedEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = CachedEntry(value=value, expires_at=self._clock() + ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None
