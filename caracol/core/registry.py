"""
Thread safe keyed registry.

Used to make sure at most one monitor runs per query id, even when several
collectors share the registry.
"""
import threading
from typing import Any, Dict, Generic, Hashable, List, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class KeyedRegistry(Generic[K, V]):
    """Mapping whose check-and-insert is a single atomic step."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[K, V] = {}

    def insert_if_absent(self, key: K, value: V) -> bool:
        """Register value under key unless the key is taken. Returns True if inserted."""
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = value
            return True

    def remove(self, key: K, value: Any = _MISSING) -> bool:
        """
        Remove key.

        When value is given the entry is only removed if it is still that
        value, so a stale owner cannot evict a newer registration.
        """
        with self._lock:
            if key not in self._entries:
                return False
            if value is not _MISSING and self._entries[key] is not value:
                return False
            del self._entries[key]
            return True

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            return self._entries.get(key)

    def keys(self) -> List[K]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, key: K) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
