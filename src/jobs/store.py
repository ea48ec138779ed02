"""
Lock-guarded key/value store with explicit eviction.

Owned by the ConversionJobManager; holds per-job field mappings and the
file → data-request links recorded at upload time.
"""
import threading
from typing import Dict, Generic, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class JobScopedStore(Generic[K, V]):
    """Thread-safe dict whose entries are removed when their job no longer needs them."""

    def __init__(self):
        self._items: Dict[K, V] = {}
        self._lock = threading.Lock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._items[key] = value

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._items.get(key, default)

    def evict(self, key: K) -> Optional[V]:
        """Remove and return the entry, or None if absent."""
        with self._lock:
            return self._items.pop(key, None)

    def __contains__(self, key: K) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
