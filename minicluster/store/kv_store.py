"""
In-memory versioned key-value store.
Thread-safe; conflicting writes resolve last-writer-wins by version.
"""

import fnmatch
import threading
import time
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass


@dataclass
class KeyMetadata:
    """Metadata for a stored key."""
    value: str
    version: int


class KVStore:
    """
    Thread-safe in-memory key-value store.

    Every value carries a version; apply() only replaces a value with a
    strictly newer version, so replaying or re-receiving a write is harmless.
    """

    def __init__(self):
        self._store: Dict[str, KeyMetadata] = {}
        self._lock = threading.RLock()
        self._last_version = 0

    def next_version(self) -> int:
        """A version greater than every version this store has seen."""
        with self._lock:
            self._last_version = max(self._last_version + 1, time.time_ns())
            return self._last_version

    def set(self, key: str, value: str) -> int:
        """Store a local write under a fresh version; returns the version."""
        with self._lock:
            version = self.next_version()
            self._store[key] = KeyMetadata(value=value, version=version)
            return version

    def apply(self, key: str, value: str, version: int) -> bool:
        """
        Apply a write that already has a version (replication, replay, sync).

        Returns:
            True if the write replaced the stored value
        """
        with self._lock:
            self._last_version = max(self._last_version, version)
            existing = self._store.get(key)
            if existing is not None and existing.version >= version:
                return False
            self._store[key] = KeyMetadata(value=value, version=version)
            return True

    def get(self, key: str) -> Tuple[Optional[str], bool]:
        """
        Get a value by key.

        Returns:
            Tuple of (value, found).
        """
        with self._lock:
            metadata = self._store.get(key)
            if metadata is None:
                return None, False
            return metadata.value, True

    def get_version(self, key: str) -> Optional[int]:
        with self._lock:
            metadata = self._store.get(key)
            return metadata.version if metadata else None

    def keys(self, pattern: str = "*") -> List[str]:
        """Keys matching a glob pattern, sorted."""
        with self._lock:
            return sorted(k for k in self._store if fnmatch.fnmatchcase(k, pattern))

    def get_all_data(self) -> Dict[str, Tuple[str, int]]:
        """Snapshot of every key as {key: (value, version)}."""
        with self._lock:
            return {key: (meta.value, meta.version) for key, meta in self._store.items()}

    def size(self) -> int:
        with self._lock:
            return len(self._store)
