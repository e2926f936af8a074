"""
Key/value store for process-wide mutable state.

The response cache and the rate limiter keep their state behind this
interface instead of in module globals. ``InMemoryStore`` serves a single
process; a multi-instance deployment plugs in a shared store with the same
four methods.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional


class KeyValueStore(ABC):
    """Minimal mapping interface the cache and rate limiter depend on."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value for ``key`` or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""

    @abstractmethod
    def keys(self) -> Iterator[str]:
        """Iterate over a snapshot of the stored keys."""

    def clear(self) -> None:
        for key in list(self.keys()):
            self.delete(key)


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store.

    No locking: all access happens on the event loop thread.
    """

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data.keys()))

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
