"""
Response cache.

Content-addressed, time-bounded cache of completed responses keyed by a
fingerprint of the message sequence and platform. Best effort only: a
failing store reads as a miss and a failing write is ignored.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from draftstream.storage.kv import InMemoryStore, KeyValueStore
from draftstream.storage.models import ConversationTurn

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
_PREFIX = "response:"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    response: str
    timestamp: float


def generate_key(messages: Sequence[ConversationTurn], platform: Optional[str] = None) -> str:
    """Deterministic fingerprint of a message sequence scoped by platform."""
    content = "|".join(f"{m.role.value}:{m.content}" for m in messages)
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:32]
    return f"{platform or 'general'}_{digest}"


class ResponseCache:
    """TTL cache over an injectable key/value store.

    Expired entries are removed lazily: on lookup of the expired key, and
    by a sweep after every write.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.store = store if store is not None else InMemoryStore()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    generate_key = staticmethod(generate_key)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def get(self, key: str) -> Optional[str]:
        """Return the cached response for ``key`` if present and fresh."""
        try:
            entry = self.store.get(_PREFIX + key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                self.store.delete(_PREFIX + key)
                return None
            return entry.response
        except Exception:
            logger.warning("Response cache read failed for %s; treating as miss", key, exc_info=True)
            return None

    def set(self, key: str, response: str, timestamp: Optional[float] = None) -> None:
        """Store ``response`` under ``key`` and sweep expired entries."""
        now = self._clock()
        entry = CacheEntry(key=key, response=response, timestamp=now if timestamp is None else timestamp)
        try:
            self.store.set(_PREFIX + key, entry)
            self.cleanup(now)
        except Exception:
            logger.warning("Response cache write failed for %s", key, exc_info=True)

    def cleanup(self, now: Optional[float] = None) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock() if now is None else now
        removed = 0
        for store_key in self.store.keys():
            if not store_key.startswith(_PREFIX):
                continue
            entry = self.store.get(store_key)
            if entry is not None and self._expired(entry, now):
                self.store.delete(store_key)
                removed += 1
        return removed

    def clear(self) -> None:
        for store_key in self.store.keys():
            if store_key.startswith(_PREFIX):
                self.store.delete(store_key)
