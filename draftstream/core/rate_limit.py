"""
Per-user request rate limiting.

Fixed-window counter: each user may start ``max_requests`` live
generations per window. State lives in an injectable key/value store.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from draftstream.storage.kv import InMemoryStore, KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_REQUESTS = 20


class RateLimitExceeded(Exception):
    """Raised when a user has used up the current window."""
    def __init__(self, message: str, retry_after: float):
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Counts requests per user inside a fixed time window."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        clock: Callable[[], float] = time.time,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.store = store if store is not None else InMemoryStore()
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock

    @staticmethod
    def _key(user_id: str) -> str:
        return f"ratelimit:{user_id}"

    def check(self, user_id: str) -> int:
        """Count one request for ``user_id``.

        Returns:
            Requests remaining in the current window

        Raises:
            RateLimitExceeded: If the window is already full
        """
        now = self._clock()
        key = self._key(user_id)
        window = self.store.get(key)

        if window is None or now > window.reset_at:
            self.store.set(key, _Window(count=1, reset_at=now + self.window_seconds))
            return self.max_requests - 1

        if window.count >= self.max_requests:
            wait = max(0.0, window.reset_at - now)
            logger.warning("Rate limit hit for user %s", user_id)
            raise RateLimitExceeded(
                f"Rate limit exceeded. Please wait {math.ceil(wait)} seconds before trying again.",
                retry_after=wait,
            )

        self.store.set(key, _Window(count=window.count + 1, reset_at=window.reset_at))
        return self.max_requests - window.count - 1

    def reset(self, user_id: str) -> None:
        self.store.delete(self._key(user_id))
