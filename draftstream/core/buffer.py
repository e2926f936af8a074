"""
Token buffer for smoothing stream delivery.

Fragments are collected and handed to a callback in batches. Order is
preserved and every added fragment is delivered by some flush, unless the
buffer is explicitly cleared on cancellation.
"""

from typing import Callable, List, Optional

FlushCallback = Callable[[List[str]], None]


class TokenBuffer:
    """Accumulates fragments and flushes them ``batch_size`` at a time."""

    def __init__(self, batch_size: int = 10, on_flush: Optional[FlushCallback] = None):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self._buffer: List[str] = []
        self._callback = on_flush

    def on_flush(self, callback: FlushCallback) -> None:
        self._callback = callback

    def add(self, fragment: str) -> None:
        self._buffer.append(fragment)
        if len(self._buffer) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        """Deliver everything buffered so far as one batch."""
        if not self._buffer or self._callback is None:
            return
        batch, self._buffer = self._buffer, []
        self._callback(batch)

    def clear(self) -> None:
        self._buffer = []

    @property
    def pending(self) -> int:
        return len(self._buffer)
