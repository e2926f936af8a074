"""
Unit tests for the response cache.
"""

import logging

from draftstream.core.cache import ResponseCache, generate_key
from draftstream.storage.kv import InMemoryStore, KeyValueStore
from draftstream.storage.models import ConversationTurn


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class BrokenStore(KeyValueStore):
    """Store whose every operation fails."""

    def get(self, key):
        raise ConnectionError("store unavailable")

    def set(self, key, value):
        raise ConnectionError("store unavailable")

    def delete(self, key):
        raise ConnectionError("store unavailable")

    def keys(self):
        raise ConnectionError("store unavailable")


MESSAGES = [ConversationTurn.user("Improve: Buy now!!!")]


class TestGenerateKey:
    """Test fingerprint determinism."""

    def test_identical_inputs_give_identical_keys(self):
        same = [ConversationTurn.user("Improve: Buy now!!!")]
        assert generate_key(MESSAGES, "twitter") == generate_key(same, "twitter")

    def test_platform_changes_key(self):
        assert generate_key(MESSAGES, "twitter") != generate_key(MESSAGES, "linkedin")

    def test_messages_change_key(self):
        other = [ConversationTurn.user("Improve: Buy later")]
        assert generate_key(MESSAGES, "twitter") != generate_key(other, "twitter")

    def test_role_changes_key(self):
        other = [ConversationTurn.system("Improve: Buy now!!!")]
        assert generate_key(MESSAGES) != generate_key(other)

    def test_key_format(self):
        key = generate_key(MESSAGES, "twitter")
        assert key.startswith("twitter_")
        assert len(key) == len("twitter_") + 32
        assert generate_key(MESSAGES).startswith("general_")

    def test_timestamps_do_not_affect_key(self):
        later = [ConversationTurn(MESSAGES[0].role, MESSAGES[0].content)]
        assert generate_key(MESSAGES) == generate_key(later)


class TestResponseCache:
    """Test TTL behaviour and eviction."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryStore()
        self.cache = ResponseCache(store=self.store, ttl_seconds=300, clock=self.clock)

    def test_miss(self):
        assert self.cache.get("missing") is None

    def test_hit_within_ttl(self):
        self.cache.set("k", "Done.")
        self.clock.now += 120
        assert self.cache.get("k") == "Done."

    def test_expired_entry_is_evicted_on_read(self):
        self.cache.set("k", "Done.")
        self.clock.now += 301

        assert self.cache.get("k") is None
        assert len(self.store) == 0

    def test_set_overwrites(self):
        self.cache.set("k", "first")
        self.cache.set("k", "second")
        assert self.cache.get("k") == "second"

    def test_set_sweeps_expired_entries(self):
        self.cache.set("old", "stale")
        self.clock.now += 400
        self.cache.set("new", "fresh")

        assert len(self.store) == 1
        assert self.cache.get("new") == "fresh"

    def test_explicit_timestamp(self):
        self.cache.set("k", "aged", timestamp=self.clock.now - 120)
        assert self.cache.get("k") == "aged"
        self.clock.now += 181
        assert self.cache.get("k") is None

    def test_cleanup_counts_removed(self):
        self.cache.set("a", "1")
        self.cache.set("b", "2")
        self.clock.now += 301
        assert self.cache.cleanup() == 2

    def test_clear_leaves_other_keys(self):
        self.store.set("ratelimit:user-1", object())
        self.cache.set("k", "v")
        self.cache.clear()
        assert self.cache.get("k") is None
        assert self.store.get("ratelimit:user-1") is not None


class TestCacheFailures:
    """A broken store must behave like an empty cache."""

    def test_read_failure_is_a_miss(self, caplog):
        cache = ResponseCache(store=BrokenStore())
        with caplog.at_level(logging.WARNING, logger="draftstream.core.cache"):
            assert cache.get("k") is None
        assert "treating as miss" in caplog.text

    def test_write_failure_is_ignored(self, caplog):
        cache = ResponseCache(store=BrokenStore())
        with caplog.at_level(logging.WARNING, logger="draftstream.core.cache"):
            cache.set("k", "v")
        assert "Response cache write failed" in caplog.text
