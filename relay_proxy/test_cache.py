"""Tests for the response cache."""

import threading
import time

import pytest

from relay_proxy.cache import ResponseCache, cache_key


MAX_CACHE_SIZE = 3


def entry_for(cache, name):
    return cache.new_entry(f'http://example.com/{name}', {'Content-Type': 'text/html'}, f'<p>{name}</p>')


class TestCapacity:
    """Capacity is enforced by insertion order."""

    def test_overflow_evicts_first_inserted(self, cache):
        keys = [cache_key('GET', f'token{i}') for i in range(MAX_CACHE_SIZE + 1)]
        for i, key in enumerate(keys):
            cache.put(key, entry_for(cache, i))

        assert len(cache) == MAX_CACHE_SIZE
        assert keys[0] not in cache
        assert all(key in cache for key in keys[1:])

    def test_reads_do_not_promote(self, cache):
        keys = [cache_key('GET', f'token{i}') for i in range(MAX_CACHE_SIZE)]
        for i, key in enumerate(keys):
            cache.put(key, entry_for(cache, i))

        # A hit on the oldest key does not save it from eviction
        assert cache.get(keys[0]) is not None
        cache.put(cache_key('GET', 'newcomer'), entry_for(cache, 'newcomer'))

        assert keys[0] not in cache
        assert keys[1] in cache

    def test_reinsert_replaces_entry(self, cache):
        key = cache_key('GET', 'token')
        cache.put(key, entry_for(cache, 'old'))
        cache.put(key, entry_for(cache, 'new'))

        assert len(cache) == 1
        assert cache.get(key).body == '<p>new</p>'

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ResponseCache(max_size=0)


class TestFreshness:
    """Entries expire on read once older than the TTL."""

    def test_fresh_entry_is_served(self, cache, clock):
        key = cache_key('GET', 'token')
        cache.put(key, entry_for(cache, 'page'))
        clock.advance(119)

        assert cache.get(key).body == '<p>page</p>'

    def test_expired_entry_is_a_miss_and_dropped(self, cache, clock):
        key = cache_key('GET', 'token')
        cache.put(key, entry_for(cache, 'page'))
        clock.advance(120.001)

        assert cache.get(key) is None
        assert key not in cache
        assert len(cache) == 0


class TestKeysAndClear:
    """Test keys, clearing and per-key locking."""

    def test_key_includes_method(self):
        assert cache_key('get', 'abc') == ('GET', 'abc')
        assert cache_key('GET', 'abc') != cache_key('POST', 'abc')

    def test_clear_reports_previous_size(self, cache):
        for i in range(2):
            cache.put(cache_key('GET', f'token{i}'), entry_for(cache, i))

        assert cache.clear() == 2
        assert len(cache) == 0

    def test_lock_for_serializes_same_key(self, cache):
        key = cache_key('GET', 'token')
        active = []
        overlaps = []

        def worker():
            with cache.lock_for(key):
                if active:
                    overlaps.append(True)
                active.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []
        assert cache._key_locks == {}

    def test_lock_for_releases_on_error(self, cache):
        key = cache_key('GET', 'token')
        with pytest.raises(RuntimeError):
            with cache.lock_for(key):
                raise RuntimeError('upstream exploded')

        assert cache._key_locks == {}
        with cache.lock_for(key):
            pass
