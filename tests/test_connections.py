"""
Unit tests for ConnectionCache.

Tests cover:
- fast path / slow path
- connect serialization (global and per namespace)
- same-namespace deduplication
- failed connects are not cached
- close_all
"""

import asyncio

import pytest

from statsd_mongo.connections import ConnectionCache
from statsd_mongo.errors import ConnectError
from statsd_mongo.storage import MemoryStorage

URL = "mongodb://localhost:27017"


# =============================================================================
# Mock Objects
# =============================================================================


class SlowStorage(MemoryStorage):
    """MemoryStorage whose connect takes a while and records overlap."""

    def __init__(self, delay: float = 0.01):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.connect_calls: list[str] = []

    async def connect(self, url, namespace):
        self.connect_calls.append(namespace)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            return await super().connect(url, namespace)
        finally:
            self.active -= 1


class FlakyStorage(MemoryStorage):
    """Fails the first `failures` connects."""

    def __init__(self, failures: int = 1, error: Exception | None = None):
        super().__init__()
        self.failures = failures
        self.error = error or ConnectError("connection refused")
        self.attempts = 0

    async def connect(self, url, namespace):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return await super().connect(url, namespace)


# =============================================================================
# Tests
# =============================================================================


@pytest.mark.asyncio
async def test_acquire_caches_connection():
    storage = MemoryStorage()
    cache = ConnectionCache(storage, URL)

    first = await cache.acquire("app")
    second = await cache.acquire("app")

    assert first is second
    assert len(storage.connections) == 1
    assert "app" in cache
    assert cache.namespaces == ["app"]


@pytest.mark.asyncio
async def test_distinct_namespaces_connect_one_at_a_time():
    storage = SlowStorage()
    cache = ConnectionCache(storage, URL, serialize_all=True)
    namespaces = [f"ns{i}" for i in range(5)]

    await asyncio.gather(*[cache.acquire(ns) for ns in namespaces])

    assert cache.connect_attempts == 5
    assert sorted(storage.connect_calls) == namespaces
    assert storage.max_active == 1
    assert len(cache) == 5


@pytest.mark.asyncio
async def test_connects_are_fifo():
    storage = SlowStorage()
    cache = ConnectionCache(storage, URL)
    namespaces = ["c", "a", "b"]

    await asyncio.gather(*[cache.acquire(ns) for ns in namespaces])

    assert storage.connect_calls == namespaces


@pytest.mark.asyncio
async def test_same_namespace_connects_once():
    storage = SlowStorage()
    cache = ConnectionCache(storage, URL)

    results = await asyncio.gather(*[cache.acquire("app") for _ in range(10)])

    assert storage.connect_calls == ["app"]
    assert cache.connect_attempts == 1
    assert all(conn is results[0] for conn in results)


@pytest.mark.asyncio
async def test_per_namespace_locking_allows_parallel_connects():
    storage = SlowStorage(delay=0.02)
    cache = ConnectionCache(storage, URL, serialize_all=False)

    await asyncio.gather(*[cache.acquire(f"ns{i}") for i in range(4)])
    await asyncio.gather(*[cache.acquire("ns0") for _ in range(4)])

    assert cache.connect_attempts == 4
    assert storage.max_active > 1


@pytest.mark.asyncio
async def test_per_namespace_locking_still_dedupes():
    storage = SlowStorage()
    cache = ConnectionCache(storage, URL, serialize_all=False)

    await asyncio.gather(*[cache.acquire("app") for _ in range(5)])

    assert storage.connect_calls == ["app"]


@pytest.mark.asyncio
async def test_failed_connect_is_not_cached():
    storage = FlakyStorage(failures=1)
    cache = ConnectionCache(storage, URL)

    with pytest.raises(ConnectError):
        await cache.acquire("app")
    assert "app" not in cache

    connection = await cache.acquire("app")
    assert connection.namespace == "app"
    assert storage.attempts == 2


@pytest.mark.asyncio
async def test_unexpected_connect_error_is_wrapped():
    storage = FlakyStorage(failures=1, error=OSError("network unreachable"))
    cache = ConnectionCache(storage, URL)

    with pytest.raises(ConnectError) as exc_info:
        await cache.acquire("app")

    assert exc_info.value.namespace == "app"
    assert isinstance(exc_info.value.__cause__, OSError)


@pytest.mark.asyncio
async def test_waiters_see_failure_then_retry():
    """A queued waiter for the same namespace retries after a failed attempt."""
    storage = FlakyStorage(failures=1)
    cache = ConnectionCache(storage, URL)

    results = await asyncio.gather(
        cache.acquire("app"), cache.acquire("app"), return_exceptions=True
    )

    assert isinstance(results[0], ConnectError)
    assert results[1].namespace == "app"
    assert storage.attempts == 2


@pytest.mark.asyncio
async def test_close_all():
    storage = MemoryStorage()
    cache = ConnectionCache(storage, URL)
    a = await cache.acquire("a")
    b = await cache.acquire("b")

    await cache.close_all()

    assert a.closed and b.closed
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_acquire_after_close_all_is_refused():
    storage = MemoryStorage()
    cache = ConnectionCache(storage, URL)
    await cache.acquire("a")
    await cache.close_all()

    with pytest.raises(ConnectError):
        await cache.acquire("a")

    assert cache.closed
    assert len(storage.connections) == 1


@pytest.mark.asyncio
async def test_close_all_during_connect():
    """A connect that finishes after close_all is closed, never cached."""
    storage = SlowStorage()
    cache = ConnectionCache(storage, URL, serialize_all=False)

    first = asyncio.create_task(cache.acquire("app"))
    await asyncio.sleep(0)
    queued = asyncio.create_task(cache.acquire("app"))
    await cache.close_all()
    late = asyncio.create_task(cache.acquire("app"))

    results = await asyncio.gather(first, queued, late, return_exceptions=True)

    assert all(isinstance(result, ConnectError) for result in results)
    assert storage.connect_calls == ["app"]
    assert all(conn.closed for conn in storage.connections)
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_close_all_keeps_namespace_locks():
    cache = ConnectionCache(MemoryStorage(), URL, serialize_all=False)
    lock = cache._lock_for("app")

    await cache.close_all()

    assert cache._lock_for("app") is lock
