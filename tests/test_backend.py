"""
Unit tests for MongoBackend.

Tests cover:
- construction from statsd config
- flush / on_flush / attach
- lifecycle (drain, shutdown, context manager)
- logging of failures and debug confirmations
"""

import asyncio
import logging

import pytest

from statsd_mongo.backend import MongoBackend
from statsd_mongo.config import BackendConfig
from statsd_mongo.errors import ConfigurationError
from statsd_mongo.storage import MemoryStorage, MotorStorage


# =============================================================================
# Mock Objects
# =============================================================================


class MockEvents:
    """Minimal event emitter with the statsd `on` contract."""

    def __init__(self):
        self.handlers: dict[str, list] = {}

    def on(self, event: str, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, *args):
        return [handler(*args) for handler in self.handlers.get(event, [])]


class SlowStorage(MemoryStorage):
    async def insert_document(self, collection, document):
        await asyncio.sleep(0.01)
        await super().insert_document(collection, document)


class SlowConnectStorage(MemoryStorage):
    async def connect(self, url, namespace):
        await asyncio.sleep(0.02)
        return await super().connect(url, namespace)


class FailingStorage(MemoryStorage):
    async def insert_document(self, collection, document):
        raise RuntimeError("disk full")


# =============================================================================
# Construction
# =============================================================================


def test_default_storage_is_motor():
    backend = MongoBackend(BackendConfig(connect_timeout_ms=1234))
    assert isinstance(backend.storage, MotorStorage)
    assert backend.storage.connect_timeout_ms == 1234


def test_from_statsd():
    backend = MongoBackend.from_statsd(1700000000, {"flushInterval": 10000}, storage=MemoryStorage())
    assert backend.startup_time == 1700000000
    assert backend.config.flush_rate == 10
    assert backend.provisioner.policy == {"capped": True, "size": 216000, "max": 2160}


def test_from_statsd_rejects_bad_config():
    with pytest.raises(ConfigurationError):
        MongoBackend.from_statsd(0, {"mongoPrefix": False}, storage=MemoryStorage())


# =============================================================================
# Flush
# =============================================================================


@pytest.mark.asyncio
async def test_flush_end_to_end():
    storage = MemoryStorage()
    backend = MongoBackend(BackendConfig(flush_rate=10), storage=storage)

    report = await backend.flush(1000, {"counters": {"web.hits": 5}})

    assert report.succeeded == 1
    assert storage.documents("web", "counters.hits_10") == [{"time": 1000, "count": 5}]
    assert backend.connections.namespaces == ["web"]


@pytest.mark.asyncio
async def test_fallback_namespace_routing():
    storage = MemoryStorage()
    config = BackendConfig(use_prefix=False, fallback_namespace="statsd", flush_rate=10)
    backend = MongoBackend(config, storage=storage)

    await backend.flush(1000, {"counters": {"app.server1.latency": 1}})

    assert storage.documents("statsd", "counters.app.server1.latency_10") == [{"time": 1000, "count": 1}]


@pytest.mark.asyncio
async def test_repeated_flushes_reuse_connection():
    storage = MemoryStorage()
    backend = MongoBackend(BackendConfig(), storage=storage)

    await backend.flush(1000, {"gauges": {"app.cpu": 1}})
    await backend.flush(1010, {"gauges": {"app.cpu": 2}})

    assert len(storage.connections) == 1
    assert [d["gauge"] for d in storage.documents("app", "gauges.cpu_10")] == [1, 2]


@pytest.mark.asyncio
async def test_on_flush_is_fire_and_forget():
    storage = SlowStorage()
    backend = MongoBackend(BackendConfig(), storage=storage)

    task = backend.on_flush(1000, {"counters": {"web.hits": 5}})

    assert backend.pending == 1
    assert storage.documents("web", "counters.hits_10") == []

    report = await task
    assert report.succeeded == 1
    assert backend.pending == 0


@pytest.mark.asyncio
async def test_overlapping_flushes():
    storage = SlowStorage()
    backend = MongoBackend(BackendConfig(), storage=storage)

    backend.on_flush(1000, {"counters": {"web.hits": 1}})
    backend.on_flush(1010, {"counters": {"web.hits": 2}})
    await backend.drain()

    times = sorted(d["time"] for d in storage.documents("web", "counters.hits_10"))
    assert times == [1000, 1010]


@pytest.mark.asyncio
async def test_attach_subscribes_to_flush():
    storage = MemoryStorage()
    events = MockEvents()
    backend = MongoBackend(BackendConfig(), storage=storage).attach(events)

    events.emit("flush", 1000, {"sets": {"web.users": 3}})
    await backend.drain()

    assert storage.documents("web", "sets.users_10") == [{"time": 1000, "set": 3}]


@pytest.mark.asyncio
async def test_failures_are_logged_not_raised(caplog):
    backend = MongoBackend(BackendConfig(), storage=FailingStorage())

    with caplog.at_level(logging.ERROR):
        report = await backend.flush(1000, {"counters": {"web.hits": 5}})

    assert report.failed == 1
    assert "web/counters.hits_10" in caplog.text
    assert "disk full" in caplog.text


@pytest.mark.asyncio
async def test_debug_logs_success(caplog):
    backend = MongoBackend(BackendConfig(debug=True), storage=MemoryStorage())

    with caplog.at_level(logging.INFO):
        await backend.flush(1000, {"counters": {"web.hits": 5}})

    assert "flush done" in caplog.text


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_shutdown_drains_and_closes():
    storage = SlowStorage()
    backend = MongoBackend(BackendConfig(), storage=storage)

    backend.on_flush(1000, {"gauges": {"a.x": 1, "b.x": 2}})
    await backend.shutdown()

    assert storage.documents("a", "gauges.x_10") == [{"time": 1000, "gauge": 1}]
    assert all(conn.closed for conn in storage.connections)
    assert len(backend.connections) == 0

    # Idempotent, and later flushes are ignored
    await backend.shutdown()
    report = await backend.flush(1010, {"gauges": {"a.x": 3}})
    assert report.attempted == 0


@pytest.mark.asyncio
async def test_shutdown_writes_flushes_queued_before_it():
    storage = MemoryStorage()
    backend = MongoBackend(BackendConfig(), storage=storage)

    first = backend.on_flush(1000, {"counters": {"web.hits": 1}})
    second = backend.on_flush(1010, {"counters": {"web.hits": 2}})
    await backend.shutdown()

    assert first.result().succeeded == 1
    assert second.result().succeeded == 1
    assert sorted(d["count"] for d in storage.documents("web", "counters.hits_10")) == [1, 2]
    assert backend.on_flush(1020, {"counters": {"web.hits": 3}}) is None


@pytest.mark.asyncio
async def test_shutdown_during_connect_leaves_nothing_open():
    storage = SlowConnectStorage()
    backend = MongoBackend(BackendConfig(serialize_connects=False), storage=storage)

    in_flight = asyncio.create_task(backend.flush(1000, {"gauges": {"app.cpu": 1}}))
    await asyncio.sleep(0)
    await backend.shutdown()
    report = await in_flight

    assert report.succeeded == 1
    assert storage.documents("app", "gauges.cpu_10") == [{"time": 1000, "gauge": 1}]
    assert all(conn.closed for conn in storage.connections)
    assert len(backend.connections) == 0
    assert backend.connections.closed


@pytest.mark.asyncio
async def test_context_manager():
    storage = MemoryStorage()

    async with MongoBackend(BackendConfig(), storage=storage) as backend:
        await backend.flush(1000, {"counters": {"web.hits": 1}})

    assert storage.connections[0].closed
