"""
MongoDB flush backend.

Owns every pipeline component and their lifecycle:
- storage, connection cache, provisioner, executor, dispatcher
- fire-and-forget flush handling with in-flight tracking
- shutdown: drain in-flight flushes, then close connections
"""

import asyncio
from typing import Any, Mapping

from statsd_mongo.config import BackendConfig
from statsd_mongo.connections import ConnectionCache
from statsd_mongo.dispatcher import FlushDispatcher, FlushReport
from statsd_mongo.executor import InsertExecutor
from statsd_mongo.logging import get_logger
from statsd_mongo.models import MetricBatch
from statsd_mongo.naming import NamingPolicy
from statsd_mongo.provisioner import CollectionProvisioner, capacity_policy
from statsd_mongo.storage import MotorStorage, StorageBackend

logger = get_logger(__name__)


class MongoBackend:
    """
    Metrics flush sink writing to capped MongoDB collections.

    Usage:
        ```python
        backend = MongoBackend.from_statsd(startup_time, {"flushInterval": 10000, "mongoUrl": url})
        backend.attach(events)          # subscribes to "flush"

        # or drive it directly
        async with MongoBackend(config) as backend:
            report = await backend.flush(1000, {"counters": {"web.hits": 5}})
        ```
    """

    def __init__(self, config: BackendConfig, storage: StorageBackend | None = None):
        self.config = config
        self.storage = storage or MotorStorage(connect_timeout_ms=config.connect_timeout_ms)
        self.naming = NamingPolicy.from_config(config)
        self.connections = ConnectionCache(
            self.storage, config.mongo_url, serialize_all=config.serialize_connects
        )
        self.provisioner = CollectionProvisioner(self.storage, capacity_policy(config))
        self.executor = InsertExecutor(
            self.storage, self.connections, self.provisioner, debug=config.debug
        )
        self.dispatcher = FlushDispatcher(
            self.naming,
            self.executor,
            max_concurrency=config.max_concurrent_inserts,
            debug=config.debug,
        )
        self.startup_time: int | None = None
        self._pending: set[asyncio.Task] = set()
        self._closed = False

        logger.info(
            f"MongoBackend initialized: url={config.mongo_url}, rate={config.flush_rate}s, "
            f"prefix={config.use_prefix}, max={config.max_documents}"
        )

    @classmethod
    def from_statsd(
        cls,
        startup_time: int,
        config: Mapping[str, Any],
        storage: StorageBackend | None = None,
    ) -> "MongoBackend":
        """
        Build from a statsd backend config.

        Raises:
            ConfigurationError: invalid config
        """
        backend = cls(BackendConfig.from_statsd(config), storage=storage)
        backend.startup_time = startup_time
        return backend

    # -------------------------------------------------------------------------
    # Flush handling
    # -------------------------------------------------------------------------

    async def flush(self, timestamp: int, metrics: "Mapping[str, Any] | MetricBatch | None") -> FlushReport:
        """Write one flush and wait for every insert to settle."""
        task = self._submit(timestamp, metrics)
        if task is None:
            return FlushReport(timestamp=timestamp)
        return await task

    def on_flush(self, timestamp: int, metrics: "Mapping[str, Any] | MetricBatch | None") -> asyncio.Task | None:
        """
        Flush event handler. Returns immediately; the flush runs as a task.

        Returns None once the backend is shut down. Must be called from
        inside a running event loop.
        """
        return self._submit(timestamp, metrics)

    def _submit(self, timestamp: int, metrics: "Mapping[str, Any] | MetricBatch | None") -> asyncio.Task | None:
        # Closed is checked here only; accepted flushes always run to the end
        if self._closed:
            logger.warning(f"Flush at {timestamp} ignored: backend is shut down")
            return None
        task = asyncio.get_running_loop().create_task(self.dispatcher.dispatch(timestamp, metrics))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def attach(self, events: Any) -> "MongoBackend":
        """Subscribe to an emitter exposing `on(event, handler)`."""
        events.on("flush", self.on_flush)
        return self

    @property
    def pending(self) -> int:
        return len(self._pending)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for in-flight flushes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.drain()
        await self.connections.close_all()
        self.provisioner.forget()
        logger.info("MongoBackend shutdown")

    async def __aenter__(self) -> "MongoBackend":
        return self

    async def __aexit__(self, *args: Any) -> bool:
        await self.shutdown()
        return False
