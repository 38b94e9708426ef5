"""
Connection cache: namespace -> live storage connection.

The first `acquire` for a namespace connects; everyone after that gets the
cached handle with no I/O. Connect attempts go through a FIFO lock so the
driver never sees concurrent first-connects:

- serialize_all=True: one lock for every namespace (one connect at a time)
- serialize_all=False: one lock per namespace (same namespace still connects once)

Entries are written only while holding the lock and never replaced, so reads
need no locking.
"""

import asyncio
from typing import Any

from statsd_mongo.errors import ConnectError
from statsd_mongo.logging import get_logger
from statsd_mongo.storage import StorageBackend

logger = get_logger(__name__)


class ConnectionCache:
    """
    Process-lifetime connection cache owned by the backend.

    Usage:
        ```python
        cache = ConnectionCache(storage, "mongodb://localhost:27017")
        conn = await cache.acquire("app")
        ...
        await cache.close_all()
        ```
    """

    def __init__(self, storage: StorageBackend, url: str, *, serialize_all: bool = True):
        self._storage = storage
        self._url = url
        self._serialize_all = serialize_all
        self._connections: dict[str, Any] = {}
        self._global_lock = asyncio.Lock()
        self._locks: dict[str, asyncio.Lock] = {}
        self._closed = False
        self.connect_attempts = 0

    def __contains__(self, namespace: str) -> bool:
        return namespace in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def namespaces(self) -> list[str]:
        return list(self._connections)

    def _lock_for(self, namespace: str) -> asyncio.Lock:
        if self._serialize_all:
            return self._global_lock
        return self._locks.setdefault(namespace, asyncio.Lock())

    async def acquire(self, namespace: str) -> Any:
        """
        Get or create the connection for a namespace.

        Raises:
            ConnectError: connect failed or the cache is closed; nothing is cached
        """
        connection = self._connections.get(namespace)
        if connection is not None:
            return connection

        async with self._lock_for(namespace):
            if self._closed:
                raise ConnectError("Connection cache is closed", namespace=namespace)

            # Another waiter may have connected while we queued
            connection = self._connections.get(namespace)
            if connection is not None:
                return connection

            logger.info(f"Connecting namespace '{namespace}' to {self._url}")
            self.connect_attempts += 1
            try:
                connection = await self._storage.connect(self._url, namespace)
            except ConnectError:
                raise
            except Exception as e:
                raise ConnectError(f"Cannot connect to {self._url}: {e}", namespace=namespace) from e

            if self._closed:
                # close_all ran while we were connecting
                await self._close(namespace, connection)
                raise ConnectError("Connection cache closed during connect", namespace=namespace)

            self._connections[namespace] = connection
            return connection

    async def close_all(self) -> None:
        """Close every cached connection, empty the cache and refuse new connects."""
        self._closed = True
        connections, self._connections = self._connections, {}
        for namespace, connection in connections.items():
            await self._close(namespace, connection)
        if connections:
            logger.info(f"Closed {len(connections)} connection(s)")

    async def _close(self, namespace: str, connection: Any) -> None:
        try:
            await self._storage.close(connection)
        except Exception as e:
            logger.warning(f"Failed to close connection for '{namespace}': {e}")
