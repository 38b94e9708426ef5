"""
Storage implementations for the flush pipeline.

Supports:
- MongoDB via Motor (one client per namespace, database = namespace)
- In-memory storage (development and testing)

Both raise the pipeline error types; callers never see driver exceptions.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError

from statsd_mongo.errors import ConnectError, InsertError, ProvisionError
from statsd_mongo.logging import get_logger

logger = get_logger(__name__)

# Server error code for "collection already exists"
NAMESPACE_EXISTS = 48


# =============================================================================
# Storage Interface
# =============================================================================


class StorageBackend(Protocol):
    """Storage capabilities the pipeline relies on."""

    async def connect(self, url: str, namespace: str) -> Any:
        """Open a connection bound to `namespace`. Raises ConnectError."""
        ...

    async def create_collection(self, connection: Any, name: str, options: dict[str, Any]) -> Any:
        """Create `name` if absent and return it. Raises ProvisionError."""
        ...

    async def insert_document(self, collection: Any, document: dict[str, Any]) -> None:
        """Insert one document. Raises InsertError."""
        ...

    async def close(self, connection: Any) -> None:
        """Release a connection."""
        ...


# =============================================================================
# MongoDB Implementation
# =============================================================================


@dataclass
class MongoConnection:
    """Motor client plus the database handle for one namespace."""

    client: Any
    database: Any

    @property
    def namespace(self) -> str:
        return self.database.name


class MotorStorage:
    """
    MongoDB storage backed by Motor.

    Usage:
        ```python
        storage = MotorStorage(connect_timeout_ms=3000)
        conn = await storage.connect("mongodb://localhost:27017", "app")
        coll = await storage.create_collection(conn, "gauges.cpu_10", {"capped": True, "size": 216000, "max": 2160})
        await storage.insert_document(coll, {"time": 1000, "gauge": 0.5})
        ```
    """

    def __init__(self, connect_timeout_ms: int = 3000):
        self.connect_timeout_ms = connect_timeout_ms

    async def connect(self, url: str, namespace: str) -> MongoConnection:
        client = AsyncIOMotorClient(url, serverSelectionTimeoutMS=self.connect_timeout_ms)
        try:
            # Motor connects lazily; ping forces server selection
            await client.admin.command("ping")
        except PyMongoError as e:
            client.close()
            raise ConnectError(f"Cannot connect to {url}: {e}", namespace=namespace) from e
        return MongoConnection(client=client, database=client[namespace])

    async def create_collection(self, connection: MongoConnection, name: str, options: dict[str, Any]) -> Any:
        database = connection.database
        try:
            return await database.create_collection(name, **options)
        except CollectionInvalid:
            logger.debug(f"Collection already exists: {database.name}.{name}")
            return database[name]
        except OperationFailure as e:
            if e.code == NAMESPACE_EXISTS:
                return database[name]
            raise ProvisionError(
                f"createCollection failed: {e}", namespace=database.name, collection=name
            ) from e
        except PyMongoError as e:
            raise ProvisionError(
                f"createCollection failed: {e}", namespace=database.name, collection=name
            ) from e

    async def insert_document(self, collection: Any, document: dict[str, Any]) -> None:
        try:
            # insert_one adds _id to the dict it is given
            await collection.insert_one(dict(document))
        except PyMongoError as e:
            raise InsertError(
                f"insert failed: {e}",
                namespace=collection.database.name,
                collection=collection.name,
            ) from e

    async def close(self, connection: MongoConnection) -> None:
        connection.client.close()


# =============================================================================
# Memory Implementation
# =============================================================================


@dataclass
class MemoryCollection:
    """Capped in-memory collection."""

    name: str
    options: dict[str, Any] = field(default_factory=dict)
    documents: deque = field(default_factory=deque)

    def __post_init__(self):
        if self.options.get("capped") and self.options.get("max"):
            self.documents = deque(self.documents, maxlen=int(self.options["max"]))


@dataclass
class MemoryConnection:
    namespace: str
    collections: dict[str, MemoryCollection] = field(default_factory=dict)
    closed: bool = False


class MemoryStorage:
    """Memory implementation (for development and testing)."""

    def __init__(self):
        self.connections: list[MemoryConnection] = []
        self._databases: dict[str, dict[str, MemoryCollection]] = {}

    async def connect(self, url: str, namespace: str) -> MemoryConnection:
        collections = self._databases.setdefault(namespace, {})
        connection = MemoryConnection(namespace=namespace, collections=collections)
        self.connections.append(connection)
        return connection

    async def create_collection(self, connection: MemoryConnection, name: str, options: dict[str, Any]) -> MemoryCollection:
        if connection.closed:
            raise ProvisionError("connection closed", namespace=connection.namespace, collection=name)
        if name not in connection.collections:
            connection.collections[name] = MemoryCollection(name=name, options=dict(options))
        return connection.collections[name]

    async def insert_document(self, collection: MemoryCollection, document: dict[str, Any]) -> None:
        collection.documents.append(dict(document))

    async def close(self, connection: MemoryConnection) -> None:
        connection.closed = True

    def documents(self, namespace: str, collection: str) -> list[dict[str, Any]]:
        """Stored documents, oldest first."""
        coll = self._databases.get(namespace, {}).get(collection)
        return list(coll.documents) if coll else []

    def collection(self, namespace: str, name: str) -> MemoryCollection | None:
        return self._databases.get(namespace, {}).get(name)
