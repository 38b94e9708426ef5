"""
Capped collection provisioning.
"""

from typing import Any

from statsd_mongo.config import BackendConfig
from statsd_mongo.errors import ProvisionError, SinkError
from statsd_mongo.logging import get_logger
from statsd_mongo.storage import StorageBackend

logger = get_logger(__name__)


def capacity_policy(config: BackendConfig) -> dict[str, Any]:
    """Capped collection options; configured collection_options win on conflict."""
    return {
        "capped": True,
        "size": config.collection_size,
        "max": config.max_documents,
        **config.collection_options,
    }


class CollectionProvisioner:
    """
    Ensures the destination collection exists before the first insert.

    Creation is delegated to the storage layer, which treats "already exists"
    as success. Handles are remembered per (namespace, collection) so later
    flushes skip the create round trip.
    """

    def __init__(self, storage: StorageBackend, policy: dict[str, Any]):
        self._storage = storage
        self._policy = dict(policy)
        self._collections: dict[tuple[str, str], Any] = {}

    @property
    def policy(self) -> dict[str, Any]:
        return dict(self._policy)

    async def ensure(self, namespace: str, connection: Any, name: str) -> Any:
        """
        Get or create a capped collection.

        Raises:
            ProvisionError: creation failed for any reason other than
                the collection already existing
        """
        key = (namespace, name)
        collection = self._collections.get(key)
        if collection is not None:
            return collection

        try:
            collection = await self._storage.create_collection(connection, name, self.policy)
        except SinkError as e:
            if isinstance(e, ProvisionError):
                raise
            raise ProvisionError(e.message, namespace=namespace, collection=name) from e
        except Exception as e:
            raise ProvisionError(f"createCollection failed: {e}", namespace=namespace, collection=name) from e

        self._collections[key] = collection
        logger.debug(f"Collection ready: {namespace}.{name}")
        return collection

    def forget(self, namespace: str | None = None) -> None:
        """Drop remembered handles for one namespace, or all of them."""
        if namespace is None:
            self._collections.clear()
            return
        for key in [k for k in self._collections if k[0] == namespace]:
            del self._collections[key]
