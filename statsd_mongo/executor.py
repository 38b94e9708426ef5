"""
Insert executor: connect -> ensure collection -> insert, for one routed metric.
"""

from statsd_mongo.connections import ConnectionCache
from statsd_mongo.errors import InsertError
from statsd_mongo.logging import LogContext, get_logger
from statsd_mongo.models import RoutedMetric
from statsd_mongo.provisioner import CollectionProvisioner
from statsd_mongo.storage import StorageBackend

logger = get_logger(__name__)


class InsertExecutor:
    """
    Writes a single routed metric.

    Each stage short-circuits the rest on failure and raises its own error
    type (ConnectError, ProvisionError, InsertError). Only one document is
    written per call.
    """

    def __init__(
        self,
        storage: StorageBackend,
        connections: ConnectionCache,
        provisioner: CollectionProvisioner,
        debug: bool = False,
    ):
        self._storage = storage
        self._connections = connections
        self._provisioner = provisioner
        self._debug = debug

    async def execute(self, routed: RoutedMetric) -> None:
        with LogContext.scope("insert", namespace=routed.namespace, collection=routed.collection):
            connection = await self._connections.acquire(routed.namespace)
            collection = await self._provisioner.ensure(routed.namespace, connection, routed.collection)

            try:
                await self._storage.insert_document(collection, routed.document)
            except InsertError:
                raise
            except Exception as e:
                raise InsertError(
                    f"insert failed: {e}", namespace=routed.namespace, collection=routed.collection
                ) from e

            if self._debug:
                logger.info(f"Inserted {routed.name or routed.collection} at {routed.document.get('time')}")
