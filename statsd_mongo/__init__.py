"""
statsd MongoDB backend.

Persists statsd flushes into time-bucketed, capped MongoDB collections.
"""

from statsd_mongo.backend import MongoBackend
from statsd_mongo.config import BackendConfig, load_config
from statsd_mongo.connections import ConnectionCache
from statsd_mongo.dispatcher import FlushDispatcher, FlushReport
from statsd_mongo.errors import (
    ConfigurationError,
    ConnectError,
    InsertError,
    MetricValueError,
    ProvisionError,
    SinkError,
)
from statsd_mongo.executor import InsertExecutor
from statsd_mongo.models import MetricBatch, MetricKind, RoutedMetric
from statsd_mongo.naming import NamingPolicy
from statsd_mongo.provisioner import CollectionProvisioner, capacity_policy
from statsd_mongo.storage import MemoryStorage, MotorStorage, StorageBackend

__all__ = [
    "MongoBackend",
    "BackendConfig",
    "load_config",
    "ConnectionCache",
    "FlushDispatcher",
    "FlushReport",
    "ConfigurationError",
    "ConnectError",
    "InsertError",
    "MetricValueError",
    "ProvisionError",
    "SinkError",
    "InsertExecutor",
    "MetricBatch",
    "MetricKind",
    "RoutedMetric",
    "NamingPolicy",
    "CollectionProvisioner",
    "capacity_policy",
    "MemoryStorage",
    "MotorStorage",
    "StorageBackend",
]
