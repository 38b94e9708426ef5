"""
Naming policy: metric name -> (namespace, collection).

With prefix routing, `app.server1.latency` lands in namespace `app`,
collection `<tag>.server1.latency_<rate>`. Without it, everything lands in
the fallback namespace and the full name is kept.
"""

from dataclasses import replace
from typing import Any

from statsd_mongo.config import BackendConfig
from statsd_mongo.models import MetricKind, RoutedMetric


class NamingPolicy:
    """Pure, stateless routing of metric names."""

    def __init__(self, use_prefix: bool, fallback_namespace: str, flush_rate: int):
        self.use_prefix = use_prefix
        self.fallback_namespace = fallback_namespace
        self.flush_rate = flush_rate

    @classmethod
    def from_config(cls, config: BackendConfig) -> "NamingPolicy":
        return cls(config.use_prefix, config.fallback_namespace, config.flush_rate)

    def namespace_for(self, metric_name: str) -> str:
        if self.use_prefix:
            return metric_name.split(".")[0]
        return self.fallback_namespace

    def collection_for(self, kind: MetricKind | str, metric_name: str) -> str:
        """
        Collection name for a metric.

        A dotless name under prefix routing has nothing left after the
        namespace segment and yields `<tag>_<rate>`.
        """
        tag = MetricKind(kind).tag
        segments = metric_name.split(".")
        if self.use_prefix:
            segments = segments[1:]
        return ".".join([tag, *segments]) + f"_{self.flush_rate}"

    def destination(self, kind: MetricKind, metric_name: str) -> RoutedMetric:
        """Namespace and collection for a metric, without a document."""
        return RoutedMetric(
            namespace=self.namespace_for(metric_name),
            collection=self.collection_for(kind, metric_name),
            kind=kind,
            name=metric_name,
        )

    def route(self, kind: MetricKind, timestamp: int, metric_name: str, value: Any) -> RoutedMetric:
        """
        Raises:
            MetricValueError: value has the wrong shape for `kind`
        """
        return replace(self.destination(kind, metric_name), document=kind.build_document(timestamp, value))
