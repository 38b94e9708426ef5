"""
Error taxonomy for the flush pipeline.

Every pipeline error is terminal for the single routed metric that raised it.
The dispatcher catches and logs them; they never reach the flush caller.
"""

from typing import Any


class SinkError(Exception):
    """Base error for the metrics sink."""

    def __init__(
        self,
        message: str,
        namespace: str | None = None,
        collection: str | None = None,
        detail: Any = None,
    ):
        self.message = message
        self.namespace = namespace
        self.collection = collection
        self.detail = detail
        super().__init__(message)

    @property
    def target(self) -> str:
        """`namespace/collection` the failure applies to."""
        if self.namespace and self.collection:
            return f"{self.namespace}/{self.collection}"
        return self.namespace or self.collection or "-"


class ConnectError(SinkError):
    """Storage connection could not be established."""


class ProvisionError(SinkError):
    """Destination collection could not be created or verified."""


class InsertError(SinkError):
    """Document write rejected by the storage layer."""


class MetricValueError(SinkError):
    """Metric value does not have the shape its kind requires."""


class ConfigurationError(SinkError):
    """Invalid backend configuration; startup must be rejected."""

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message, detail=detail)
