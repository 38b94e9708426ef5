"""
Flush event models.

- MetricKind: the five metric families statsd flushes
- MetricBatch: one flush worth of metrics, keyed by kind then metric name
- RoutedMetric: one metric resolved to its destination and document

Values are checked one metric at a time when their document is built, so a
malformed value only fails its own metric.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from statsd_mongo.errors import MetricValueError
from statsd_mongo.logging import get_logger

logger = get_logger(__name__)


class MetricKind(str, Enum):
    """Metric families, in flush order."""

    GAUGES = "gauges"
    TIMER_DATA = "timer_data"
    TIMERS = "timers"
    COUNTERS = "counters"
    SETS = "sets"

    @property
    def tag(self) -> str:
        """Collection name tag. timer_data shares the timers collection."""
        if self is MetricKind.TIMER_DATA:
            return MetricKind.TIMERS.value
        return self.value

    def build_document(self, timestamp: int, value: Any) -> dict[str, Any]:
        """
        Build the stored document for one metric value.

        Raises:
            MetricValueError: value has the wrong shape for this kind
        """
        adapter = _VALUE_ADAPTERS.get(self)
        if adapter is not None:
            try:
                value = adapter.validate_python(value)
            except ValidationError as e:
                raise MetricValueError(
                    f"Invalid {self.value} value: {e.errors()[0]['msg']}", detail=e.errors()
                ) from e

        if self is MetricKind.TIMER_DATA:
            return {**value, "time": timestamp}
        return {"time": timestamp, _PAYLOAD_FIELDS[self]: value}


_PAYLOAD_FIELDS = {
    MetricKind.GAUGES: "gauge",
    MetricKind.TIMERS: "durations",
    MetricKind.COUNTERS: "count",
    MetricKind.SETS: "set",
}

# Scalar kinds are stored as given
_VALUE_ADAPTERS = {
    MetricKind.TIMERS: TypeAdapter(list[Any]),
    MetricKind.TIMER_DATA: TypeAdapter(dict[str, Any]),
}


class MetricBatch(BaseModel):
    """Aggregated metrics handed over on a flush. Unknown keys are ignored."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    gauges: dict[str, Any] = Field(default_factory=dict)
    timer_data: dict[str, Any] = Field(default_factory=dict)
    timers: dict[str, Any] = Field(default_factory=dict)
    counters: dict[str, Any] = Field(default_factory=dict)
    sets: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_flush(cls, metrics: "Mapping[str, Any] | MetricBatch | None") -> "MetricBatch":
        if isinstance(metrics, MetricBatch):
            return metrics

        families: dict[str, Any] = {}
        for kind in MetricKind:
            family = (metrics or {}).get(kind.value)
            # statsd sends null for families with nothing to report
            if family is None:
                continue
            if not isinstance(family, Mapping):
                logger.warning(f"Skipping {kind.value}: expected a mapping, got {type(family).__name__}")
                continue
            families[kind.value] = dict(family)
        return cls(**families)

    def items(self) -> Iterator[tuple[MetricKind, str, Any]]:
        """Yield (kind, name, value) for every metric in the batch."""
        for kind in MetricKind:
            for name, value in getattr(self, kind.value).items():
                yield kind, name, value

    def __len__(self) -> int:
        return sum(len(getattr(self, kind.value)) for kind in MetricKind)


@dataclass(frozen=True)
class RoutedMetric:
    """A metric resolved to namespace, collection and document."""

    namespace: str
    collection: str
    document: dict[str, Any] = field(default_factory=dict)
    kind: MetricKind | None = None
    name: str = ""

    @property
    def target(self) -> str:
        return f"{self.namespace}/{self.collection}"
