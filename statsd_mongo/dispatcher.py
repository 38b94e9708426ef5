"""
Flush dispatcher.

Fans one flush out into one insert task per (kind, metric name). Tasks run
concurrently under a semaphore; a failure in one never affects the others and
never escapes `dispatch`.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping

from statsd_mongo.errors import SinkError
from statsd_mongo.executor import InsertExecutor
from statsd_mongo.logging import LogContext, LogLevel, get_logger
from statsd_mongo.models import MetricBatch, MetricKind, RoutedMetric
from statsd_mongo.naming import NamingPolicy

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 100


@dataclass
class FlushReport:
    """Outcome of one flush. Only used for logging and tests."""

    timestamp: int
    attempted: int = 0
    succeeded: int = 0
    failures: list[tuple[RoutedMetric, Exception]] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


class FlushDispatcher:
    """
    Routes a metric batch and runs the inserts.

    Usage:
        ```python
        dispatcher = FlushDispatcher(naming, executor, max_concurrency=100)
        report = await dispatcher.dispatch(1000, {"counters": {"web.hits": 5}})
        ```
    """

    def __init__(
        self,
        naming: NamingPolicy,
        executor: InsertExecutor,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        debug: bool = False,
    ):
        self._naming = naming
        self._executor = executor
        self._max_concurrency = max_concurrency
        self._debug = debug

    async def dispatch(self, timestamp: int, metrics: "Mapping[str, Any] | MetricBatch | None") -> FlushReport:
        report = FlushReport(timestamp=timestamp)

        with LogContext.operation("flush", level=LogLevel.DEBUG, flush_time=timestamp):
            try:
                batch = MetricBatch.from_flush(metrics)
            except Exception as e:
                logger.error(f"Invalid flush payload at {timestamp}: {e}")
                return report

            items = list(batch.items())
            report.attempted = len(items)
            if not items:
                return report

            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def route_and_execute(kind: MetricKind, name: str, value: Any) -> None:
                # Routing happens here so a malformed value only fails its own metric
                routed = self._naming.route(kind, timestamp, name, value)
                async with semaphore:
                    await self._executor.execute(routed)

            results = await asyncio.gather(
                *[route_and_execute(kind, name, value) for kind, name, value in items],
                return_exceptions=True,
            )

            for (kind, name, _), result in zip(items, results):
                if isinstance(result, BaseException):
                    self._record_failure(report, self._naming.destination(kind, name), result)
                else:
                    report.succeeded += 1

        if self._debug:
            logger.info(f"flush done: {report.succeeded}/{report.attempted} written at {timestamp}")
        return report

    @staticmethod
    def _record_failure(report: FlushReport, item: RoutedMetric, error: BaseException) -> None:
        if isinstance(error, SinkError):
            logger.error(f"{type(error).__name__} for {item.target}: {error.message}")
        elif isinstance(error, Exception):
            logger.error(f"Unexpected error for {item.target}: {error}", exc_info=error)
        else:
            # CancelledError and friends
            logger.warning(f"Insert aborted for {item.target}: {error!r}")
            error = Exception(repr(error))
        report.failures.append((item, error))
