"""
Flush demo - writes a couple of statsd flushes into MongoDB.

Usage:
    STATSD_MONGO_URL=mongodb://localhost:27017 python examples/flush_demo.py

Set STATSD_MONGO_MEMORY=true to run against in-memory storage instead.
"""

import asyncio
import os
import time

from statsd_mongo import MongoBackend, MemoryStorage, load_config
from statsd_mongo.logging import setup_logging


async def main():
    """Run two flushes and print the reports."""
    setup_logging(log_level="DEBUG", file=False)

    # 1. Load configuration (.env + STATSD_MONGO_* variables)
    config = load_config()
    storage = MemoryStorage() if os.getenv("STATSD_MONGO_MEMORY", "").lower() == "true" else None

    # 2. Flush twice, one interval apart
    async with MongoBackend(config, storage=storage) as backend:
        now = int(time.time())
        for offset in (0, config.flush_rate):
            report = await backend.flush(now + offset, {
                "counters": {"web.hits": 42},
                "gauges": {"web.server1.cpu": 0.73},
                "timers": {"web.render": [12, 18, 25]},
                "timer_data": {"web.render": {"mean": 18.3, "upper": 25, "count": 3}},
                "sets": {"web.users": 7},
            })
            print(f"flush {report.timestamp}: {report.succeeded}/{report.attempted} written, {report.failed} failed")

        if isinstance(storage, MemoryStorage):
            print(storage.documents("web", f"counters.hits_{config.flush_rate}"))


if __name__ == "__main__":
    asyncio.run(main())
