"""
Location enrichment worker.

Runs inside the worker service: pops enrichment jobs from Redis and
delegates each one to the geo resolver and contact location writer.
"""

import asyncio
import signal

from app.config import settings
from app.features.location_enrichment.repository.contact_repository import RedisContactStore
from app.features.location_enrichment.services.enrichment_queue import LocationEnrichmentQueue
from app.features.location_enrichment.services.geo_resolver import GeoResolver
from app.features.location_enrichment.services.location_writer import ContactLocationWriter
from app.features.location_enrichment.services.processor import LocationEnrichmentProcessor
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms (e.g. Windows)
            pass


async def start_location_enrichment_worker(stop_event: asyncio.Event | None = None) -> None:
    """Entry point for the location enrichment worker process."""
    stop_event = stop_event or asyncio.Event()
    _install_signal_handlers(stop_event)

    broker_url = settings.queue_redis_url()
    if not broker_url:
        logger.error(
            "Location enrichment worker needs a broker",
            setting="LOCATION_QUEUE_REDIS_URL",
        )
        return

    broker = FastRedisClient(broker_url)
    await fast_redis.initialize()
    await broker.initialize()
    resolver = GeoResolver()
    processor = LocationEnrichmentProcessor(
        resolver=resolver,
        writer=ContactLocationWriter(RedisContactStore(fast_redis)),
    )
    queue = LocationEnrichmentQueue(redis_client=broker, processor=processor)

    try:
        await queue.run_worker(
            concurrency=settings.LOCATION_WORKER_CONCURRENCY,
            poll_seconds=settings.LOCATION_WORKER_POLL_SECONDS,
            stop_event=stop_event,
        )
    finally:
        await resolver.close()
        await broker.close()
        await fast_redis.close()


if __name__ == "__main__":
    asyncio.run(start_location_enrichment_worker())
