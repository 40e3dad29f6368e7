"""
Location enrichment entrypoint.

The dispatch strategy (durable queue or in-process) is picked once when the
application starts and injected into the entrypoint; it is never
re-evaluated per request.
"""

import asyncio

from app.config import ENRICHMENT_MODE_DIRECT, ENRICHMENT_MODE_QUEUE
from app.features.location_enrichment.services.direct_processor import DirectLocationProcessor
from app.features.location_enrichment.services.enrichment_queue import LocationEnrichmentQueue
from app.features.location_enrichment.services.processor import LocationEnrichmentProcessor
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)


class QueueEnrichmentStrategy:
    mode = ENRICHMENT_MODE_QUEUE

    def __init__(self, queue: LocationEnrichmentQueue):
        self.queue = queue

    async def dispatch(self, owner_id: str, contact_index: int, ip_address: str) -> None:
        await self.queue.enqueue(owner_id, contact_index, ip_address)

    async def shutdown(self) -> None:
        return None


class DirectEnrichmentStrategy:
    mode = ENRICHMENT_MODE_DIRECT

    def __init__(self, processor: DirectLocationProcessor):
        self.processor = processor

    async def dispatch(
        self, owner_id: str, contact_index: int, ip_address: str
    ) -> asyncio.Task:
        return self.processor.submit(owner_id, contact_index, ip_address)

    async def shutdown(self) -> None:
        await self.processor.drain()


EnrichmentStrategy = QueueEnrichmentStrategy | DirectEnrichmentStrategy


async def build_enrichment_strategy(
    mode: str,
    processor: LocationEnrichmentProcessor,
    redis_client: FastRedisClient | None = None,
) -> EnrichmentStrategy:
    """
    Choose the dispatch strategy at startup.

    Queue mode needs a reachable broker; when the ping fails we log and fall
    back to direct processing instead of failing startup.
    """
    if mode == ENRICHMENT_MODE_QUEUE:
        if redis_client is not None and await redis_client.ping():
            logger.info("Location enrichment using Redis queue")
            return QueueEnrichmentStrategy(LocationEnrichmentQueue(redis_client=redis_client))

        logger.warning(
            "Redis broker unavailable, falling back to direct location processing",
            requested_mode=mode,
        )

    logger.info("Location enrichment using direct processing")
    return DirectEnrichmentStrategy(DirectLocationProcessor(processor))


class LocationEnrichmentEntrypoint:
    """Thin dispatcher called by the contact creation flow."""

    def __init__(self, strategy: EnrichmentStrategy):
        self.strategy = strategy

    @property
    def mode(self) -> str:
        return self.strategy.mode

    async def enqueue(self, owner_id: str, contact_index: int, ip_address: str | None) -> bool:
        """
        Request enrichment for one contact.

        Returns False when the request is incomplete, True once dispatched.
        Never raises; enrichment success is not reported to the caller.
        """
        if (
            not owner_id
            or not isinstance(contact_index, int)
            or isinstance(contact_index, bool)
            or not ip_address
        ):
            logger.warning(
                "Missing required data for location processing",
                owner_id=owner_id,
                contact_index=contact_index,
                has_ip=bool(ip_address),
            )
            return False

        try:
            await self.strategy.dispatch(owner_id, contact_index, ip_address)
        except Exception as e:
            logger.error(
                "Failed to dispatch location enrichment",
                owner_id=owner_id,
                contact_index=contact_index,
                mode=self.mode,
                error=str(e),
            )
        return True

    async def shutdown(self) -> None:
        await self.strategy.shutdown()
