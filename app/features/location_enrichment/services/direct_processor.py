"""
In-process enrichment for deployments without a Redis broker.

Work runs as background tasks on the serving event loop, capped by a
semaphore. There is no retry and no backoff: a failure is logged and the
enrichment is lost.
"""

import asyncio

from app.config import settings
from app.features.location_enrichment.services.processor import LocationEnrichmentProcessor
from app.infrastructure.observability.logging import get_logger, log_enrichment_outcome

logger = get_logger(__name__)


class DirectLocationProcessor:
    """Bounded fire-and-forget pool around LocationEnrichmentProcessor."""

    def __init__(
        self,
        processor: LocationEnrichmentProcessor,
        max_concurrency: int | None = None,
    ):
        self.processor = processor
        self.max_concurrency = max_concurrency or settings.DIRECT_MAX_CONCURRENCY
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, owner_id: str, contact_index: int, ip_address: str) -> asyncio.Task:
        """
        Schedule enrichment and return immediately.

        The returned task never raises; callers may await it (tests) or ignore it.
        """
        task = asyncio.create_task(
            self._run(owner_id, contact_index, ip_address),
            name=f"location-enrichment:{owner_id}:{contact_index}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, owner_id: str, contact_index: int, ip_address: str) -> str:
        async with self._semaphore:
            logger.debug(
                "Direct location processing",
                owner_id=owner_id,
                contact_index=contact_index,
            )
            try:
                outcome = await self.processor.run(owner_id, contact_index, ip_address)
            except Exception as e:
                log_enrichment_outcome(
                    "failed",
                    owner_id=owner_id,
                    contact_index=contact_index,
                    mode="direct",
                    error=str(e) or type(e).__name__,
                )
                return "failed"

        log_enrichment_outcome(
            outcome, owner_id=owner_id, contact_index=contact_index, mode="direct"
        )
        return outcome

    async def drain(self) -> None:
        """Wait for outstanding tasks (used on shutdown)."""
        if self._tasks:
            logger.info("Draining direct location tasks", pending=len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
