"""
Durable location enrichment queue backed by Redis.

Layout:
- ``location_enrichment:queue``                 ready jobs (LPUSH / BRPOPLPUSH)
- ``location_enrichment:inflight:{worker_id}``  jobs claimed by one worker, removed on ack
- ``location_enrichment:delayed``               sorted set of retries, scored by due time
- ``location_enrichment:workers``               set of worker ids that may own in-flight jobs
- ``location_enrichment:heartbeat:{worker_id}`` TTL key refreshed while the worker lives

A worker only recovers in-flight lists whose owner's heartbeat has lapsed,
so starting another worker never re-delivers jobs that are still running.

A job gets at most ``max_attempts`` attempts. A failed attempt is parked in
the delayed set for ``backoff_base * 2 ** (attempt - 1)`` seconds; after the
last attempt the job is logged and dropped. An unresolvable IP is a
successful no-op and is never retried.
"""

import asyncio
import time
import uuid
from collections.abc import Callable

from app.config import settings
from app.features.location_enrichment.domain import EnrichmentJob
from app.features.location_enrichment.services.processor import LocationEnrichmentProcessor
from app.infrastructure.observability.logging import get_logger, log_enrichment_outcome
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

QUEUE_KEY = "location_enrichment:queue"
INFLIGHT_KEY = "location_enrichment:inflight"
DELAYED_KEY = "location_enrichment:delayed"
WORKERS_KEY = "location_enrichment:workers"
HEARTBEAT_KEY = "location_enrichment:heartbeat"

RESULT_RETRY_SCHEDULED = "retry_scheduled"
RESULT_ABANDONED = "abandoned"
RESULT_DROPPED = "dropped"


def inflight_key(worker_id: str) -> str:
    return f"{INFLIGHT_KEY}:{worker_id}"


def heartbeat_key(worker_id: str) -> str:
    return f"{HEARTBEAT_KEY}:{worker_id}"


class EnrichmentQueueError(Exception):
    """Raised for misuse of the queue (e.g. consuming without a processor)."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class LocationEnrichmentQueue:
    """Producer and consumer sides of the enrichment job pipeline."""

    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        processor: LocationEnrichmentProcessor | None = None,
        max_attempts: int | None = None,
        backoff_base_seconds: float | None = None,
        job_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        worker_id: str | None = None,
        heartbeat_ttl_seconds: int | None = None,
    ):
        self.redis = redis_client or fast_redis
        self.processor = processor
        self.max_attempts = max_attempts or settings.LOCATION_QUEUE_MAX_ATTEMPTS
        self.backoff_base_seconds = (
            backoff_base_seconds
            if backoff_base_seconds is not None
            else settings.LOCATION_QUEUE_BACKOFF_BASE_SECONDS
        )
        self.job_timeout_seconds = job_timeout_seconds or settings.LOCATION_JOB_TIMEOUT_SECONDS
        self._clock = clock
        self.worker_id = worker_id or uuid.uuid4().hex[:12]
        self.inflight_key = inflight_key(self.worker_id)
        self.heartbeat_ttl_seconds = (
            heartbeat_ttl_seconds or settings.LOCATION_WORKER_HEARTBEAT_TTL_SECONDS
        )

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before the attempt that follows failed attempt ``attempt``."""
        return self.backoff_base_seconds * (2 ** (attempt - 1))

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def enqueue(self, owner_id: str, contact_index: int, ip_address: str) -> None:
        """Push a job; the caller gets no acknowledgment either way."""
        job = EnrichmentJob(
            owner_id=owner_id,
            contact_index=contact_index,
            ip_address=ip_address,
            enqueued_at=self._clock(),
        )
        pushed = await self.redis.push_to_list(QUEUE_KEY, job.to_payload())
        if pushed:
            logger.info(
                "Queued location lookup",
                job_id=job.job_id,
                owner_id=owner_id,
                contact_index=contact_index,
            )
        else:
            logger.error(
                "Failed to queue location lookup",
                job_id=job.job_id,
                owner_id=owner_id,
                contact_index=contact_index,
            )

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def heartbeat(self) -> None:
        """Register this worker and refresh its liveness key."""
        await self.redis.add_to_set(WORKERS_KEY, self.worker_id)
        await self.redis.set_with_ttl(
            heartbeat_key(self.worker_id), str(self._clock()), self.heartbeat_ttl_seconds
        )

    async def recover_inflight(self) -> int:
        """Return jobs held by workers whose heartbeat lapsed to the ready list."""
        moved = 0
        for worker_id in sorted(await self.redis.set_members(WORKERS_KEY)):
            if worker_id == self.worker_id:
                continue
            try:
                alive = await self.redis.exists_or_raise(heartbeat_key(worker_id))
            except Exception as e:
                logger.warning(
                    "Could not check worker heartbeat, skipping recovery",
                    worker_id=worker_id,
                    error=str(e),
                )
                continue
            if alive:
                continue

            recovered = await self.redis.requeue_all_inflight(inflight_key(worker_id), QUEUE_KEY)
            if await self.redis.list_length(inflight_key(worker_id)) == 0:
                await self.redis.remove_from_set(WORKERS_KEY, worker_id)
            if recovered:
                logger.warning(
                    "Recovered in-flight location jobs",
                    dead_worker_id=worker_id,
                    count=recovered,
                )
            moved += recovered
        return moved

    async def promote_due_retries(self) -> int:
        return await self.redis.promote_due(DELAYED_KEY, QUEUE_KEY, self._clock())

    async def process_next(self, timeout: int = 0) -> str | None:
        """
        Claim and run one job.

        Returns the job outcome, RESULT_RETRY_SCHEDULED, RESULT_ABANDONED,
        RESULT_DROPPED, or None when no job was available.
        """
        if self.processor is None:
            raise EnrichmentQueueError(
                "Queue has no processor configured", operation="process_next"
            )

        await self.promote_due_retries()

        payload = await self.redis.pop_to_inflight(QUEUE_KEY, self.inflight_key, timeout=timeout)
        if payload is None:
            return None

        try:
            job = EnrichmentJob.from_payload(payload)
        except ValueError as e:
            logger.error("Dropping undecodable location job", error=str(e), payload=payload[:100])
            await self.redis.ack_from_inflight(self.inflight_key, payload)
            return RESULT_DROPPED

        job.attempts += 1

        try:
            outcome = await asyncio.wait_for(
                self.processor.run(job.owner_id, job.contact_index, job.ip_address),
                timeout=self.job_timeout_seconds,
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            return await self._handle_failure(job, payload, error)

        await self.redis.ack_from_inflight(self.inflight_key, payload)
        log_enrichment_outcome(
            outcome,
            owner_id=job.owner_id,
            contact_index=job.contact_index,
            mode="queue",
            attempt=job.attempts,
        )
        return outcome

    async def _handle_failure(self, job: EnrichmentJob, payload: str, error: str) -> str:
        if job.attempts >= self.max_attempts:
            await self.redis.ack_from_inflight(self.inflight_key, payload)
            log_enrichment_outcome(
                "abandoned",
                owner_id=job.owner_id,
                contact_index=job.contact_index,
                mode="queue",
                attempt=job.attempts,
                error=error,
            )
            return RESULT_ABANDONED

        delay = self.backoff_seconds(job.attempts)
        scheduled = await self.redis.schedule_from_inflight(
            self.inflight_key,
            DELAYED_KEY,
            payload,
            job.to_payload(),
            self._clock() + delay,
        )
        logger.warning(
            "Location job failed, retry scheduled",
            job_id=job.job_id,
            owner_id=job.owner_id,
            contact_index=job.contact_index,
            attempt=job.attempts,
            max_attempts=self.max_attempts,
            backoff_seconds=delay,
            scheduled=scheduled,
            error=error,
        )
        return RESULT_RETRY_SCHEDULED

    async def run_worker(
        self,
        concurrency: int | None = None,
        poll_seconds: int | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run consumers until ``stop_event`` is set."""
        concurrency = concurrency or settings.LOCATION_WORKER_CONCURRENCY
        poll_seconds = poll_seconds or settings.LOCATION_WORKER_POLL_SECONDS
        stop_event = stop_event or asyncio.Event()

        await self.heartbeat()
        await self.recover_inflight()
        logger.info(
            "Location enrichment worker started",
            worker_id=self.worker_id,
            concurrency=concurrency,
            poll_seconds=poll_seconds,
            max_attempts=self.max_attempts,
        )

        async def _consume(consumer_id: int) -> None:
            while not stop_event.is_set():
                try:
                    await self.process_next(timeout=poll_seconds)
                except Exception as e:
                    logger.error(
                        "Location consumer loop error",
                        consumer_id=consumer_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(1)

        async def _beat() -> None:
            interval = max(self.heartbeat_ttl_seconds / 3, 0.01)
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    await self.heartbeat()

        await asyncio.gather(_beat(), *(_consume(i) for i in range(concurrency)))

        if await self.redis.list_length(self.inflight_key) == 0:
            await self.redis.delete(heartbeat_key(self.worker_id))
            await self.redis.remove_from_set(WORKERS_KEY, self.worker_id)
        logger.info("Location enrichment worker stopped", worker_id=self.worker_id)

    async def stats(self) -> dict:
        worker_ids = await self.redis.set_members(WORKERS_KEY) | {self.worker_id}
        inflight = 0
        for worker_id in worker_ids:
            inflight += await self.redis.list_length(inflight_key(worker_id))
        return {
            "ready": await self.redis.list_length(QUEUE_KEY),
            "inflight": inflight,
            "delayed": await self.redis.sorted_set_size(DELAYED_KEY),
        }
