"""
Application entrypoint with Redis and location enrichment lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import ENRICHMENT_MODE_QUEUE, settings
from app.features.location_enrichment import location_router
from app.features.location_enrichment.repository.contact_repository import RedisContactStore
from app.features.location_enrichment.services.entrypoint import (
    LocationEnrichmentEntrypoint,
    build_enrichment_strategy,
)
from app.features.location_enrichment.services.geo_resolver import GeoResolver
from app.features.location_enrichment.services.location_writer import ContactLocationWriter
from app.features.location_enrichment.services.processor import LocationEnrichmentProcessor
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import health
from app.services.redis_client import FastRedisClient, fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


def _queue_broker() -> FastRedisClient | None:
    """Broker client when queue mode is requested and configured."""
    if settings.enrichment_mode() != ENRICHMENT_MODE_QUEUE:
        return None
    broker_url = settings.queue_redis_url()
    if not broker_url:
        logger.warning("Queue mode requested without LOCATION_QUEUE_REDIS_URL")
        return None
    return FastRedisClient(broker_url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        enrichment_mode=settings.enrichment_mode(),
    )

    startup_tasks = []
    broker = _queue_broker()
    resolver = None

    try:
        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")

        store = RedisContactStore(fast_redis)
        writer = ContactLocationWriter(store)
        resolver = GeoResolver()
        startup_tasks.append("geo_resolver")

        strategy = await build_enrichment_strategy(
            settings.enrichment_mode(),
            LocationEnrichmentProcessor(resolver=resolver, writer=writer),
            redis_client=broker,
        )
        startup_tasks.append(f"enrichment_{strategy.mode}")

        app.state.contact_store = store
        app.state.location_writer = writer
        app.state.enrichment_entrypoint = LocationEnrichmentEntrypoint(strategy)
        app.state.queue_broker = broker if strategy.mode == ENRICHMENT_MODE_QUEUE else None

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if resolver is not None:
            await resolver.close()
        if broker is not None:
            await broker.close()
        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await app.state.enrichment_entrypoint.shutdown()
    except Exception as e:
        logger.error("Error draining location enrichment", error=str(e))
        shutdown_errors.append(f"Enrichment: {e}")

    try:
        await resolver.close()
    except Exception as e:
        logger.error("Error closing geo resolver", error=str(e))
        shutdown_errors.append(f"GeoResolver: {e}")

    if broker is not None:
        await broker.close()

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Contact Location Service",
    description="Business card contacts with best-effort IP location enrichment",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(location_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
