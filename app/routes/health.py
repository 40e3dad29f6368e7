# app/routes/health.py
"""
Health check endpoints with Redis and location enrichment status.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.features.location_enrichment.services.enrichment_queue import LocationEnrichmentQueue
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "contact-location"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check covering the contact store and the enrichment pipeline.
    """
    checks = {}
    overall_ok = True

    # 1) Contact store (Redis)
    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["contact_store"] = {
            "ok": bool(redis_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["contact_store"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Enrichment pipeline; failures here never block readiness
    entrypoint = getattr(request.app.state, "enrichment_entrypoint", None)
    broker = getattr(request.app.state, "queue_broker", None)
    enrichment = {
        "requested_mode": settings.enrichment_mode(),
        "active_mode": entrypoint.mode if entrypoint else None,
        "google_fallback_enabled": settings.google_geocoding_enabled(),
    }

    if broker is not None:
        t0 = time.time()
        broker_ok = await broker.ping()
        enrichment["broker"] = {
            "ok": broker_ok,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if broker_ok:
            enrichment["queue"] = await LocationEnrichmentQueue(redis_client=broker).stats()

    checks["location_enrichment"] = enrichment

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
