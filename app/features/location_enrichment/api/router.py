"""
Contact and location analytics routes.

Creating a contact triggers location enrichment for the new entry; the
response never waits for, or reports on, that enrichment.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.features.location_enrichment.api.dependencies import (
    get_contact_store,
    get_enrichment_entrypoint,
    get_location_writer,
)
from app.features.location_enrichment.api.schemas import (
    ContactCreateRequest,
    ContactCreateResponse,
    LocationHeatmapPointResponse,
)
from app.features.location_enrichment.domain import ContactEntry
from app.features.location_enrichment.repository.contact_repository import (
    ContactDocumentStore,
    ContactStoreError,
    append_contact,
)
from app.features.location_enrichment.services.analytics import aggregate_location_data
from app.features.location_enrichment.services.entrypoint import LocationEnrichmentEntrypoint
from app.features.location_enrichment.services.location_writer import ContactLocationWriter
from app.infrastructure.observability.logging import get_logger
from app.middleware.request_context import extract_client_ip

logger = get_logger(__name__)

router = APIRouter(tags=["contacts"])


@router.post(
    "/contacts/{owner_id}",
    response_model=ContactCreateResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def add_contact(
    owner_id: str,
    payload: ContactCreateRequest,
    request: Request,
    store: ContactDocumentStore = Depends(get_contact_store),
    writer: ContactLocationWriter = Depends(get_location_writer),
    entrypoint: LocationEnrichmentEntrypoint = Depends(get_enrichment_entrypoint),
) -> ContactCreateResponse:
    """Append a contact and kick off best-effort location enrichment."""
    client_ip = getattr(request.state, "ip_address", None) or extract_client_ip(request)

    entry = ContactEntry(
        name=payload.name,
        surname=payload.surname,
        phone=payload.phone,
        email=payload.email,
        how_we_met=payload.how_we_met,
    )

    try:
        async with writer.owner_lock(owner_id):
            contact_index = await append_contact(store, owner_id, entry.to_dict())
    except ContactStoreError as e:
        logger.error("Failed to add contact", owner_id=owner_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Contact storage unavailable",
        ) from e

    await entrypoint.enqueue(owner_id, contact_index, client_ip)

    return ContactCreateResponse(contact_index=contact_index)


@router.get(
    "/analytics/locations/{owner_id}",
    response_model=list[LocationHeatmapPointResponse],
    response_model_by_alias=True,
)
async def get_location_analytics(
    owner_id: str,
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    store: ContactDocumentStore = Depends(get_contact_store),
) -> list[LocationHeatmapPointResponse]:
    """Aggregated connection locations for heatmap display."""
    try:
        document = await store.get(owner_id)
    except ContactStoreError as e:
        logger.error("Failed to load contacts for analytics", owner_id=owner_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Contact storage unavailable",
        ) from e

    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No contacts found")

    points = aggregate_location_data(document.get("contactList") or [], start_date, end_date)
    logger.info("Location analytics served", owner_id=owner_id, point_count=len(points))

    return [
        LocationHeatmapPointResponse(
            latitude=p.latitude,
            longitude=p.longitude,
            location_name=p.location_name,
            connection_count=p.connection_count,
        )
        for p in points
    ]
