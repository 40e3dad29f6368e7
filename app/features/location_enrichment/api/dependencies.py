"""FastAPI dependencies exposing the components wired up in the app lifespan."""

from fastapi import HTTPException, Request, status

from app.features.location_enrichment.repository.contact_repository import ContactDocumentStore
from app.features.location_enrichment.services.entrypoint import LocationEnrichmentEntrypoint
from app.features.location_enrichment.services.location_writer import ContactLocationWriter


def _require_state(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Location services not initialized",
        )
    return component


def get_contact_store(request: Request) -> ContactDocumentStore:
    return _require_state(request, "contact_store")


def get_location_writer(request: Request) -> ContactLocationWriter:
    return _require_state(request, "location_writer")


def get_enrichment_entrypoint(request: Request) -> LocationEnrichmentEntrypoint:
    return _require_state(request, "enrichment_entrypoint")
