"""Resolve-then-write step shared by the queue worker and direct mode."""

from app.features.location_enrichment.services.geo_resolver import GeoResolver
from app.features.location_enrichment.services.location_writer import ContactLocationWriter
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_NOOP = "noop"


class LocationEnrichmentProcessor:
    def __init__(self, resolver: GeoResolver, writer: ContactLocationWriter):
        self.resolver = resolver
        self.writer = writer

    async def run(self, owner_id: str, contact_index: int, ip_address: str) -> str:
        """
        Enrich one contact. Returns OUTCOME_SUCCEEDED or OUTCOME_NOOP.

        Unresolvable IPs and missing documents/indices are no-ops. Store
        errors propagate.
        """
        if not ip_address:
            logger.warning(
                "No IP address provided for location lookup",
                owner_id=owner_id,
                contact_index=contact_index,
            )
            return OUTCOME_NOOP

        location = await self.resolver.resolve(ip_address)
        if location is None:
            logger.info(
                "Could not determine location from IP",
                owner_id=owner_id,
                contact_index=contact_index,
            )
            return OUTCOME_NOOP

        written = await self.writer.apply(owner_id, contact_index, location)
        return OUTCOME_SUCCEEDED if written else OUTCOME_NOOP
