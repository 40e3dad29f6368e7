"""
Contact location enrichment feature package.

Everything related to turning a client IP captured at contact creation into a
location on that contact lives here: domain models, the contact document
repository, the geo resolver and its providers, the queue/direct dispatch
strategies, and the HTTP routes.
"""

# Re-export the primary building blocks for easy access.
from .domain.models import ContactEntry, EnrichmentJob, Location  # noqa: F401
from .services.entrypoint import LocationEnrichmentEntrypoint, build_enrichment_strategy  # noqa: F401
from .services.geo_resolver import GeoResolver  # noqa: F401
from .services.location_writer import ContactLocationWriter  # noqa: F401
from .api.router import router as location_router  # noqa: F401
