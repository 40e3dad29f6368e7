"""
Service layer for the location enrichment feature.
"""

from .direct_processor import DirectLocationProcessor
from .enrichment_queue import EnrichmentQueueError, LocationEnrichmentQueue
from .entrypoint import (
    DirectEnrichmentStrategy,
    LocationEnrichmentEntrypoint,
    QueueEnrichmentStrategy,
    build_enrichment_strategy,
)
from .geo_cache import GeoCache
from .geo_providers import GeoProviderError
from .geo_resolver import GeoResolver
from .location_writer import ContactLocationWriter
from .processor import LocationEnrichmentProcessor

__all__ = [
    "ContactLocationWriter",
    "DirectEnrichmentStrategy",
    "DirectLocationProcessor",
    "EnrichmentQueueError",
    "GeoCache",
    "GeoProviderError",
    "GeoResolver",
    "LocationEnrichmentEntrypoint",
    "LocationEnrichmentProcessor",
    "LocationEnrichmentQueue",
    "QueueEnrichmentStrategy",
    "build_enrichment_strategy",
]
