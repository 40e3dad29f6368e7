"""
Domain subpackage for the location enrichment feature.
"""

from .models import (
    ContactEntry,
    EnrichmentJob,
    Location,
    LocationHeatmapPoint,
)

__all__ = [
    "ContactEntry",
    "EnrichmentJob",
    "Location",
    "LocationHeatmapPoint",
]
