"""Heatmap aggregation over enriched contacts."""

from datetime import UTC, datetime
from typing import Any

from app.features.location_enrichment.domain import LocationHeatmapPoint
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _contact_created_at(contact: dict[str, Any]) -> datetime | None:
    raw = contact.get("createdAt")
    if not raw:
        return None
    try:
        return _as_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))
    except ValueError:
        return None


def _location_name(city: str | None, country: str | None) -> str:
    if city and country:
        return f"{city}, {country}"
    return city or country or "Unknown Location"


def filter_by_created_at(
    contacts: list[dict[str, Any]],
    start_date: datetime | None,
    end_date: datetime | None,
) -> list[dict[str, Any]]:
    """Keep contacts created within [start_date, end_date]; needs both bounds."""
    if start_date is None or end_date is None:
        return contacts

    start, end = _as_utc(start_date), _as_utc(end_date)
    filtered = []
    for contact in contacts:
        created_at = _contact_created_at(contact)
        if created_at is not None and start <= created_at <= end:
            filtered.append(contact)
    return filtered


def aggregate_location_data(
    contact_list: list[dict[str, Any]],
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[LocationHeatmapPoint]:
    """Group located contacts by exact coordinate pair."""
    located = [
        c for c in contact_list if isinstance(c, dict) and isinstance(c.get("location"), dict)
    ]
    located = filter_by_created_at(located, start_date, end_date)

    points: dict[tuple[float, float], LocationHeatmapPoint] = {}
    for contact in located:
        location = contact["location"]
        latitude = location.get("latitude")
        longitude = location.get("longitude")
        if latitude is None or longitude is None:
            logger.warning("Skipping contact with missing coordinates")
            continue

        key = (latitude, longitude)
        if key in points:
            points[key].connection_count += 1
        else:
            points[key] = LocationHeatmapPoint(
                latitude=latitude,
                longitude=longitude,
                location_name=_location_name(location.get("city"), location.get("country")),
            )

    return list(points.values())
