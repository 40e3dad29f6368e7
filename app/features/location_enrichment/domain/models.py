"""
Domain models for the contact location enrichment feature.

Contacts and locations are stored as camelCase JSON inside each owner's
contact document, so every model here knows how to go to and from that
wire shape. No I/O happens in this module.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(slots=True, frozen=True)
class Location:
    """Canonical location produced by the geo resolver."""

    latitude: float
    longitude: float
    city: str | None
    region: str | None
    country: str | None
    country_code: str | None
    timezone: str | None
    provider: str
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "city": self.city,
            "region": self.region,
            "country": self.country,
            "countryCode": self.country_code,
            "timezone": self.timezone,
            "provider": self.provider,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Location":
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            city=data.get("city"),
            region=data.get("region"),
            country=data.get("country"),
            country_code=data.get("countryCode"),
            timezone=data.get("timezone"),
            provider=data.get("provider", "unknown"),
            created_at=_parse_timestamp(data.get("createdAt")) or _utcnow(),
        )


@dataclass(slots=True)
class ContactEntry:
    """One business-card contact inside an owner's contact list."""

    name: str
    surname: str = ""
    phone: str = ""
    email: str = ""
    how_we_met: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    location: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "name": self.name,
            "surname": self.surname,
            "phone": self.phone,
            "email": self.email,
            "howWeMet": self.how_we_met,
            "createdAt": self.created_at.isoformat(),
        }
        if self.location is not None:
            data["location"] = self.location
        return data


@dataclass(slots=True)
class EnrichmentJob:
    """Queue payload for one location lookup."""

    owner_id: str
    contact_index: int
    ip_address: str
    attempts: int = 0
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: float = 0.0

    def to_payload(self) -> str:
        return json.dumps(
            {
                "job_id": self.job_id,
                "owner_id": self.owner_id,
                "contact_index": self.contact_index,
                "ip_address": self.ip_address,
                "attempts": self.attempts,
                "enqueued_at": self.enqueued_at,
            },
            sort_keys=True,
        )

    @classmethod
    def from_payload(cls, payload: str) -> "EnrichmentJob":
        """Decode a queue payload; raises ValueError when it is not a job."""
        try:
            data = json.loads(payload)
            return cls(
                owner_id=str(data["owner_id"]),
                contact_index=int(data["contact_index"]),
                ip_address=str(data["ip_address"]),
                attempts=int(data.get("attempts", 0)),
                job_id=str(data.get("job_id") or uuid.uuid4().hex),
                enqueued_at=float(data.get("enqueued_at", 0.0)),
            )
        except (TypeError, KeyError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid enrichment job payload: {e}") from e


@dataclass(slots=True)
class LocationHeatmapPoint:
    """Aggregated connection count at one coordinate pair."""

    latitude: float
    longitude: float
    location_name: str
    connection_count: int = 1
