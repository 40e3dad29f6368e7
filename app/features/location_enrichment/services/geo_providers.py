"""
IP geolocation provider adapters.

Each provider performs one lookup against its HTTP API and maps the
provider-specific payload onto the canonical Location. Any problem (non-2xx,
bad JSON, error payload, missing coordinates, transport error) is raised as
GeoProviderError so the resolver can move on to the next tier.
"""

from typing import Any

import httpx

from app.features.location_enrichment.domain import Location
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

IPAPI_CO_URL = "https://ipapi.co/{ip}/json/"
IP_API_COM_URL = "http://ip-api.com/json/{ip}"
GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class GeoProviderError(Exception):
    """Raised when a single provider cannot produce a usable location."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


def _coordinate(value: Any, provider: str, field_name: str) -> float:
    if value is None or isinstance(value, bool):
        raise GeoProviderError(f"Missing {field_name} in response", provider=provider)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise GeoProviderError(f"Invalid {field_name} in response", provider=provider) from e


class GeoProvider:
    """Base class for one tier of the fallback chain."""

    name: str = "base"

    def is_available(self) -> bool:
        return True

    async def lookup(self, client: httpx.AsyncClient, ip: str) -> Location:
        raise NotImplementedError

    async def _get_json(
        self, client: httpx.AsyncClient, url: str, params: dict | None = None
    ) -> dict[str, Any]:
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise GeoProviderError(
                f"{self.name} request failed: {type(e).__name__}", provider=self.name
            ) from e

        logger.debug("Geo provider response", provider=self.name, status_code=response.status_code)

        if not response.is_success:
            raise GeoProviderError(
                f"{self.name} lookup failed with status {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GeoProviderError(
                f"{self.name} returned invalid JSON", provider=self.name
            ) from e

        if not isinstance(data, dict):
            raise GeoProviderError(f"{self.name} returned unexpected payload", provider=self.name)
        return data


class IpApiCoProvider(GeoProvider):
    """Primary free provider (ipapi.co)."""

    name = "ipapi.co"

    async def lookup(self, client: httpx.AsyncClient, ip: str) -> Location:
        data = await self._get_json(client, IPAPI_CO_URL.format(ip=ip))

        if data.get("error"):
            raise GeoProviderError(
                f"API error: {data.get('reason', 'unknown')}", provider=self.name
            )

        return Location(
            latitude=_coordinate(data.get("latitude"), self.name, "latitude"),
            longitude=_coordinate(data.get("longitude"), self.name, "longitude"),
            city=data.get("city"),
            region=data.get("region"),
            country=data.get("country_name"),
            country_code=data.get("country_code"),
            timezone=data.get("timezone"),
            provider=self.name,
        )


class IpApiComProvider(GeoProvider):
    """Secondary free provider (ip-api.com), higher rate limits."""

    name = "ip-api.com"

    async def lookup(self, client: httpx.AsyncClient, ip: str) -> Location:
        data = await self._get_json(client, IP_API_COM_URL.format(ip=ip))

        if data.get("status") == "fail":
            raise GeoProviderError(
                f"API error: {data.get('message', 'unknown')}", provider=self.name
            )

        return Location(
            latitude=_coordinate(data.get("lat"), self.name, "lat"),
            longitude=_coordinate(data.get("lon"), self.name, "lon"),
            city=data.get("city"),
            region=data.get("regionName"),
            country=data.get("country"),
            country_code=data.get("countryCode"),
            timezone=data.get("timezone"),
            provider=self.name,
        )


class GoogleGeocodingProvider(GeoProvider):
    """
    Paid last-resort tier.

    Coarse coordinates come from ip-api.com, then Google reverse geocoding
    supplies the authoritative city/region/country breakdown. Google's
    geocoding API has no timezone, so it is left empty.
    """

    name = "google"

    def __init__(self, api_key: str | None):
        self.api_key = api_key.strip() if api_key else None

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def lookup(self, client: httpx.AsyncClient, ip: str) -> Location:
        if not self.api_key:
            raise GeoProviderError("Google Maps API key not configured", provider=self.name)

        coarse = await self._get_json(
            client,
            IP_API_COM_URL.format(ip=ip),
            params={"fields": "status,message,lat,lon"},
        )
        if coarse.get("status") == "fail":
            raise GeoProviderError(
                f"Coordinate lookup error: {coarse.get('message', 'unknown')}",
                provider=self.name,
            )
        latitude = _coordinate(coarse.get("lat"), self.name, "lat")
        longitude = _coordinate(coarse.get("lon"), self.name, "lon")

        geocoded = await self._get_json(
            client,
            GOOGLE_GEOCODE_URL,
            params={"latlng": f"{latitude},{longitude}", "key": self.api_key},
        )
        results = geocoded.get("results") or []
        if geocoded.get("status") != "OK" or not results:
            raise GeoProviderError(
                f"Google geocoding error: {geocoded.get('status') or 'No results'}",
                provider=self.name,
            )

        city, region, country, country_code = self._extract_address(results[0])

        return Location(
            latitude=latitude,
            longitude=longitude,
            city=city,
            region=region,
            country=country,
            country_code=country_code,
            timezone=None,
            provider=self.name,
        )

    @staticmethod
    def _extract_address(result: dict) -> tuple[str, str, str, str]:
        city = region = country = country_code = ""
        for component in result.get("address_components") or []:
            types = component.get("types") or []
            if "locality" in types:
                city = component.get("long_name", "")
            elif "administrative_area_level_1" in types:
                region = component.get("long_name", "")
            elif "country" in types:
                country = component.get("long_name", "")
                country_code = component.get("short_name", "")
        return city, region, country, country_code


def default_providers(google_api_key: str | None) -> list[GeoProvider]:
    """Free tiers first, paid tier last to keep per-lookup cost down."""
    return [
        IpApiCoProvider(),
        IpApiComProvider(),
        GoogleGeocodingProvider(google_api_key),
    ]
