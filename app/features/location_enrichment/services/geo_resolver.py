"""
IP -> Location resolution with tiered provider fallback.

Free providers are tried first and the paid Google tier last. The first
well-formed result wins and is cached; expected failures never raise,
they end in None.
"""

import ipaddress

import httpx

from app.config import settings
from app.features.location_enrichment.domain import Location
from app.features.location_enrichment.services.geo_cache import GeoCache
from app.features.location_enrichment.services.geo_providers import (
    GeoProvider,
    GeoProviderError,
    default_providers,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

IPV4_MAPPED_PREFIX = "::ffff:"

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def normalize_ip(ip: str | None) -> str:
    """Trim and strip the IPv6-mapped-IPv4 prefix."""
    cleaned = (ip or "").strip()
    if cleaned.lower().startswith(IPV4_MAPPED_PREFIX):
        cleaned = cleaned[len(IPV4_MAPPED_PREFIX) :]
    return cleaned


def is_private_ip(ip: str) -> bool:
    """True for loopback and RFC 1918 addresses (expects a normalized IP)."""
    if ip == "localhost":
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    if address.is_loopback:
        return True
    return address.version == 4 and any(address in net for net in _PRIVATE_NETWORKS)


def create_http_client(timeout_seconds: float | None = None) -> httpx.AsyncClient:
    """Create the shared async HTTP client for provider calls."""
    timeout = httpx.Timeout(timeout_seconds or settings.GEO_PROVIDER_TIMEOUT_SECONDS)
    limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
    return httpx.AsyncClient(timeout=timeout, limits=limits, headers={"Accept": "application/json"})


class GeoResolver:
    """Resolves a single IP address through the provider chain."""

    def __init__(
        self,
        providers: list[GeoProvider] | None = None,
        cache: GeoCache | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.providers = (
            providers
            if providers is not None
            else default_providers(settings.GOOGLE_MAPS_API_KEY)
        )
        self.cache = (
            cache
            if cache is not None
            else GeoCache(
                max_size=settings.GEO_CACHE_MAX_SIZE,
                ttl_seconds=settings.GEO_CACHE_TTL_SECONDS,
            )
        )
        self._owns_client = client is None
        self._client = client or create_http_client()

    async def close(self) -> None:
        """Close the HTTP client if this resolver created it."""
        if self._owns_client:
            await self._client.aclose()

    async def resolve(self, ip: str | None) -> Location | None:
        """
        Resolve an IP to a Location.

        Returns None for private, loopback or malformed input and when every
        provider fails. Does not raise for those cases.
        """
        clean_ip = normalize_ip(ip)

        if not clean_ip:
            logger.debug("Skipping empty IP")
            return None

        if is_private_ip(clean_ip):
            logger.debug("Skipping private IP", ip=clean_ip)
            return None

        try:
            ipaddress.ip_address(clean_ip)
        except ValueError:
            logger.warning("Skipping malformed IP", ip_preview=clean_ip[:45])
            return None

        cached = self.cache.get(clean_ip)
        if cached is not None:
            logger.debug("Using cached location", ip=clean_ip, provider=cached.provider)
            return cached

        for provider in self.providers:
            if not provider.is_available():
                logger.debug("Geo provider unavailable, skipping", provider=provider.name)
                continue

            try:
                location = await provider.lookup(self._client, clean_ip)
            except GeoProviderError as e:
                logger.info(
                    "Geo provider failed, trying next",
                    provider=provider.name,
                    status_code=e.status_code,
                    error=str(e),
                )
                continue
            except Exception as e:
                logger.warning(
                    "Geo provider raised unexpectedly, trying next",
                    provider=provider.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            self.cache.set(clean_ip, location)
            logger.info(
                "Resolved location for IP",
                ip=clean_ip,
                provider=provider.name,
                city=location.city,
                country_code=location.country_code,
            )
            return location

        logger.warning("All geo providers failed", ip=clean_ip)
        return None
