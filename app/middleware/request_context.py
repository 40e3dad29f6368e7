"""
RequestContext Middleware - Adds request tracking to all requests.

This middleware adds the following to request.state:
- request_id: Unique ID for request tracing
- ip_address: Client IP address (used for contact location enrichment)
- user_agent: Client user agent string

The client IP is taken from the first X-Forwarded-For entry when present,
otherwise from the socket peer. It is untrusted and only lightly sanitized;
the geo resolver rejects anything that does not parse as an address.
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_IP_LENGTH = 45  # longest textual IPv6 (with embedded IPv4)


def sanitize_ip(raw: str | None) -> str | None:
    """Trim, drop IPv6 brackets and an IPv4 port, and cap the length."""
    if not raw:
        return None

    value = raw.strip().strip('"')
    if value.startswith("["):
        # "[2001:db8::1]:443" -> "2001:db8::1"
        value = value[1:].split("]", 1)[0]
    elif value.count(":") == 1:
        # "203.0.113.7:51234" -> "203.0.113.7"
        value = value.split(":", 1)[0]

    value = value[:MAX_IP_LENGTH]
    return value or None


def extract_client_ip(request: Request) -> str | None:
    """
    Extract the client IP address.

    X-Forwarded-For format: "client, proxy1, proxy2"; the first entry is the
    original client.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip_address = sanitize_ip(forwarded_for.split(",")[0])
        if ip_address:
            return ip_address

    return sanitize_ip(request.client.host) if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Add request context to all incoming requests.

    Also adds X-Request-ID header to responses for client-side tracing.
    """

    async def dispatch(self, request: Request, call_next):
        """Process request and add context."""

        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        ip_address = extract_client_ip(request)
        request.state.ip_address = ip_address

        user_agent = request.headers.get("user-agent")
        request.state.user_agent = user_agent

        logger.debug(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        return response
