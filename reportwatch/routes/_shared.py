"""
Shared utilities for route modules: id parsing, client fingerprinting and
the service-identity guard.
"""

import hmac
import os
import uuid
import logging
from typing import Dict, Optional

from fastapi import HTTPException, Request, Header

from reportwatch.exceptions import ServiceAuthError

logger = logging.getLogger(__name__)

# Dispatch admin recomputes to Celery instead of running them in-request
USE_CELERY = os.getenv("USE_CELERY", "false").lower() == "true"

# Proxy headers consulted, in order, before the socket peer
_CLIENT_ADDRESS_HEADERS = ("x-forwarded-for", "cf-connecting-ip", "x-real-ip")


def parse_uuid(value: str, label: str = "ID") -> uuid.UUID:
    """Parse a UUID string, raising 400 on invalid format."""
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} format")


def client_address(request: Request) -> str:
    for header in _CLIENT_ADDRESS_HEADERS:
        value = request.headers.get(header)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def client_fingerprint(request: Request) -> str:
    """FastAPI dependency: pseudonymous fingerprint of the calling client."""
    from reportwatch.services.rate_limiter import fingerprint_client
    from reportwatch.services.settings import get_settings_service

    secret = get_settings_service().security.fingerprint_secret
    return fingerprint_client(client_address(request), secret)


def require_service_key(x_service_key: Optional[str] = Header(default=None)) -> None:
    """FastAPI dependency guarding moderation and derived-state writes."""
    from reportwatch.services.settings import get_settings_service

    expected = get_settings_service().security.service_api_key
    if not expected or not x_service_key or not hmac.compare_digest(x_service_key, expected):
        raise ServiceAuthError("Service credentials required")


def rate_limit_headers(rate_limit: Dict) -> Dict[str, str]:
    """Response headers from a service result's ``rate_limit`` block."""
    return {
        "X-RateLimit-Limit": str(rate_limit["limit"]),
        "X-RateLimit-Remaining": str(rate_limit["remaining"]),
        "X-RateLimit-Reset": rate_limit["reset_at"],
    }
