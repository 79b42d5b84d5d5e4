"""Shared API key guard for the parser service surface (ingestion, callbacks, uploads)."""

import hmac
import logging

from fastapi import Request

from topfrag.auth.errors import AuthRejected
from topfrag.core.config import get_config

logger = logging.getLogger(__name__)


def extract_api_key(request: Request) -> str | None:
    """Key from X-API-Key, else from Authorization with any Bearer prefix stripped."""
    api_key = request.headers.get("X-API-Key") or request.headers.get("Authorization")
    if api_key and api_key.startswith("Bearer "):
        api_key = api_key[7:]
    return api_key or None


def require_api_key(request: Request) -> str:
    """FastAPI dependency: reject the request unless it carries the configured key."""
    api_key = extract_api_key(request)
    if not api_key:
        raise AuthRejected(
            401,
            {
                "error": "API key is required",
                "message": "Please provide a valid API key in the X-API-Key or Authorization header",
            },
        )

    valid_key = get_config().auth.api_key
    if not valid_key:
        logger.error("API key authentication requested but no key is configured")
        raise AuthRejected(
            500,
            {
                "error": "API authentication not configured",
                "message": "Please configure TOPFRAG_API_KEY in your environment",
            },
        )

    if not hmac.compare_digest(api_key, valid_key):
        logger.warning(f"Rejected invalid API key for {request.url.path}")
        raise AuthRejected(
            401,
            {"error": "Invalid API key", "message": "The provided API key is not valid"},
        )
    return api_key
