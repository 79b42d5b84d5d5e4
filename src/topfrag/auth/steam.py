"""
Steam OpenID 2.0 authentication.

Steam uses OpenID 2.0 (NOT OAuth2). The flow is:
1. Client calls /api/auth/steam/redirect
2. Redirect to steamcommunity.com/openid/login
3. Steam redirects back with the user's Steam64 ID in the claimed_id
4. We confirm the assertion with check_authentication
5. Find or create the user and issue a JWT

No API key is required for login itself.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlencode, urlparse

import httpx

logger = logging.getLogger(__name__)

STEAM_OPENID_URL = "https://steamcommunity.com/openid/login"
STEAM_OPENID_NS = "http://specs.openid.net/auth/2.0"
STEAM_CLAIMED_ID_PATTERN = re.compile(r"^https://steamcommunity\.com/openid/id/(\d{17})$")


def build_auth_url(return_url: str, realm: str | None = None) -> str:
    """Build the Steam OpenID login redirect URL.

    Args:
        return_url: The callback URL Steam will redirect to after auth.
        realm: OpenID realm; defaults to the scheme and host of return_url.

    Returns:
        Full Steam OpenID URL to redirect the user to.
    """
    params = {
        "openid.ns": STEAM_OPENID_NS,
        "openid.mode": "checkid_setup",
        "openid.return_to": return_url,
        "openid.realm": realm or _get_realm(return_url),
        "openid.identity": "http://specs.openid.net/auth/2.0/identifier_select",
        "openid.claimed_id": "http://specs.openid.net/auth/2.0/identifier_select",
    }
    return f"{STEAM_OPENID_URL}?{urlencode(params)}"


def extract_claimed_steam_id(params: dict) -> str | None:
    """Steam64 ID from a positive assertion, or None if the assertion is malformed."""
    if params.get("openid.mode") != "id_res":
        logger.warning("Steam OpenID: mode is not id_res")
        return None

    claimed_id = params.get("openid.claimed_id", "")
    match = STEAM_CLAIMED_ID_PATTERN.match(claimed_id)
    if not match:
        logger.warning(f"Steam OpenID: invalid claimed_id format: {claimed_id}")
        return None
    return match.group(1)


async def validate_response(params: dict, client: httpx.AsyncClient | None = None) -> str | None:
    """Validate Steam's OpenID response and extract the Steam64 ID.

    Performs the check_authentication step so forged or replayed callbacks
    are rejected.

    Args:
        params: The query parameters from Steam's callback redirect.
        client: Optional httpx client (tests pass a mocked one).

    Returns:
        Steam64 ID or None if invalid.
    """
    steam_id = extract_claimed_steam_id(params)
    if steam_id is None:
        return None

    verify_params = {key: value for key, value in params.items() if key.startswith("openid.")}
    verify_params["openid.mode"] = "check_authentication"

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10.0) as owned_client:
                resp = await owned_client.post(STEAM_OPENID_URL, data=verify_params)
        else:
            resp = await client.post(STEAM_OPENID_URL, data=verify_params)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Steam OpenID: HTTP error during validation: {e}")
        return None

    # Steam answers with newline separated key:value pairs
    if "is_valid:true" in resp.text:
        logger.info(f"Steam OpenID: validated Steam64 ID {steam_id}")
        return steam_id

    logger.warning(f"Steam OpenID: validation failed. Response: {resp.text}")
    return None


def _get_realm(return_url: str) -> str:
    """Extract the realm (scheme + host) from a URL."""
    parsed = urlparse(return_url)
    return f"{parsed.scheme}://{parsed.netloc}"
