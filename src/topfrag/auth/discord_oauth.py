"""
Discord OAuth2 login.

Authorization code grant:
1. Client calls /api/auth/discord/redirect
2. Redirect to discord.com/oauth2/authorize with scope "identify email"
3. Discord redirects back with a code (and our state)
4. We exchange the code for an access token, then read /users/@me
5. Find, create or link the user and hand a JWT to the frontend

Linking an existing account passes a signed link token through ``state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from topfrag.core.config import DiscordConfig

logger = logging.getLogger(__name__)

DISCORD_SCOPES = "identify email"


@dataclass(frozen=True)
class DiscordIdentity:
    """The parts of a Discord user object an account needs."""

    id: str
    username: str
    global_name: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str:
        return self.global_name or self.username or "Discord User"


def is_configured(config: DiscordConfig) -> bool:
    return bool(config.client_id) and bool(config.client_secret)


def build_authorize_url(config: DiscordConfig, redirect_uri: str, state: str | None = None) -> str:
    """Discord consent screen URL for the configured OAuth2 application."""
    params = {
        "client_id": str(config.client_id),
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": DISCORD_SCOPES,
        "prompt": "consent",
    }
    if state:
        params["state"] = state
    return f"{config.authorize_url}?{urlencode(params)}"


async def fetch_identity(
    code: str,
    redirect_uri: str,
    config: DiscordConfig,
    client: httpx.AsyncClient | None = None,
) -> DiscordIdentity | None:
    """Exchange an authorization code and return the Discord user, or None on failure.

    Args:
        code: The ``code`` query parameter from Discord's callback.
        redirect_uri: Must equal the one used to build the authorize URL.
        config: Discord application settings.
        client: Optional httpx client (tests pass a mocked one).
    """
    api_base = config.api_base.rstrip("/")
    token_request = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": str(config.client_id),
        "client_secret": config.client_secret,
    }

    async def _exchange(http: httpx.AsyncClient) -> dict:
        token_resp = await http.post(f"{api_base}/oauth2/token", data=token_request)
        token_resp.raise_for_status()
        access_token = token_resp.json()["access_token"]
        user_resp = await http.get(
            f"{api_base}/users/@me", headers={"Authorization": f"Bearer {access_token}"}
        )
        user_resp.raise_for_status()
        return user_resp.json()

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10.0) as owned_client:
                data = await _exchange(owned_client)
        else:
            data = await _exchange(client)
    except httpx.HTTPError as e:
        logger.error(f"Discord OAuth: HTTP error during code exchange: {e}")
        return None
    except (KeyError, ValueError) as e:
        logger.error(f"Discord OAuth: unexpected response: {e}")
        return None

    if not data.get("id"):
        logger.warning("Discord OAuth: user object without an id")
        return None

    logger.info(f"Discord OAuth: authenticated Discord user {data['id']}")
    return DiscordIdentity(
        id=str(data["id"]),
        username=data.get("username") or "",
        global_name=data.get("global_name"),
        email=data.get("email"),
    )
