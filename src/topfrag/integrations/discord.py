"""Discord REST connector, authenticated as the application's bot."""

import json
import logging
from typing import Any

import httpx

from topfrag.core.config import DiscordConfig, get_config
from topfrag.integrations.exceptions import DiscordError

logger = logging.getLogger(__name__)

TIMEOUT = 30.0
MAX_GUILD_MEMBERS = 10000


class DiscordConnector:
    """GET/POST/PATCH against the Discord API with Bot authorization."""

    def __init__(self, config: DiscordConfig | None = None, client: httpx.Client | None = None):
        self.config = config or get_config().discord
        if not self.config.bot_token:
            raise DiscordError.configuration_error("discord.bot_token")
        self.base_url = self.config.api_base.rstrip("/")
        self._client = client or httpx.Client(timeout=TIMEOUT)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self.config.bot_token}", "Accept": "application/json"}

    def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            response = self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise DiscordError.request_failed(f"Network error: {e}") from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                return {}

        raise DiscordError.from_status(response.status_code, self._error_message(response))

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            if body.get("message"):
                return str(body["message"])
            if body.get("errors"):
                return json.dumps(body["errors"])
        return response.text or "Unknown error"

    def get(self, endpoint: str, params: dict | None = None) -> Any:
        return self._request("GET", endpoint, params=params)

    def post(self, endpoint: str, data: dict | None = None) -> Any:
        return self._request("POST", endpoint, json=data or {})

    def patch(self, endpoint: str, data: dict | None = None) -> Any:
        return self._request("PATCH", endpoint, json=data or {})

    # =========================================================================
    # Repository helpers
    # =========================================================================

    def edit_original_response(self, interaction_token: str, data: dict) -> Any:
        """Replace the deferred reply of an interaction."""
        return self.patch(
            f"webhooks/{self.config.application_id}/{interaction_token}/messages/@original", data
        )

    def send_message(self, channel_id: str, data: dict) -> Any:
        return self.post(f"channels/{channel_id}/messages", data)

    def get_channel(self, channel_id: str) -> dict:
        return self.get(f"channels/{channel_id}")

    def get_guild(self, guild_id: str) -> dict:
        return self.get(f"guilds/{guild_id}")

    def get_guild_channels(self, guild_id: str) -> list[dict]:
        """Guild channels sorted by their position in the sidebar."""
        channels = self.get(f"guilds/{guild_id}/channels") or []
        return sorted(channels, key=lambda channel: channel.get("position", 999))

    def get_guild_members(self, guild_id: str, limit: int = 1000) -> list[str]:
        """Discord user ids of guild members, paging with the ``after`` cursor."""
        limit = min(limit, 1000)
        user_ids: list[str] = []
        after = None
        while len(user_ids) < MAX_GUILD_MEMBERS:
            params: dict[str, Any] = {"limit": limit}
            if after:
                params["after"] = after
            members = self.get(f"guilds/{guild_id}/members", params) or []
            if not members:
                break
            for member in members:
                member_id = member.get("user", {}).get("id")
                if member_id:
                    user_ids.append(member_id)
            if len(members) < limit:
                break
            after = members[-1].get("user", {}).get("id")
            if after is None:
                break
        return list(dict.fromkeys(user_ids))
