"""Steam Web API connector: availability probe, player summaries and sharecode history."""

import logging
from typing import Any

import httpx

from topfrag.core.config import SteamConfig, get_config

logger = logging.getLogger(__name__)

STEAM_API_BASE = "https://api.steampowered.com"


class SteamAPIConnector:
    """Thin client for api.steampowered.com. Failures are logged and reported as None/False."""

    def __init__(self, config: SteamConfig | None = None, client: httpx.Client | None = None):
        self.config = config or get_config().steam
        self._client = client or httpx.Client(timeout=30.0)

    def check_health(self) -> bool:
        try:
            response = self._client.get(f"{STEAM_API_BASE}/ISteamWebAPIUtil/GetServerInfo/v1/", timeout=10.0)
        except httpx.HTTPError as e:
            logger.error(f"Steam API health check exception: {e}")
            return False

        if not response.is_success:
            logger.warning(f"Steam API health check failed with status {response.status_code}")
            return False
        return True

    def get_player_summaries(self, steam_ids: list[str]) -> dict[str, dict[str, Any]] | None:
        """
        Public profile data keyed by Steam id.

        Returns None when the API key is missing or the request fails, and
        an empty dict when Steam knows none of the ids.
        """
        if not self.config.api_key:
            logger.error("Steam API key not configured")
            return None
        if not steam_ids:
            return {}

        try:
            response = self._client.get(
                f"{STEAM_API_BASE}/ISteamUser/GetPlayerSummaries/v0002/",
                params={"key": self.config.api_key, "steamids": ",".join(steam_ids)},
            )
        except httpx.HTTPError as e:
            logger.error(f"Steam API GetPlayerSummaries exception: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Steam API GetPlayerSummaries failed with status {response.status_code}")
            return None

        players = response.json().get("response", {}).get("players")
        if not players:
            logger.info(f"No player data returned from Steam API for {steam_ids}")
            return {}

        summaries = {
            player["steamid"]: {
                "steam_id": player["steamid"],
                "persona_name": player.get("personaname", ""),
                "profile_url": player.get("profileurl", ""),
                "avatar": player.get("avatar", ""),
                "avatar_medium": player.get("avatarmedium", ""),
                "avatar_full": player.get("avatarfull", ""),
                "persona_state": player.get("personastate", 0),
                "community_visibility_state": player.get("communityvisibilitystate", 0),
            }
            for player in players
        }
        logger.info(f"Retrieved {len(summaries)} player summaries from Steam API")
        return summaries

    def get_player_summary(self, steam_id: str) -> dict[str, Any] | None:
        summaries = self.get_player_summaries([steam_id])
        if not summaries:
            return None
        return summaries.get(steam_id)

    def get_next_match_sharing_code(self, steam_id: str, game_auth_code: str, known_code: str) -> str | None:
        """The sharecode of the match after known_code, or None when there is none yet."""
        if not self.config.api_key:
            logger.error("Steam API key not configured")
            return None

        try:
            response = self._client.get(
                f"{STEAM_API_BASE}/ICSGOPlayers_730/GetNextMatchSharingCode/v1/",
                params={
                    "key": self.config.api_key,
                    "steamid": steam_id,
                    "steamidkey": game_auth_code,
                    "knowncode": known_code,
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Steam API GetNextMatchSharingCode exception for {steam_id}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Steam API GetNextMatchSharingCode failed with status {response.status_code}")
            return None

        next_code = response.json().get("result", {}).get("nextcode")
        if not next_code or next_code == "n/a":
            logger.info(f"No next sharecode available for {steam_id}")
            return None
        return next_code
