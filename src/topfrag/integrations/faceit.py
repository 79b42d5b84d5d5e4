"""
TopFrag FACEIT API Integration

Looks up FACEIT profiles by nickname or Steam id and reads match history,
so users can link their FACEIT account.
"""

import logging
from dataclasses import dataclass
from typing import Any

import requests

from topfrag.core.config import FaceITConfig, get_config
from topfrag.integrations.exceptions import FaceITError

logger = logging.getLogger(__name__)


@dataclass
class FACEITPlayer:
    """FACEIT player profile information."""

    player_id: str
    nickname: str
    country: str = ""
    avatar: str = ""
    steam_id: str = ""
    faceit_elo: int = 0
    skill_level: int = 0  # 1-10


class FACEITClient:
    """
    Client for the FACEIT data API.

    Requires a FACEIT API key (https://developers.faceit.com/). Non-2xx
    responses raise FaceITError with the matching status code.
    """

    def __init__(self, config: FaceITConfig | None = None, session: requests.Session | None = None):
        self.config = config or get_config().faceit
        if not self.config.api_key:
            raise FaceITError.configuration_error("faceit.api_key")
        self._session = session

    def _get_session(self) -> requests.Session:
        """Get or create the requests session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update(
                {"Authorization": f"Bearer {self.config.api_key}", "Accept": "application/json"}
            )
        return self._session

    def get(self, endpoint: str, params: dict | None = None) -> dict[str, Any]:
        """GET an endpoint relative to the API base and return its JSON body."""
        url = f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        try:
            response = self._get_session().get(url, params=params, timeout=self.config.timeout)
        except requests.Timeout as e:
            raise FaceITError.timeout_error(self.config.timeout) from e
        except requests.RequestException as e:
            raise FaceITError.request_failed(f"Network error: {e}") from e

        if response.ok:
            try:
                data = response.json()
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}

        raise FaceITError.from_status(response.status_code, self._error_message(response))

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            errors = body.get("errors")
            if isinstance(errors, list):
                return ", ".join(e.get("message", "") if isinstance(e, dict) else str(e) for e in errors)
            if errors:
                return str(errors)
            if body.get("message"):
                return str(body["message"])
        return response.text or "Unknown error"

    def get_player_by_nickname(self, nickname: str) -> FACEITPlayer:
        """Get a player profile by FACEIT nickname."""
        return self._parse_player(self.get("players", params={"nickname": nickname}))

    def get_player_by_steam_id(self, steam_id: str) -> FACEITPlayer:
        """Get a player profile by 64-bit Steam id."""
        return self._parse_player(self.get("players", params={"game": "cs2", "game_player_id": steam_id}))

    def get_player_matches(self, player_id: str, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        """Raw CS2 match history items for a player, newest first."""
        data = self.get(
            f"players/{player_id}/history",
            params={"game": "cs2", "limit": min(limit, 100), "offset": offset},
        )
        return list(data.get("items", []))

    @staticmethod
    def _parse_player(data: dict[str, Any]) -> FACEITPlayer:
        cs2 = data.get("games", {}).get("cs2", {})
        return FACEITPlayer(
            player_id=data.get("player_id", ""),
            nickname=data.get("nickname", ""),
            country=data.get("country", ""),
            avatar=data.get("avatar", ""),
            steam_id=data.get("steam_id_64", "") or cs2.get("game_player_id", ""),
            faceit_elo=int(cs2.get("faceit_elo", 0) or 0),
            skill_level=int(cs2.get("skill_level", 0) or 0),
        )
