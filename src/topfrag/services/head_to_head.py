"""
Head-to-head comparison of two players in a match.

get_head_to_head lists the match's players (with Steam profile data where
the Steam API has it) and get_player_stats returns one side of the
comparison.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import ComplexionRole
from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import GameMatch, PlayerMatchEvent, User, user_has_match_access
from topfrag.integrations.steam_api import SteamAPIConnector
from topfrag.services.complexion import PlayerComplexionService, role_stats
from topfrag.services.utility_analysis import UtilityAnalysisService, match_players

logger = logging.getLogger(__name__)

BASIC_STATS = (
    "kills",
    "deaths",
    "adr",
    "assists",
    "headshots",
    "total_impact",
    "impact_percentage",
    "match_swing_percent",
)


class HeadToHeadService:
    def __init__(
        self,
        session: Session,
        cache: MatchCacheManager | None = None,
        steam_api: SteamAPIConnector | None = None,
        complexion: PlayerComplexionService | None = None,
        utility: UtilityAnalysisService | None = None,
    ):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()
        self.steam_api = steam_api
        self.complexion = complexion or PlayerComplexionService(session, self.cache)
        self.utility = utility or UtilityAnalysisService(session, self.cache)

    def get_head_to_head(self, user: User, match_id: int) -> dict[str, Any]:
        if not user_has_match_access(self.session, user, match_id):
            return {}

        match = self.session.get(GameMatch, match_id)
        if match is None:
            return {}

        return {
            "players": self.available_players(match_id),
            "current_user_steam_id": user.steam_id,
            "match_data": {
                "game_mode": match.game_mode,
                "match_type": match.match_type,
                "map": match.map,
            },
        }

    def available_players(self, match_id: int) -> list[dict[str, Any]]:
        players = match_players(self.session, match_id)
        if self.steam_api is None or not players:
            return players

        try:
            summaries = self.steam_api.get_player_summaries([p["steam_id"] for p in players]) or {}
        except Exception as e:
            logger.warning(f"Failed to fetch Steam profiles for match {match_id}: {e}")
            return players

        for player in players:
            profile = summaries.get(player["steam_id"])
            if profile:
                player["steam_profile"] = {k: v for k, v in profile.items() if k != "steam_id"}
        return players

    def get_player_stats(self, user: User, match_id: int, steam_id: str) -> dict[str, Any]:
        if not user_has_match_access(self.session, user, match_id):
            return {}

        event = self.session.execute(
            select(PlayerMatchEvent).where(
                PlayerMatchEvent.match_id == match_id,
                PlayerMatchEvent.player_steam_id == steam_id,
            )
        ).scalars().first()
        if event is None:
            return {}

        return {
            "basic_stats": {name: getattr(event, name) for name in BASIC_STATS},
            "player_complexion": self.complexion.get(steam_id, match_id),
            "role_stats": {role.value: role_stats(event, role) for role in ComplexionRole},
            "utility_analysis": self.utility.get_analysis(user, match_id, steam_id),
            "rank_data": {
                "rank_value": event.rank_value,
                "rank_type": event.rank_type,
                "matchmaking_rank": event.matchmaking_rank,
            },
        }
