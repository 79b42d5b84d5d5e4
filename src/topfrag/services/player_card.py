"""Public player card: headline stats over a player's last 20 matches."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import Player, User
from topfrag.services.dashboard import (
    DASHBOARD_TTL,
    DashboardFilters,
    PlayerMatchFrames,
    aggregate_player_stats,
    empty_complexion,
    empty_match_frame,
    player_card,
)

logger = logging.getLogger(__name__)

PLAYER_CARD_MATCHES = 20


class PlayerCardService:
    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()
        self.frames = PlayerMatchFrames(session, self.cache)

    @staticmethod
    def cache_key(steam_id: str) -> str:
        return f"player-card:{steam_id}"

    def get_player_card(self, steam_id: str) -> dict[str, Any]:
        return self.cache.remember_key(self.cache_key(steam_id), lambda: self._build(steam_id), ttl=DASHBOARD_TTL)

    def invalidate(self, steam_id: str) -> None:
        self.cache.store.forget(self.cache_key(steam_id))

    def _build(self, steam_id: str) -> dict[str, Any]:
        player = self.session.execute(select(Player).where(Player.steam_id == steam_id)).scalar_one_or_none()
        if player is None:
            return self._empty()

        frame = self.frames.matches(steam_id, DashboardFilters(past_match_count=PLAYER_CARD_MATCHES))
        if frame.empty:
            return self._empty()

        user = self.session.execute(select(User).where(User.steam_id == steam_id)).scalar_one_or_none()
        username = user.username if user is not None else player.name
        return {
            "player_card": player_card(
                username, aggregate_player_stats(frame), self.frames.complexion(steam_id, frame)
            )
        }

    @staticmethod
    def _empty() -> dict[str, Any]:
        return {"player_card": player_card("Unknown", aggregate_player_stats(empty_match_frame()), empty_complexion())}
