"""Best player per complexion role in a match."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import ComplexionRole
from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import (
    GameMatch,
    MatchPlayer,
    Player,
    PlayerMatchEvent,
    User,
    user_has_match_access,
)
from topfrag.services.complexion import PlayerComplexionService, role_stats

CACHE_COMPONENT = "top-role-players"


def empty_role() -> dict[str, Any]:
    return {"name": None, "steam_id": None, "score": 0}


class TopRolePlayerService:
    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()
        self.complexion = PlayerComplexionService(session, self.cache)

    def get(self, user: User, match_id: int) -> dict[str, Any]:
        if not user_has_match_access(self.session, user, match_id):
            return {}
        return self.cache.remember(CACHE_COMPONENT, match_id, lambda: self._build(match_id))

    def _build(self, match_id: int) -> dict[str, Any]:
        if self.session.get(GameMatch, match_id) is None:
            return {role.value: empty_role() for role in ComplexionRole}

        players = self.session.execute(
            select(Player.steam_id, Player.name)
            .join(MatchPlayer, MatchPlayer.player_id == Player.id)
            .where(MatchPlayer.match_id == match_id)
            .order_by(MatchPlayer.id)
        ).all()

        complexions = []
        for steam_id, name in players:
            complexion = self.complexion.get(steam_id, match_id)
            if complexion:
                complexions.append({"steam_id": steam_id, "name": name, "complexion": complexion})

        if not complexions:
            return {role.value: empty_role() for role in ComplexionRole}

        return {role.value: self._top_player(match_id, complexions, role) for role in ComplexionRole}

    def _top_player(self, match_id: int, complexions: list[dict], role: ComplexionRole) -> dict[str, Any]:
        top_player = None
        top_score = -1
        for player in complexions:
            score = player["complexion"].get(role.value, 0)
            if score > top_score:
                top_score = score
                top_player = player

        if top_player is None:
            return {**empty_role(), "stats": {}}

        event = self.session.execute(
            select(PlayerMatchEvent).where(
                PlayerMatchEvent.match_id == match_id,
                PlayerMatchEvent.player_steam_id == top_player["steam_id"],
            )
        ).scalars().first()

        return {
            "name": top_player["name"],
            "steam_id": top_player["steam_id"],
            "score": top_score,
            "stats": role_stats(event, role) if event is not None else {},
        }
