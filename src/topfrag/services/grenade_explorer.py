"""Grenade explorer: filtered grenade throws of a match, for the map view."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import GrenadeType, MapType, PlayerSide
from topfrag.infra.cache import MatchCacheManager, filter_cache_key, get_cache_manager
from topfrag.infra.database import GameMatch, GrenadeEvent, MatchPlayer, Player

FIRE_GRENADES = "fire_grenades"


def _selected(value: Any) -> bool:
    return value not in (None, "", "all")


def apply_grenade_type(query, column, grenade_type: str | None):
    """Filter on grenade type, where ``fire_grenades`` means molotov or incendiary."""
    if not grenade_type:
        return query
    if grenade_type == FIRE_GRENADES:
        return query.where(column.in_(GrenadeType.fire_types()))
    return query.where(column == grenade_type)


class GrenadeExplorerService:
    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()

    def get_explorer(self, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        key = filter_cache_key("grenade-explorer", filters)
        return self.cache.remember(key, match_id, lambda: self._build_explorer(filters, match_id))

    def get_filter_options(self, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        key = filter_cache_key("grenade-explorer-filter-options", filters)
        return self.cache.remember(key, match_id, lambda: self._build_filter_options(filters, match_id))

    def _build_explorer(self, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        query = (
            select(GrenadeEvent, GameMatch.map, Player.name)
            .join(GameMatch, GameMatch.id == GrenadeEvent.match_id)
            .outerjoin(Player, Player.steam_id == GrenadeEvent.player_steam_id)
            .where(GrenadeEvent.match_id == match_id)
        )

        if filters.get("map"):
            query = query.where(GameMatch.map == filters["map"])
        if _selected(filters.get("round_number")):
            query = query.where(GrenadeEvent.round_number == int(filters["round_number"]))
        query = apply_grenade_type(query, GrenadeEvent.grenade_type, filters.get("grenade_type"))
        if _selected(filters.get("player_steam_id")):
            query = query.where(GrenadeEvent.player_steam_id == filters["player_steam_id"])
        if _selected(filters.get("player_side")):
            query = query.where(GrenadeEvent.player_side == filters["player_side"])

        grenades = []
        for event, map_name, player_name in self.session.execute(query.order_by(GrenadeEvent.id)).all():
            grenades.append({**event.to_dict(), "map": map_name, "player_name": player_name})

        return {"grenades": grenades, "filters": filters}

    def _build_filter_options(self, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        matches: list[dict[str, Any]] = []
        if filters.get("map"):
            rows = self.session.execute(
                select(GameMatch.id, GameMatch.map).where(GameMatch.map == filters["map"]).order_by(GameMatch.id)
            ).all()
            matches = [{"id": row.id, "name": f"Match #{row.id} - {row.map}"} for row in rows]
            if matches:
                matches.insert(0, {"id": "all", "name": "All Matches"})

        rounds = self.session.execute(
            select(GrenadeEvent.round_number)
            .where(GrenadeEvent.match_id == match_id)
            .distinct()
            .order_by(GrenadeEvent.round_number)
        ).scalars()

        players = self.session.execute(
            select(Player.steam_id, Player.name)
            .join(MatchPlayer, MatchPlayer.player_id == Player.id)
            .where(MatchPlayer.match_id == match_id)
            .order_by(Player.name)
        ).all()

        return {
            "maps": MapType.options(),
            "matches": matches,
            "rounds": [{"number": number} for number in rounds],
            "grenadeTypes": GrenadeType.options(),
            "players": [{"steam_id": steam_id, "name": name} for steam_id, name in players],
            "playerSides": PlayerSide.options(),
        }
