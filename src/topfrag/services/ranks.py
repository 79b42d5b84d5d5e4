"""Rank history per ladder: competitive (per map), premier and FACEIT."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import RankType
from topfrag.infra.cache import MatchCacheManager, filter_cache_key, get_cache_manager
from topfrag.infra.database import Player, PlayerRank, User
from topfrag.services.dashboard import DASHBOARD_TTL, DashboardFilters

logger = logging.getLogger(__name__)


def rank_trend(history: list[PlayerRank]) -> str:
    """Direction of the latest rank value against the one before it."""
    if len(history) < 2:
        return "neutral"
    current, previous = history[-1].rank_value or 0, history[-2].rank_value or 0
    if current > previous:
        return "up"
    if current < previous:
        return "down"
    return "neutral"


def _history_entry(rank: PlayerRank) -> dict[str, Any]:
    return {
        "rank": rank.rank,
        "rank_value": rank.rank_value,
        "date": rank.created_at.strftime("%Y-%m-%d"),
        "timestamp": int(rank.created_at.timestamp()),
    }


def _empty_ladder(rank_type: str) -> dict[str, Any]:
    return {
        "rank_type": rank_type,
        "current_rank": None,
        "current_rank_value": None,
        "history": [],
        "trend": "neutral",
        "maps": [],
    }


def format_ladder(rank_type: str, ranks: list[PlayerRank], count: int) -> dict[str, Any]:
    """
    Shape one ladder's rows (newest first) for the rank graphs.

    History runs oldest to newest and holds the ``count`` most recent
    observations. Competitive rows are split by map.
    """
    if not ranks:
        return _empty_ladder(rank_type)

    def summarise(rows: list[PlayerRank]) -> dict[str, Any]:
        history = sorted(rows, key=lambda rank: rank.created_at)[-count:]
        return {
            "current_rank": history[-1].rank,
            "current_rank_value": history[-1].rank_value,
            "trend": rank_trend(history),
            "history": [_history_entry(rank) for rank in history],
        }

    if rank_type == RankType.COMPETITIVE:
        by_map: dict[str | None, list[PlayerRank]] = {}
        for rank in ranks:
            by_map.setdefault(rank.map, []).append(rank)
        return {
            "rank_type": rank_type,
            "maps": [{"map": map_name, **summarise(rows)} for map_name, rows in by_map.items()],
        }

    return {"rank_type": rank_type, **summarise(ranks)}


class RanksService:
    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()

    @staticmethod
    def cache_prefix(steam_id: str) -> str:
        return f"ranks:{steam_id}:"

    def get_rank_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        if not user.steam_id:
            return {rank_type.value: [] for rank_type in RankType}
        key = filter_cache_key(f"{self.cache_prefix(user.steam_id)}rank-stats", filters.as_dict())
        return self.cache.remember_key(key, lambda: self._build(user.steam_id, filters), ttl=DASHBOARD_TTL)

    def invalidate(self, steam_id: str) -> int:
        return self.cache.forget_prefix(self.cache_prefix(steam_id))

    def _build(self, steam_id: str, filters: DashboardFilters) -> dict[str, Any]:
        player = self.session.execute(select(Player).where(Player.steam_id == steam_id)).scalar_one_or_none()
        if player is None:
            return {rank_type.value: [] for rank_type in RankType}

        query = (
            select(PlayerRank)
            .where(PlayerRank.player_id == player.id)
            .order_by(PlayerRank.created_at.desc(), PlayerRank.id.desc())
        )
        if filters.has_date_range:
            query = query.where(PlayerRank.created_at.between(filters.date_from, filters.date_to))
        # Enough rows for every ladder and map
        ranks = self.session.execute(query.limit(filters.past_match_count * 10)).scalars().all()

        return {
            rank_type.value: format_ladder(
                rank_type.value,
                [rank for rank in ranks if rank.rank_type == rank_type.value],
                filters.past_match_count,
            )
            for rank_type in RankType
        }
