"""
Match details and match history.

The scoreboard is cached per match under ``match-details``. The viewer's own
fields (team, win, participation) are computed per request, since the same
cached scoreboard serves every player of the match.
"""

from __future__ import annotations

import math
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from topfrag.core.enums import ProcessingStatus
from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import (
    DemoProcessingJob,
    GameMatch,
    MatchPlayer,
    Player,
    PlayerMatchEvent,
    User,
    _iso,
    user_has_match_access,
)

CACHE_COMPONENT = "match-details"


def kill_death_ratio(kills: int, deaths: int) -> float:
    if deaths == 0:
        return 0.0
    return round(kills / deaths, 2)


def player_team(session: Session, match_id: int, steam_id: str | None) -> str | None:
    if not steam_id:
        return None
    return session.execute(
        select(MatchPlayer.team)
        .join(Player, MatchPlayer.player_id == Player.id)
        .where(MatchPlayer.match_id == match_id, Player.steam_id == steam_id)
    ).scalar_one_or_none()


def match_summary(session: Session, user: User, match: GameMatch) -> dict[str, Any]:
    """Match header as seen by user. A non-participant counts as a winner."""
    team = player_team(session, match.id, user.steam_id)
    return {
        "id": match.id,
        "map": match.map,
        "winning_team_score": match.winning_team_score,
        "losing_team_score": match.losing_team_score,
        "winning_team": match.winning_team,
        "player_won_match": match.winning_team == team if team else True,
        "player_was_participant": team is not None,
        "player_team": team,
        "match_type": match.match_type,
        "game_mode": match.game_mode,
        "created_at": _iso(match.created_at),
    }


def scoreboard(session: Session, match_id: int) -> list[dict[str, Any]]:
    rows = session.execute(
        select(PlayerMatchEvent, Player.name, MatchPlayer.team)
        .join(Player, Player.steam_id == PlayerMatchEvent.player_steam_id)
        .join(MatchPlayer, (MatchPlayer.player_id == Player.id) & (MatchPlayer.match_id == match_id))
        .where(PlayerMatchEvent.match_id == match_id)
        .order_by(PlayerMatchEvent.id)
    ).all()

    return [
        {
            "player_steam_id": event.player_steam_id,
            "rank_value": event.rank_value,
            "player_kills": event.kills or 0,
            "player_deaths": event.deaths or 0,
            "player_first_kill_differential": (event.first_kills or 0) - (event.first_deaths or 0),
            "player_kill_death_ratio": kill_death_ratio(event.kills or 0, event.deaths or 0),
            "player_adr": round(event.adr or 0),
            "team": team,
            "player_name": name,
        }
        for event, name, team in rows
    ]


class MatchDetailsService:
    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()

    def get_details(self, user: User, match_id: int) -> dict[str, Any]:
        if not user_has_match_access(self.session, user, match_id):
            return {}

        match = self.session.get(GameMatch, match_id)
        if match is None:
            return {}

        player_stats = self.cache.remember(
            CACHE_COMPONENT, match_id, lambda: scoreboard(self.session, match_id)
        )
        return {
            "id": match.id,
            "created_at": _iso(match.created_at),
            "is_completed": True,
            "match_details": match_summary(self.session, user, match),
            "player_stats": player_stats,
            "processing_status": None,
            "progress_percentage": None,
            "current_step": None,
            "error_message": None,
        }


class MatchHistoryService:
    """Paginated list of the matches a user played in or uploaded, newest first."""

    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()
        self.details = MatchDetailsService(session, self.cache)

    def _query(self, user: User, filters: dict[str, Any]):
        conditions = [GameMatch.uploaded_by == user.id]
        if user.steam_id:
            played = (
                select(MatchPlayer.match_id)
                .join(Player, MatchPlayer.player_id == Player.id)
                .where(Player.steam_id == user.steam_id)
            )
            conditions.append(GameMatch.id.in_(played))

        # Matches still being parsed show up through in-progress jobs instead
        unfinished = select(DemoProcessingJob.match_id).where(
            DemoProcessingJob.match_id.is_not(None),
            DemoProcessingJob.processing_status.not_in(
                [ProcessingStatus.COMPLETED.value, ProcessingStatus.FAILED.value]
            ),
        )
        query = select(GameMatch).where(or_(*conditions), GameMatch.id.not_in(unfinished))

        if filters.get("map"):
            query = query.where(GameMatch.map.like(f"%{filters['map']}%"))
        if filters.get("match_type"):
            query = query.where(GameMatch.match_type == filters["match_type"])
        return query

    def list(self, user: User, page: int = 1, per_page: int = 10, filters: dict[str, Any] | None = None) -> dict:
        filters = filters or {}
        page = max(page, 1)
        query = self._query(user, filters)

        total = self.session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        matches = self.session.execute(
            query.order_by(GameMatch.created_at.desc(), GameMatch.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).scalars()

        data = []
        for match in matches:
            entry = match_summary(self.session, user, match)
            board = self.cache.remember(CACHE_COMPONENT, match.id, lambda m=match.id: scoreboard(self.session, m))
            entry["player_stats"] = next(
                (row for row in board if user.steam_id and row["player_steam_id"] == user.steam_id),
                None,
            )
            data.append(entry)

        offset = (page - 1) * per_page
        return {
            "data": data,
            "pagination": {
                "current_page": page,
                "per_page": per_page,
                "total": total,
                "last_page": max(math.ceil(total / per_page), 1),
                "from": offset + 1 if total else None,
                "to": min(offset + per_page, total),
            },
        }
