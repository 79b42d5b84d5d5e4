"""
Clan leaderboards.

Members are ranked by the average of one metric over the clan matches in a
date window. Positions are stored per (clan, window, type, user) so reads
never recompute.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time, timedelta
from typing import Any

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import ComplexionRole, LeaderboardType
from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import (
    Clan,
    ClanLeaderboard,
    ClanMatch,
    GameMatch,
    PlayerMatchAimEvent,
    PlayerMatchEvent,
    _utc_now,
)
from topfrag.services.complexion import PlayerComplexionService

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"week": 7, "month": 30}

# Leaderboards read straight from a stored column
COLUMN_METRICS = {
    LeaderboardType.AIM: PlayerMatchAimEvent.aim_rating,
    LeaderboardType.IMPACT: PlayerMatchEvent.average_impact,
    LeaderboardType.ROUND_SWING: PlayerMatchEvent.match_swing_percent,
}


def _day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=UTC)


def period_window(period: str = "week", now: datetime | None = None) -> tuple[datetime, datetime]:
    """(start of day N days ago, end of today) for a week or month period."""
    now = now or _utc_now()
    days = PERIOD_DAYS.get(period, PERIOD_DAYS["week"])
    start = _day(now - timedelta(days=days))
    end = datetime.combine(now.date(), time.max, tzinfo=UTC)
    return start, end


class ClanLeaderboardService:
    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.complexion = PlayerComplexionService(session, cache if cache is not None else get_cache_manager())

    def clan_match_ids(self, clan: Clan, start: datetime, end: datetime) -> list[int]:
        return list(
            self.session.execute(
                select(GameMatch.id)
                .join(ClanMatch, ClanMatch.match_id == GameMatch.id)
                .where(ClanMatch.clan_id == clan.id, GameMatch.created_at.between(start, end))
            ).scalars()
        )

    def member_values(self, clan: Clan, leaderboard_type: LeaderboardType, match_ids: list[int]) -> pd.Series:
        """Average metric per member user id, members without data left out."""
        members = {
            member.user.steam_id: member.user_id
            for member in clan.members
            if member.user is not None and member.user.steam_id
        }
        if not members or not match_ids:
            return pd.Series(dtype=float)

        if leaderboard_type in COLUMN_METRICS:
            column = COLUMN_METRICS[leaderboard_type]
            model = column.class_
            rows = self.session.execute(
                select(model.player_steam_id, column).where(
                    model.match_id.in_(match_ids), model.player_steam_id.in_(list(members))
                )
            ).all()
            frame = pd.DataFrame([tuple(row) for row in rows], columns=["steam_id", "value"])
        else:
            role = ComplexionRole(leaderboard_type.value)
            records = []
            for steam_id in members:
                for match_id in match_ids:
                    complexion = self.complexion.get(steam_id, match_id)
                    if complexion and role.value in complexion:
                        records.append((steam_id, complexion[role.value]))
            frame = pd.DataFrame(records, columns=["steam_id", "value"])

        if frame.empty:
            return pd.Series(dtype=float)
        frame["user_id"] = frame["steam_id"].map(members)
        return frame.groupby("user_id")["value"].mean().astype(float)

    def calculate(
        self, clan: Clan, leaderboard_type: LeaderboardType | str, start: datetime, end: datetime
    ) -> int:
        """Rank members for one type and window. Returns how many positions were stored."""
        leaderboard_type = LeaderboardType(leaderboard_type)
        match_ids = self.clan_match_ids(clan, start, end)
        if not match_ids:
            return 0

        values = self.member_values(clan, leaderboard_type, match_ids).sort_values(ascending=False, kind="stable")
        start_day, end_day = _day(start), _day(end)
        for position, (user_id, value) in enumerate(values.items(), start=1):
            entry = self.session.execute(
                select(ClanLeaderboard).where(
                    ClanLeaderboard.clan_id == clan.id,
                    ClanLeaderboard.start_date == start_day,
                    ClanLeaderboard.end_date == end_day,
                    ClanLeaderboard.leaderboard_type == leaderboard_type.value,
                    ClanLeaderboard.user_id == int(user_id),
                )
            ).scalar_one_or_none()
            if entry is None:
                entry = ClanLeaderboard(
                    clan_id=clan.id,
                    start_date=start_day,
                    end_date=end_day,
                    leaderboard_type=leaderboard_type.value,
                    user_id=int(user_id),
                )
                self.session.add(entry)
            entry.position = position
            entry.value = float(value)

        self.session.commit()
        return len(values)

    def calculate_all(self, clan: Clan, now: datetime | None = None) -> None:
        """Week and month leaderboards of every type. One failing type does not stop the rest."""
        logger.info(f"Calculating leaderboards for clan {clan.id} ({clan.name})")
        windows = [period_window(period, now) for period in PERIOD_DAYS]
        for leaderboard_type in LeaderboardType:
            for start, end in windows:
                try:
                    self.calculate(clan, leaderboard_type, start, end)
                except Exception as e:
                    self.session.rollback()
                    logger.error(f"Error calculating {leaderboard_type} leaderboard for clan {clan.id}: {e}")

    def calculate_for_all_clans(self, now: datetime | None = None) -> int:
        clans = self.session.execute(select(Clan).order_by(Clan.id)).scalars().all()
        if not clans:
            logger.info("No clans found, skipping leaderboard calculation")
            return 0
        for clan in clans:
            self.calculate_all(clan, now)
        logger.info(f"Calculated leaderboards for {len(clans)} clans")
        return len(clans)

    def get_leaderboard(
        self,
        clan: Clan,
        leaderboard_type: LeaderboardType | str,
        period: str = "week",
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        if start is None or end is None:
            start, end = period_window(period)
        leaderboard_type = LeaderboardType(leaderboard_type)

        entries = self.session.execute(
            select(ClanLeaderboard)
            .where(
                ClanLeaderboard.clan_id == clan.id,
                ClanLeaderboard.leaderboard_type == leaderboard_type.value,
                ClanLeaderboard.start_date == _day(start),
                ClanLeaderboard.end_date == _day(end),
            )
            .order_by(ClanLeaderboard.position)
        ).scalars()
        return {
            "data": [entry.to_dict() for entry in entries],
            "type": leaderboard_type.value,
            "start_date": start.date().isoformat(),
            "end_date": end.date().isoformat(),
        }
