"""
Utility analysis for one player in a match.

Grenade rows and per-round rows are loaded into pandas frames and grouped
there; molotov and incendiary count as a single "Fire" type.
"""

from __future__ import annotations

import logging
from typing import Any

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import GrenadeType
from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import (
    GameMatch,
    GrenadeEvent,
    MatchPlayer,
    Player,
    PlayerRoundEvent,
    User,
    user_has_match_access,
)

logger = logging.getLogger(__name__)

FIRE_LABEL = "Fire"
THROWN_COLUMNS = ["flashes_thrown", "fire_grenades_thrown", "smokes_thrown", "hes_thrown", "decoys_thrown"]


def utility_cache_key(player_steam_id: str | None, round_number: int | None) -> str:
    key = "utility-analysis"
    if player_steam_id:
        key += f"_player_{player_steam_id}"
    if round_number:
        key += f"_round_{round_number}"
    return key


def _frame(session: Session, query, columns: list[str]) -> pd.DataFrame:
    rows = session.execute(query).all()
    return pd.DataFrame([tuple(row) for row in rows], columns=columns)


def _mean(series: pd.Series, digits: int) -> float:
    if series.empty:
        return 0
    return round(float(series.mean()), digits)


def match_players(session: Session, match_id: int) -> list[dict[str, str]]:
    rows = session.execute(
        select(Player.steam_id, Player.name)
        .join(MatchPlayer, MatchPlayer.player_id == Player.id)
        .where(MatchPlayer.match_id == match_id)
        .order_by(MatchPlayer.id)
    ).all()
    return [{"steam_id": steam_id, "name": name} for steam_id, name in rows]


class UtilityAnalysisService:
    GRENADE_COLUMNS = [
        "round_number",
        "round_time",
        "grenade_type",
        "effectiveness_rating",
        "enemy_flash_duration",
        "friendly_flash_duration",
        "enemy_players_affected",
        "friendly_players_affected",
        "damage_dealt",
    ]
    ROUND_COLUMNS = ["round_number", "grenade_effectiveness", "smoke_blocking_duration", *THROWN_COLUMNS]

    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()

    def get_analysis(
        self,
        user: User,
        match_id: int,
        player_steam_id: str | None = None,
        round_number: int | None = None,
    ) -> dict[str, Any]:
        if not user_has_match_access(self.session, user, match_id):
            return {}

        players = match_players(self.session, match_id)
        if not player_steam_id:
            if user.steam_id and any(p["steam_id"] == user.steam_id for p in players):
                player_steam_id = user.steam_id
            elif players:
                player_steam_id = players[0]["steam_id"]

        key = utility_cache_key(player_steam_id, round_number)
        analysis = self.cache.remember(
            key, match_id, lambda: self._build(match_id, players, player_steam_id, round_number)
        )
        if not analysis:
            return analysis
        # Per viewer; kept out of the cached payload
        return {**analysis, "current_user_steam_id": user.steam_id}

    def _build(
        self,
        match_id: int,
        players: list[dict[str, str]],
        player_steam_id: str | None,
        round_number: int | None,
    ) -> dict[str, Any]:
        if self.session.get(GameMatch, match_id) is None:
            return {}

        grenade_query = select(*(getattr(GrenadeEvent, c) for c in self.GRENADE_COLUMNS)).where(
            GrenadeEvent.match_id == match_id, GrenadeEvent.player_steam_id == player_steam_id
        )
        round_query = select(*(getattr(PlayerRoundEvent, c) for c in self.ROUND_COLUMNS)).where(
            PlayerRoundEvent.match_id == match_id, PlayerRoundEvent.player_steam_id == player_steam_id
        )
        if round_number:
            grenade_query = grenade_query.where(GrenadeEvent.round_number == round_number)
            round_query = round_query.where(PlayerRoundEvent.round_number == round_number)

        grenades = _frame(self.session, grenade_query.order_by(GrenadeEvent.id), self.GRENADE_COLUMNS)
        rounds = _frame(self.session, round_query, self.ROUND_COLUMNS)
        if not grenades.empty:
            grenades["type"] = grenades["grenade_type"].where(
                ~grenades["grenade_type"].isin(GrenadeType.fire_types()), FIRE_LABEL
            )

        return {
            "utility_usage": self.utility_usage(grenades),
            "grenade_effectiveness": self.effectiveness_by_round(rounds),
            "grenade_timing": self.grenade_timing(grenades),
            "overall_stats": self.overall_stats(grenades, rounds),
            "players": players,
            "rounds": self.available_rounds(match_id),
        }

    @staticmethod
    def utility_usage(grenades: pd.DataFrame) -> list[dict[str, Any]]:
        if grenades.empty:
            return []
        total = len(grenades)
        counts = grenades.groupby("type", sort=False).size()
        return [
            {"type": grenade_type, "count": int(count), "percentage": round(count / total * 100, 1)}
            for grenade_type, count in counts.items()
        ]

    @staticmethod
    def effectiveness_by_round(rounds: pd.DataFrame) -> list[dict[str, Any]]:
        if rounds.empty:
            return []
        rounds = rounds.sort_values("round_number")
        thrown = rounds[THROWN_COLUMNS].fillna(0).sum(axis=1)
        return [
            {
                "round": int(row.round_number),
                "effectiveness": round(float(row.grenade_effectiveness or 0), 1),
                "total_grenades": int(total),
            }
            for row, total in zip(rounds.itertuples(index=False), thrown, strict=True)
        ]

    @staticmethod
    def grenade_timing(grenades: pd.DataFrame) -> list[dict[str, Any]]:
        if grenades.empty:
            return []
        timing = []
        for grenade_type, group in grenades.groupby("type", sort=False):
            timing.append(
                {
                    "type": grenade_type,
                    "timing_data": [
                        {
                            "round_time": max(0, int(row.round_time or 0)),
                            "round_number": int(row.round_number),
                            "effectiveness": (
                                0 if pd.isna(row.effectiveness_rating) else float(row.effectiveness_rating)
                            ),
                        }
                        for row in group.itertuples(index=False)
                    ],
                }
            )
        return timing

    @classmethod
    def overall_stats(cls, grenades: pd.DataFrame, rounds: pd.DataFrame) -> dict[str, Any]:
        if rounds.empty:
            rated = pd.Series(dtype=float)
        else:
            effectiveness = rounds["grenade_effectiveness"].fillna(0)
            rated = effectiveness[effectiveness != 0]

        if grenades.empty:
            flashes = hes = grenades
        else:
            flashes = grenades[grenades["grenade_type"] == GrenadeType.FLASHBANG.value]
            hes = grenades[grenades["grenade_type"] == GrenadeType.HE_GRENADE.value]

        return {
            "overall_grenade_rating": _mean(rated, 1),
            "flash_stats": cls.flash_stats(flashes),
            "he_stats": cls.he_stats(hes),
            "smoke_stats": cls.smoke_stats(rounds),
        }

    @staticmethod
    def flash_stats(flashes: pd.DataFrame) -> dict[str, float]:
        if flashes.empty:
            return {
                "enemy_avg_duration": 0,
                "friendly_avg_duration": 0,
                "enemy_avg_blinded": 0,
                "friendly_avg_blinded": 0,
            }
        enemy = flashes["enemy_flash_duration"].dropna()
        friendly = flashes["friendly_flash_duration"].dropna()
        return {
            "enemy_avg_duration": _mean(enemy[enemy > 0], 2),
            "friendly_avg_duration": _mean(friendly[friendly > 0], 2),
            "enemy_avg_blinded": _mean(flashes["enemy_players_affected"].fillna(0), 1),
            "friendly_avg_blinded": _mean(flashes["friendly_players_affected"].fillna(0), 1),
        }

    @staticmethod
    def he_stats(hes: pd.DataFrame) -> dict[str, float]:
        if hes.empty:
            return {"avg_damage": 0}
        damage = hes["damage_dealt"].fillna(0)
        return {"avg_damage": _mean(damage[damage > 0], 1)}

    @staticmethod
    def smoke_stats(rounds: pd.DataFrame) -> dict[str, Any]:
        if rounds.empty:
            total_duration = 0
            total_smokes = 0
        else:
            total_duration = int(rounds["smoke_blocking_duration"].fillna(0).sum())
            total_smokes = int(rounds["smokes_thrown"].fillna(0).sum())
        average = round(total_duration / total_smokes, 1) if total_smokes > 0 else 0
        return {
            "total_smoke_blocking_duration": total_duration,
            "avg_smoke_blocking_duration": average,
            "total_round_smoke_blocking_duration": total_duration,
            "avg_round_smoke_blocking_duration": average,
            "smoke_count": total_smokes,
        }

    def available_rounds(self, match_id: int) -> list[Any]:
        rounds = self.session.execute(
            select(GrenadeEvent.round_number)
            .where(GrenadeEvent.match_id == match_id)
            .distinct()
            .order_by(GrenadeEvent.round_number)
        ).scalars()
        return ["all", *rounds]
