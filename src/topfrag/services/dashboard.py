"""
Per-player dashboard over the player's most recent matches.

Every tab compares the last ``past_match_count`` matches (after filters)
against the same number of matches before them and reports each stat as
``{value, trend, change}``. Match rows are loaded into a pandas frame and
aggregated there.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import pandas as pd
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from topfrag.core.enums import ComplexionRole
from topfrag.infra.cache import MatchCacheManager, filter_cache_key, get_cache_manager
from topfrag.infra.database import GameMatch, MatchPlayer, Player, PlayerMatchAimEvent, PlayerMatchEvent, User
from topfrag.services.complexion import PlayerComplexionService, round_half_up
from topfrag.services.utility_analysis import THROWN_COLUMNS

logger = logging.getLogger(__name__)

DASHBOARD_TTL = 900
DEFAULT_MATCH_COUNT = 10
DASHBOARD_TABS = ("player-stats", "aim", "utility", "summary", "map-stats")
CLUTCH_SIZES = ("1v1", "1v2", "1v3", "1v4", "1v5")

EVENT_COLUMNS = [
    "match_id",
    "player_steam_id",
    "kills",
    "assists",
    "deaths",
    "adr",
    "first_kills",
    "first_deaths",
    "total_successful_trades",
    "total_possible_trades",
    "total_traded_deaths",
    "total_possible_traded_deaths",
    *[f"clutch_wins_{size}" for size in CLUTCH_SIZES],
    *[f"clutch_attempts_{size}" for size in CLUTCH_SIZES],
    "enemy_flash_duration",
    "friendly_flash_duration",
    "enemy_players_affected",
    "friendly_players_affected",
    "damage_dealt",
    "average_grenade_effectiveness",
    *THROWN_COLUMNS,
    "average_impact",
    "match_swing_percent",
]
MATCH_COLUMNS = ["map", "match_type", "created_at", "winning_team", "team"]
AIM_COLUMNS = [
    "aim_rating",
    "headshot_accuracy",
    "spraying_accuracy",
    "average_crosshair_placement_x",
    "average_crosshair_placement_y",
    "average_time_to_damage",
]


@dataclass(frozen=True)
class DashboardFilters:
    """Query filters shared by every dashboard tab."""

    date_from: datetime | None = None
    date_to: datetime | None = None
    game_type: str | None = None
    map: str | None = None
    past_match_count: int = DEFAULT_MATCH_COUNT

    @property
    def has_date_range(self) -> bool:
        # A lone bound is ignored.
        return self.date_from is not None and self.date_to is not None

    def as_dict(self) -> dict[str, Any]:
        values = {
            "date_from": self.date_from,
            "date_to": self.date_to,
            "game_type": self.game_type,
            "map": self.map,
            "past_match_count": self.past_match_count,
        }
        return {key: value for key, value in values.items() if value is not None}


def stat_with_trend(current: float, previous: float, lower_is_better: bool = False) -> dict[str, Any]:
    """
    Compare a stat with its previous-period value.

    ``change`` is the absolute percentage change to 1 place. A stat that
    appears from nothing counts as a 100% change.
    """
    trend = "neutral"
    change = 0.0
    if previous > 0:
        change = round_half_up((current - previous) / previous * 100, 1)
        if change > 0:
            trend = "down" if lower_is_better else "up"
        elif change < 0:
            trend = "up" if lower_is_better else "down"
    elif current > 0:
        trend = "down" if lower_is_better else "up"
        change = 100.0
    return {"value": current, "trend": trend, "change": abs(change)}


def _per_match(total: float, matches: int, places: int = 1) -> float:
    return round_half_up(total / matches, places) if matches > 0 else 0


def _rate(part: float, total: float) -> float:
    return round_half_up(part / total * 100, 1) if total > 0 else 0


def _mean(series: pd.Series, places: int) -> float:
    if series.empty:
        return 0
    return round_half_up(float(series.mean()), places)


def _clutch_stats(frame: pd.DataFrame) -> dict[str, dict[str, Any]]:
    stats = {}
    for size in CLUTCH_SIZES:
        wins = int(frame[f"clutch_wins_{size}"].sum()) if not frame.empty else 0
        attempts = int(frame[f"clutch_attempts_{size}"].sum()) if not frame.empty else 0
        stats[size] = {"total": wins, "attempts": attempts, "winrate": _rate(wins, attempts)}
    wins = sum(entry["total"] for entry in stats.values())
    attempts = sum(entry["attempts"] for entry in stats.values())
    stats["overall"] = {"total": wins, "attempts": attempts, "winrate": _rate(wins, attempts)}
    return stats


def aggregate_player_stats(frame: pd.DataFrame) -> dict[str, Any]:
    """Totals and per-match averages over a frame of a player's matches."""
    matches = len(frame)
    if not matches:
        empty = {key: 0 for key in PLAYER_STAT_KEYS}
        empty["clutch_stats"] = _clutch_stats(frame)
        return empty

    kills = int(frame["kills"].sum())
    deaths = int(frame["deaths"].sum())
    opening_kills = int(frame["first_kills"].sum())
    opening_deaths = int(frame["first_deaths"].sum())
    trades = int(frame["total_successful_trades"].sum())
    possible_trades = int(frame["total_possible_trades"].sum())
    traded_deaths = int(frame["total_traded_deaths"].sum())
    possible_traded_deaths = int(frame["total_possible_traded_deaths"].sum())

    duels = frame["first_kills"] + frame["first_deaths"]
    duel_winrates = (frame["first_kills"] / duels.where(duels > 0) * 100).fillna(0)

    return {
        "total_matches": matches,
        "win_percentage": _rate(int(frame["won"].sum()), matches),
        "total_kills": kills,
        "total_deaths": deaths,
        "average_kills": _per_match(kills, matches),
        "average_deaths": _per_match(deaths, matches),
        "average_kd": round_half_up(kills / deaths, 2) if deaths > 0 else 0,
        "average_adr": _per_match(float(frame["adr"].sum()), matches),
        "average_impact": _mean(frame["average_impact"], 2),
        "average_round_swing": _mean(frame["match_swing_percent"], 1),
        "total_opening_kills": opening_kills,
        "total_opening_deaths": opening_deaths,
        "opening_duel_winrate": _rate(opening_kills, opening_kills + opening_deaths),
        "average_opening_kills": _per_match(opening_kills, matches),
        "average_opening_deaths": _per_match(opening_deaths, matches),
        "average_duel_winrate": _mean(duel_winrates, 1),
        "total_trades": trades,
        "total_possible_trades": possible_trades,
        "total_traded_deaths": traded_deaths,
        "total_possible_traded_deaths": possible_traded_deaths,
        "average_trades": _per_match(trades, matches),
        "average_possible_trades": _per_match(possible_trades, matches),
        "average_traded_deaths": _per_match(traded_deaths, matches),
        "average_possible_traded_deaths": _per_match(possible_traded_deaths, matches),
        "average_trade_success_rate": _rate(trades, possible_trades),
        "average_traded_death_success_rate": _rate(traded_deaths, possible_traded_deaths),
        "clutch_stats": _clutch_stats(frame),
    }


PLAYER_STAT_KEYS = (
    "total_matches",
    "win_percentage",
    "total_kills",
    "total_deaths",
    "average_kills",
    "average_deaths",
    "average_kd",
    "average_adr",
    "average_impact",
    "average_round_swing",
    "total_opening_kills",
    "total_opening_deaths",
    "opening_duel_winrate",
    "average_opening_kills",
    "average_opening_deaths",
    "average_duel_winrate",
    "total_trades",
    "total_possible_trades",
    "total_traded_deaths",
    "total_possible_traded_deaths",
    "average_trades",
    "average_possible_trades",
    "average_traded_deaths",
    "average_possible_traded_deaths",
    "average_trade_success_rate",
    "average_traded_death_success_rate",
)


def aggregate_utility_stats(frame: pd.DataFrame) -> dict[str, float]:
    if frame.empty:
        return {
            "enemy_flash_duration": 0,
            "friendly_flash_duration": 0,
            "enemy_players_blinded": 0,
            "friendly_players_blinded": 0,
            "he_molotov_damage": 0,
            "grenade_effectiveness": 0,
            "grenade_usage": 0,
        }
    return {
        "enemy_flash_duration": _mean(frame["enemy_flash_duration"], 2),
        "friendly_flash_duration": _mean(frame["friendly_flash_duration"], 2),
        "enemy_players_blinded": _mean(frame["enemy_players_affected"], 1),
        "friendly_players_blinded": _mean(frame["friendly_players_affected"], 1),
        "he_molotov_damage": _mean(frame["damage_dealt"], 1),
        "grenade_effectiveness": _mean(frame["average_grenade_effectiveness"], 1),
        "grenade_usage": _mean(frame[THROWN_COLUMNS].sum(axis=1), 1),
    }


def empty_aim_stats() -> dict[str, Any]:
    return {
        "aim_rating": 0,
        "headshot_percentage": 0,
        "spray_accuracy": 0,
        "crosshair_placement": 0,
        "time_to_damage": 0,
        "weapon_breakdown": [],
    }


def empty_complexion() -> dict[str, int]:
    return {role.value: 0 for role in ComplexionRole}


def empty_match_frame() -> pd.DataFrame:
    return pd.DataFrame(columns=EVENT_COLUMNS + MATCH_COLUMNS + ["won"])


class PlayerMatchFrames:
    """Loads a player's match rows into pandas frames."""

    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()

    def matches(
        self,
        steam_id: str,
        filters: DashboardFilters,
        previous: bool = False,
        limit: int | None = None,
    ) -> pd.DataFrame:
        """
        The player's matches, newest first.

        ``previous`` skips the current window and returns the one before it.
        Each row carries a ``won`` flag from the player's team in that match.
        """
        count = limit if limit is not None else filters.past_match_count
        query = (
            select(
                *[getattr(PlayerMatchEvent, column) for column in EVENT_COLUMNS],
                GameMatch.map,
                GameMatch.match_type,
                GameMatch.created_at,
                GameMatch.winning_team,
                MatchPlayer.team,
            )
            .join(GameMatch, GameMatch.id == PlayerMatchEvent.match_id)
            .outerjoin(Player, Player.steam_id == PlayerMatchEvent.player_steam_id)
            .outerjoin(
                MatchPlayer,
                and_(MatchPlayer.match_id == GameMatch.id, MatchPlayer.player_id == Player.id),
            )
            .where(PlayerMatchEvent.player_steam_id == steam_id)
            .order_by(GameMatch.created_at.desc(), GameMatch.id.desc())
        )
        if filters.has_date_range:
            query = query.where(GameMatch.created_at.between(filters.date_from, filters.date_to))
        if filters.game_type:
            query = query.where(GameMatch.match_type == filters.game_type)
        if filters.map:
            query = query.where(GameMatch.map == filters.map)
        if previous:
            query = query.offset(count)
        query = query.limit(count)

        rows = self.session.execute(query).all()
        frame = pd.DataFrame([tuple(row) for row in rows], columns=EVENT_COLUMNS + MATCH_COLUMNS)
        numeric = EVENT_COLUMNS[2:]
        frame[numeric] = frame[numeric].apply(pd.to_numeric, errors="coerce").fillna(0)
        frame["won"] = frame["team"].notna() & (frame["team"] == frame["winning_team"])
        return frame

    def aim_stats(self, frame: pd.DataFrame) -> dict[str, Any]:
        if frame.empty:
            return empty_aim_stats()

        rows = self.session.execute(
            select(*[getattr(PlayerMatchAimEvent, column) for column in AIM_COLUMNS]).where(
                PlayerMatchAimEvent.match_id.in_(frame["match_id"].unique().tolist()),
                PlayerMatchAimEvent.player_steam_id == frame["player_steam_id"].iloc[0],
            )
        ).all()
        if not rows:
            return empty_aim_stats()
        aim = pd.DataFrame([tuple(row) for row in rows], columns=AIM_COLUMNS).fillna(0)

        # Magnitude of the average x/y offset, in degrees
        crosshair = math.hypot(
            float(aim["average_crosshair_placement_x"].mean()),
            float(aim["average_crosshair_placement_y"].mean()),
        )
        return {
            "aim_rating": _mean(aim["aim_rating"], 1),
            "headshot_percentage": _mean(aim["headshot_accuracy"], 1),
            "spray_accuracy": _mean(aim["spraying_accuracy"], 1),
            "crosshair_placement": round_half_up(crosshair, 1),
            "time_to_damage": _mean(aim["average_time_to_damage"], 0),
            "weapon_breakdown": [],
        }

    def complexion(self, steam_id: str, frame: pd.DataFrame) -> dict[str, int]:
        """Mean role scores over the frame's matches, rounded to ints."""
        if frame.empty:
            return empty_complexion()

        service = PlayerComplexionService(self.session, self.cache)
        scores = [service.get(steam_id, int(match_id)) for match_id in frame["match_id"]]
        scores = pd.DataFrame([score for score in scores if score])
        if scores.empty:
            return empty_complexion()
        return {role.value: int(_mean(scores[role.value], 0)) for role in ComplexionRole}


class DashboardService:
    """Dashboard tabs for the signed-in user, cached per player and filter set."""

    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()
        self.frames = PlayerMatchFrames(session, self.cache)

    @staticmethod
    def cache_prefix(steam_id: str) -> str:
        return f"dashboard:{steam_id}:"

    def _remember(self, tab: str, user: User, filters: DashboardFilters, builder: Callable) -> dict[str, Any]:
        key = filter_cache_key(f"{self.cache_prefix(user.steam_id or 'none')}{tab}", filters.as_dict())
        return self.cache.remember_key(key, lambda: builder(user, filters), ttl=DASHBOARD_TTL)

    def invalidate(self, steam_id: str) -> int:
        return self.cache.forget_prefix(self.cache_prefix(steam_id))

    def _periods(self, user: User, filters: DashboardFilters) -> tuple[pd.DataFrame, pd.DataFrame]:
        if not user.steam_id:
            return empty_match_frame(), empty_match_frame()
        return (
            self.frames.matches(user.steam_id, filters),
            self.frames.matches(user.steam_id, filters, previous=True),
        )

    # -------------------------------------------------------------------------
    # Tabs
    # -------------------------------------------------------------------------

    def get_player_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        return self._remember("player-stats", user, filters, self._build_player_stats)

    def get_aim_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        return self._remember("aim", user, filters, self._build_aim_stats)

    def get_utility_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        return self._remember("utility", user, filters, self._build_utility_stats)

    def get_summary(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        return self._remember("summary", user, filters, self._build_summary)

    def get_map_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        return self._remember("map-stats", user, filters, self._build_map_stats)

    def _build_player_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        current_frame, previous_frame = self._periods(user, filters)
        current = aggregate_player_stats(current_frame)
        previous = aggregate_player_stats(previous_frame)

        def trend(key: str, lower_is_better: bool = False) -> dict[str, Any]:
            return stat_with_trend(current[key], previous[key], lower_is_better)

        return {
            "opening_stats": {
                "total_opening_kills": trend("total_opening_kills"),
                "total_opening_deaths": trend("total_opening_deaths"),
                "opening_duel_winrate": trend("opening_duel_winrate"),
                "average_opening_kills": trend("average_opening_kills"),
                "average_opening_deaths": trend("average_opening_deaths", lower_is_better=True),
                "average_duel_winrate": trend("average_duel_winrate"),
            },
            "trading_stats": {
                key: trend(key)
                for key in (
                    "total_trades",
                    "total_possible_trades",
                    "total_traded_deaths",
                    "total_possible_traded_deaths",
                    "average_trades",
                    "average_possible_trades",
                    "average_traded_deaths",
                    "average_possible_traded_deaths",
                    "average_trade_success_rate",
                    "average_traded_death_success_rate",
                )
            },
            "clutch_stats": current["clutch_stats"],
        }

    def _build_aim_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        current_frame, previous_frame = self._periods(user, filters)
        current = self.frames.aim_stats(current_frame)
        previous = self.frames.aim_stats(previous_frame)
        return {
            "aim_statistics": {
                "average_aim_rating": stat_with_trend(current["aim_rating"], previous["aim_rating"]),
                "average_headshot_percentage": stat_with_trend(
                    current["headshot_percentage"], previous["headshot_percentage"]
                ),
                "average_spray_accuracy": stat_with_trend(current["spray_accuracy"], previous["spray_accuracy"]),
                "average_crosshair_placement": stat_with_trend(
                    current["crosshair_placement"], previous["crosshair_placement"], lower_is_better=True
                ),
                "average_time_to_damage": stat_with_trend(
                    current["time_to_damage"], previous["time_to_damage"], lower_is_better=True
                ),
            },
            "weapon_breakdown": current["weapon_breakdown"],
        }

    def _build_utility_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        current_frame, previous_frame = self._periods(user, filters)
        current = aggregate_utility_stats(current_frame)
        previous = aggregate_utility_stats(previous_frame)
        return {
            "avg_blind_duration_enemy": stat_with_trend(
                current["enemy_flash_duration"], previous["enemy_flash_duration"]
            ),
            "avg_blind_duration_friendly": stat_with_trend(
                current["friendly_flash_duration"], previous["friendly_flash_duration"], lower_is_better=True
            ),
            "avg_players_blinded_enemy": stat_with_trend(
                current["enemy_players_blinded"], previous["enemy_players_blinded"]
            ),
            "avg_players_blinded_friendly": stat_with_trend(
                current["friendly_players_blinded"], previous["friendly_players_blinded"], lower_is_better=True
            ),
            "he_molotov_damage": stat_with_trend(current["he_molotov_damage"], previous["he_molotov_damage"]),
            "grenade_effectiveness": stat_with_trend(
                current["grenade_effectiveness"], previous["grenade_effectiveness"]
            ),
            "average_grenade_usage": stat_with_trend(current["grenade_usage"], previous["grenade_usage"]),
        }

    def _build_summary(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        current_frame, previous_frame = self._periods(user, filters)
        player, previous_player = aggregate_player_stats(current_frame), aggregate_player_stats(previous_frame)
        aim, previous_aim = self.frames.aim_stats(current_frame), self.frames.aim_stats(previous_frame)
        utility = aggregate_utility_stats(current_frame)
        previous_utility = aggregate_utility_stats(previous_frame)

        trends = {
            "Win Rate": stat_with_trend(player["win_percentage"], previous_player["win_percentage"]),
            "K/D Ratio": stat_with_trend(player["average_kd"], previous_player["average_kd"]),
            "Average Kills": stat_with_trend(player["average_kills"], previous_player["average_kills"]),
            "Aim Rating": stat_with_trend(aim["aim_rating"], previous_aim["aim_rating"]),
            "Headshot %": stat_with_trend(aim["headshot_percentage"], previous_aim["headshot_percentage"]),
            "Crosshair Placement": stat_with_trend(
                aim["crosshair_placement"], previous_aim["crosshair_placement"], lower_is_better=True
            ),
            "Grenade Effectiveness": stat_with_trend(
                utility["grenade_effectiveness"], previous_utility["grenade_effectiveness"]
            ),
            "Enemy Flash Duration": stat_with_trend(
                utility["enemy_flash_duration"], previous_utility["enemy_flash_duration"]
            ),
        }

        return {
            "most_improved_stats": _top_changes(trends, "up"),
            "least_improved_stats": _top_changes(trends, "down"),
            "average_aim_rating": {"value": aim["aim_rating"], "max": 100},
            "average_utility_effectiveness": {"value": utility["grenade_effectiveness"], "max": 100},
            "player_card": player_card(
                user.username,
                player,
                self.frames.complexion(user.steam_id, current_frame) if user.steam_id else empty_complexion(),
            ),
        }

    def _build_map_stats(self, user: User, filters: DashboardFilters) -> dict[str, Any]:
        frame, _ = self._periods(user, filters)
        if frame.empty:
            return {"maps": [], "total_matches": 0}

        maps = []
        for map_name, group in frame.groupby("map", sort=False):
            matches = len(group)
            kills = int(group["kills"].sum())
            deaths = int(group["deaths"].sum())
            maps.append(
                {
                    "map": map_name,
                    "matches": matches,
                    "wins": int(group["won"].sum()),
                    "win_rate": _rate(int(group["won"].sum()), matches),
                    "avg_kills": _per_match(kills, matches),
                    "avg_assists": _per_match(int(group["assists"].sum()), matches),
                    "avg_deaths": _per_match(deaths, matches),
                    "avg_kd": round_half_up(kills / deaths, 2) if deaths > 0 else 0,
                    "avg_adr": _per_match(float(group["adr"].sum()), matches),
                    "avg_opening_kills": _per_match(int(group["first_kills"].sum()), matches),
                    "avg_opening_deaths": _per_match(int(group["first_deaths"].sum()), matches),
                    "avg_complexion": self.frames.complexion(user.steam_id, group),
                }
            )
        maps.sort(key=lambda entry: entry["matches"], reverse=True)
        return {"maps": maps, "total_matches": len(frame)}


def _top_changes(trends: dict[str, dict[str, Any]], direction: str) -> list[dict[str, Any]] | None:
    """The two largest changes in one direction, or None when nothing moved that way."""
    moved = [
        {**stat, "name": name}
        for name, stat in trends.items()
        if stat["trend"] == direction and stat["change"] > 0
    ]
    moved.sort(key=lambda stat: stat["change"], reverse=True)
    return moved[:2] or None


def player_card(username: str, stats: dict[str, Any], complexion: dict[str, int]) -> dict[str, Any]:
    return {
        "username": username,
        "avatar": None,
        "average_impact": stats["average_impact"],
        "average_round_swing": stats["average_round_swing"],
        "average_kd": stats["average_kd"],
        "average_adr": stats["average_adr"],
        "average_kills": stats["average_kills"],
        "average_deaths": stats["average_deaths"],
        "total_kills": stats["total_kills"],
        "total_deaths": stats["total_deaths"],
        "total_matches": stats["total_matches"],
        "win_percentage": stats["win_percentage"],
        "player_complexion": complexion,
    }
