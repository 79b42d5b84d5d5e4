"""
Player complexion: how strongly a player's match line fits each role.

Every role is a handful of metrics read from PlayerMatchEvent. Each metric
is normalised against a "good" value to 0-100 and the role score is the
weighted mean of those, rounded to an int.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import ComplexionRole
from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import GameMatch, PlayerMatchEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricConfig:
    max_score: float
    higher_better: bool
    weight: float


COMPLEXION_CONFIG: dict[ComplexionRole, dict[str, MetricConfig]] = {
    ComplexionRole.OPENER: {
        "average_round_time_of_death": MetricConfig(25, False, 1.0),
        "average_time_to_contact": MetricConfig(20, False, 3.0),
        "first_kills_plus_minus": MetricConfig(3, True, 5.0),
        "first_kill_attempts": MetricConfig(4, True, 4.0),
        "traded_death_percentage": MetricConfig(50, True, 2.0),
    },
    ComplexionRole.CLOSER: {
        "average_round_time_to_death": MetricConfig(40, True, 1.0),
        "average_round_time_to_contact": MetricConfig(35, True, 1.0),
        "clutch_win_percentage": MetricConfig(25, True, 4.0),
        "total_clutch_attempts": MetricConfig(5, True, 2.0),
    },
    ComplexionRole.SUPPORT: {
        "total_grenades_thrown": MetricConfig(25, True, 1.0),
        "damage_dealt_from_grenades": MetricConfig(200, True, 2.0),
        "enemy_flash_duration": MetricConfig(30, True, 2.0),
        "average_grenade_effectiveness": MetricConfig(50, True, 5.0),
        "total_flashes_leading_to_kills": MetricConfig(5, True, 2.0),
    },
    ComplexionRole.FRAGGER: {
        "kill_death_ratio": MetricConfig(1.5, True, 2.0),
        "total_kills_per_round": MetricConfig(0.9, True, 4.0),
        "average_damage_per_round": MetricConfig(90, True, 3.0),
        "trade_kill_percentage": MetricConfig(50, True, 3.0),
        "trade_opportunities_per_round": MetricConfig(1.5, True, 1.0),
    },
}


def round_half_up(value: float | int, places: int = 0) -> float:
    """Round with halves going away from zero (2.5 -> 3), unlike round()."""
    exponent = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def percentage(part: float | int | None, total: float | int | None) -> float:
    """``part / total * 100`` to 2 places, 0 when total is 0."""
    if not total:
        return 0.0
    return round_half_up((part or 0) / total * 100, 2)


def normalise(value: float | int | None, max_score: float, higher_better: bool = True) -> float:
    """Scale value against max_score into 0-100, inverted when lower is better."""
    ratio = (value or 0) / max_score
    score = ratio if higher_better else 1 - ratio
    return round_half_up(max(0.0, min(score, 1.0)) * 100, 2)


def weighted_mean(scores: list[tuple[float, float]]) -> int:
    """Weighted mean of (score, weight) pairs, rounded to an int."""
    total_weight = sum(weight for _, weight in scores)
    if not scores or total_weight <= 0:
        return 0
    return int(round_half_up(sum(score * weight for score, weight in scores) / total_weight))


def role_inputs(event: PlayerMatchEvent, rounds: int) -> dict[ComplexionRole, dict[str, float]]:
    """Raw metric values per role, keyed like COMPLEXION_CONFIG."""
    clutch_attempts, clutch_wins = event.clutch_totals()
    kills = event.kills or 0
    first_kills = event.first_kills or 0
    first_deaths = event.first_deaths or 0

    return {
        ComplexionRole.OPENER: {
            "average_round_time_of_death": event.average_round_time_of_death or 0,
            "average_time_to_contact": event.average_time_to_contact or 0,
            "first_kills_plus_minus": first_kills - first_deaths,
            "first_kill_attempts": first_kills + first_deaths,
            "traded_death_percentage": percentage(
                event.total_traded_deaths, event.total_possible_traded_deaths
            ),
        },
        ComplexionRole.CLOSER: {
            "average_round_time_to_death": event.average_round_time_of_death or 0,
            "average_round_time_to_contact": event.average_time_to_contact or 0,
            "clutch_win_percentage": percentage(clutch_wins, clutch_attempts),
            "total_clutch_attempts": clutch_attempts,
        },
        ComplexionRole.SUPPORT: {
            "total_grenades_thrown": event.grenades_thrown(),
            "damage_dealt_from_grenades": event.damage_dealt or 0,
            "enemy_flash_duration": event.enemy_flash_duration or 0,
            "average_grenade_effectiveness": event.average_grenade_effectiveness or 0,
            "total_flashes_leading_to_kills": event.flashes_leading_to_kills or 0,
        },
        ComplexionRole.FRAGGER: {
            "kill_death_ratio": kills / max(event.deaths or 0, 1),
            "total_kills_per_round": kills / rounds if rounds > 0 else 0,
            "average_damage_per_round": event.adr or 0,
            "trade_kill_percentage": percentage(event.total_successful_trades, event.total_possible_trades),
            "trade_opportunities_per_round": (event.total_possible_trades or 0) / rounds if rounds > 0 else 0,
        },
    }


def role_score(role: ComplexionRole, values: dict[str, float]) -> int:
    config = COMPLEXION_CONFIG[role]
    return weighted_mean(
        [
            (normalise(values[metric], cfg.max_score, cfg.higher_better), cfg.weight)
            for metric, cfg in config.items()
        ]
    )


def compute_complexion(event: PlayerMatchEvent, rounds: int) -> dict[str, int]:
    """Score a PlayerMatchEvent in every role."""
    inputs = role_inputs(event, rounds)
    return {role.value: role_score(role, inputs[role]) for role in ComplexionRole}


def role_stats(event: PlayerMatchEvent, role: ComplexionRole | str) -> dict[str, Any]:
    """Human-labelled stats backing a role score."""
    role = ComplexionRole(role)
    clutch_attempts, clutch_wins = event.clutch_totals()
    kills = event.kills or 0

    if role == ComplexionRole.OPENER:
        return {
            "First Kills": event.first_kills or 0,
            "First Deaths": event.first_deaths or 0,
            "Avg Time to Contact": f"{round_half_up(event.average_time_to_contact or 0, 1)}s",
            "Avg Time of Death": f"{round_half_up(event.average_round_time_of_death or 0, 1)}s",
            "Total Traded Deaths": event.total_traded_deaths or 0,
            "Traded Death Success Rate": (
                f"{round_half_up(percentage(event.total_traded_deaths, event.total_possible_traded_deaths), 1)}%"
            ),
        }
    if role == ComplexionRole.CLOSER:
        return {
            "Clutch Wins": clutch_wins,
            "Clutch Attempts": clutch_attempts,
            "Clutch Win Rate": f"{round_half_up(percentage(clutch_wins, clutch_attempts), 1)}%",
            "Avg Time to Contact": f"{round_half_up(event.average_time_to_contact or 0, 1)}s",
            "Avg Time of Death": f"{round_half_up(event.average_round_time_of_death or 0, 1)}s",
        }
    if role == ComplexionRole.SUPPORT:
        return {
            "Grenades Thrown": event.grenades_thrown(),
            "Damage from Grenades": event.damage_dealt or 0,
            "Enemy Flash Duration": f"{round_half_up(event.enemy_flash_duration or 0, 1)}s",
            "Grenade Effectiveness": f"{round_half_up(event.average_grenade_effectiveness or 0, 1)}%",
            "Flashes Leading to Kills": event.flashes_leading_to_kills or 0,
            "Total Enemies Flashed": event.enemy_players_affected or 0,
            "Average Grenade Value Lost On Death": round_half_up(event.average_grenade_value_lost or 0, 1),
        }

    stats = {
        "Kills": kills,
        "Deaths": event.deaths or 0,
        "K/D Ratio": round_half_up(kills / max(event.deaths or 0, 1), 2),
        "ADR": int(round_half_up(event.adr or 0)),
        "Headshots": event.headshots or 0,
        "Total Trade kills": event.total_successful_trades or 0,
        "Trade Success Rate": (
            f"{round_half_up(percentage(event.total_successful_trades, event.total_possible_trades), 1)}%"
        ),
        "Kills with AWP": event.kills_with_awp or 0,
    }
    for label, value in (
        ("Eco", event.kills_vs_eco),
        ("Force Buy", event.kills_vs_force_buy),
        ("Full Buy", event.kills_vs_full_buy),
    ):
        stats[f"Total Kills vs {label}"] = value or 0
        stats[f"Percentage of Kills vs {label}"] = f"{round_half_up(percentage(value, kills), 1)}%"
    return stats


class PlayerComplexionService:
    """Cached complexion scores for one player in one match."""

    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()

    @staticmethod
    def cache_key(steam_id: str) -> str:
        return f"player-complexion_{steam_id}"

    def get(self, steam_id: str, match_id: int) -> dict[str, int]:
        return self.cache.remember(
            self.cache_key(steam_id), match_id, lambda: self._build(steam_id, match_id)
        )

    def _build(self, steam_id: str, match_id: int) -> dict[str, int]:
        event = self.session.execute(
            select(PlayerMatchEvent).where(
                PlayerMatchEvent.match_id == match_id,
                PlayerMatchEvent.player_steam_id == steam_id,
            )
        ).scalars().first()
        if event is None:
            return {}

        match = self.session.get(GameMatch, match_id)
        rounds = match.total_rounds if match is not None else 0
        return compute_complexion(event, rounds or 0)
