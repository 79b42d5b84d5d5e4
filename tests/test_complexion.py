"""Tests for player complexion scoring and the top role players of a match."""

from __future__ import annotations

import pytest

from topfrag.core.enums import ComplexionRole
from topfrag.infra.database import PlayerMatchEvent
from topfrag.services.complexion import (
    PlayerComplexionService,
    compute_complexion,
    normalise,
    percentage,
    role_stats,
    round_half_up,
    weighted_mean,
)
from topfrag.services.top_roles import TopRolePlayerService

from conftest import ENEMY_STEAM_ID, TEAMMATE_STEAM_ID, USER_STEAM_ID

FRAGGER_LINE = {
    "kills": 30,
    "deaths": 10,
    "adr": 100.0,
    "headshots": 12,
    "total_successful_trades": 20,
    "total_possible_trades": 30,
}
SUPPORT_LINE = {
    "flashes_thrown": 15,
    "smokes_thrown": 10,
    "damage_dealt": 200,
    "enemy_flash_duration": 30.0,
    "average_grenade_effectiveness": 50.0,
    "flashes_leading_to_kills": 5,
}


def event(**values) -> PlayerMatchEvent:
    """A PlayerMatchEvent with every numeric column zeroed, then values applied."""
    columns = {
        column.name: 0
        for column in PlayerMatchEvent.__table__.columns
        if column.name not in ("id", "match_id", "player_steam_id", "matchmaking_rank", "rank_type")
    }
    columns.update(values)
    return PlayerMatchEvent(match_id=1, player_steam_id=USER_STEAM_ID, **columns)


class TestScoringHelpers:
    """Test percentage, normalise and weighted_mean."""

    def test_percentage(self):
        assert percentage(1, 3) == 33.33
        assert percentage(5, 0) == 0.0
        assert percentage(None, 4) == 0.0

    def test_normalise_higher_better(self):
        assert normalise(0.75, 1.5) == 50.0
        assert normalise(3, 1.5) == 100.0
        assert normalise(None, 10) == 0.0

    def test_normalise_lower_better(self):
        assert normalise(0, 25, higher_better=False) == 100.0
        assert normalise(5, 20, higher_better=False) == 75.0
        assert normalise(30, 25, higher_better=False) == 0.0

    def test_weighted_mean(self):
        assert weighted_mean([(50, 1), (100, 1)]) == 75
        assert weighted_mean([(0, 1), (100, 3)]) == 75
        assert weighted_mean([]) == 0
        assert weighted_mean([(100, 0)]) == 0

    def test_halves_round_up(self):
        assert weighted_mean([(50, 1), (75, 1)]) == 63
        assert weighted_mean([(0, 1), (5, 1)]) == 3
        assert percentage(1, 8) == 12.5
        assert round_half_up(0.125, 2) == 0.13
        assert round_half_up(2.5) == 3


class TestComputeComplexion:
    """Test role scores of a single match line."""

    def test_empty_line_scores_only_fast_opener_metrics(self):
        """A zeroed line is 'fast' on the two lower-is-better opener metrics."""
        scores = compute_complexion(event(), rounds=20)
        # (100 * 1 + 100 * 3) / 15
        assert scores == {"opener": 27, "closer": 0, "support": 0, "fragger": 0}

    def test_maxed_fragger(self):
        scores = compute_complexion(event(**FRAGGER_LINE), rounds=20)
        assert scores["fragger"] == 100

    def test_maxed_support(self):
        scores = compute_complexion(event(**SUPPORT_LINE), rounds=20)
        assert scores["support"] == 100

    def test_zero_rounds_does_not_divide(self):
        scores = compute_complexion(event(**FRAGGER_LINE), rounds=0)
        # kills/round and trade opportunities/round drop to 0 (weights 4 and 1 of 13)
        assert scores["fragger"] == 62

    def test_closer_uses_clutches(self):
        scores = compute_complexion(
            event(clutch_attempts_1v1=3, clutch_wins_1v1=1, clutch_attempts_1v2=2, clutch_wins_1v2=1),
            rounds=20,
        )
        # clutch win rate 40% of 25 capped at 100 (weight 4), 5 attempts of 5 (weight 2)
        assert scores["closer"] == 75


class TestRoleStats:
    """Test the labelled stats behind each role."""

    def test_fragger_stats(self):
        stats = role_stats(event(**FRAGGER_LINE, kills_vs_eco=6), ComplexionRole.FRAGGER)
        assert stats["K/D Ratio"] == 3.0
        assert stats["ADR"] == 100
        assert stats["Total Kills vs Eco"] == 6
        assert stats["Percentage of Kills vs Eco"] == "20.0%"

    def test_closer_stats(self):
        stats = role_stats(event(clutch_attempts_1v3=4, clutch_wins_1v3=1), "closer")
        assert stats["Clutch Attempts"] == 4
        assert stats["Clutch Win Rate"] == "25.0%"

    def test_unknown_role_raises(self):
        with pytest.raises(ValueError):
            role_stats(event(), "entry")


class TestPlayerComplexionService:
    """Test cached complexion lookups."""

    def test_scores_from_stored_line(self, session, cache, make_match):
        match = make_match(stats={USER_STEAM_ID: FRAGGER_LINE})
        result = PlayerComplexionService(session, cache).get(USER_STEAM_ID, match.id)
        assert result["fragger"] == 100

    def test_player_without_line_is_empty(self, session, cache, make_match):
        match = make_match()
        assert PlayerComplexionService(session, cache).get(ENEMY_STEAM_ID, match.id) == {}

    def test_result_is_cached(self, session, cache, make_match):
        match = make_match(stats={USER_STEAM_ID: FRAGGER_LINE})
        service = PlayerComplexionService(session, cache)
        service.get(USER_STEAM_ID, match.id)
        assert cache.has(PlayerComplexionService.cache_key(USER_STEAM_ID), match.id)


class TestTopRolePlayers:
    """Test the best player per role."""

    def test_top_players(self, session, cache, user, make_match):
        match = make_match(stats={USER_STEAM_ID: FRAGGER_LINE, TEAMMATE_STEAM_ID: SUPPORT_LINE})
        result = TopRolePlayerService(session, cache).get(user, match.id)

        assert result["fragger"]["steam_id"] == USER_STEAM_ID
        assert result["fragger"]["name"] == "alice"
        assert result["fragger"]["score"] == 100
        assert result["fragger"]["stats"]["Kills"] == 30
        assert result["support"]["steam_id"] == TEAMMATE_STEAM_ID
        assert set(result) == {"opener", "closer", "support", "fragger"}

    def test_no_lines_gives_empty_roles(self, session, cache, user, make_match):
        match = make_match()
        result = TopRolePlayerService(session, cache).get(user, match.id)
        assert result["fragger"] == {"name": None, "steam_id": None, "score": 0}

    def test_non_participant_gets_nothing(self, session, cache, make_user, make_match):
        match = make_match(stats={USER_STEAM_ID: FRAGGER_LINE})
        outsider = make_user("mallory", steam_id="76561198000000099")
        assert TopRolePlayerService(session, cache).get(outsider, match.id) == {}
