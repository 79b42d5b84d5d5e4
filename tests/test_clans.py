"""Tests for clans: membership rules, shared matches, leaderboards and the clan endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from topfrag.infra.database import ClanMatch
from topfrag.services.clan_leaderboards import ClanLeaderboardService, period_window
from topfrag.services.clans import ClanError, ClanService

from conftest import ENEMY_STEAM_ID, TEAMMATE_STEAM_ID, USER_STEAM_ID


@pytest.fixture
def bob(make_user):
    return make_user("bob", steam_id=TEAMMATE_STEAM_ID)


@pytest.fixture
def carol(make_user):
    return make_user("carol", steam_id=ENEMY_STEAM_ID)


@pytest.fixture
def clan(session, user, bob):
    """alice's clan with bob as a member."""
    service = ClanService(session)
    clan = service.create(user, "Night Owls", "OWL")
    return service.join(bob, clan.invite_link)


@pytest.fixture
def make_clan_match(session, make_match):
    """Create a match and offer it to every clan."""

    def _make(**kwargs):
        match = make_match(**kwargs)
        ClanService(session).process_match(match.id)
        return match

    return _make


def clan_match_ids(session, clan) -> list[int]:
    return sorted(row.match_id for row in session.query(ClanMatch).filter_by(clan_id=clan.id))


class TestClanMembership:
    """Test create, join, leave and ownership rules."""

    def test_create_makes_owner_a_member(self, session, user):
        clan = ClanService(session).create(user, "Night Owls")
        assert clan.is_owner(user)
        assert clan.is_member(user)
        assert len(clan.invite_link) == 36

    def test_duplicate_name(self, session, user, bob):
        service = ClanService(session)
        service.create(user, "Night Owls")
        with pytest.raises(ClanError, match="name already exists"):
            service.create(bob, "Night Owls")

    def test_duplicate_tag(self, session, user, bob):
        service = ClanService(session)
        service.create(user, "Night Owls", "OWL")
        with pytest.raises(ClanError, match="tag already exists"):
            service.create(bob, "Early Birds", "OWL")

    def test_join(self, clan, bob):
        assert clan.is_member(bob)
        assert len(clan.members) == 2

    def test_join_invalid_link_is_404(self, session, bob):
        with pytest.raises(ClanError) as exc_info:
            ClanService(session).join(bob, "not-a-real-invite")
        assert exc_info.value.status_code == 404

    def test_join_twice(self, session, clan, bob):
        with pytest.raises(ClanError, match="already a member"):
            ClanService(session).join(bob, clan.invite_link)

    def test_owner_cannot_leave(self, session, clan, user):
        with pytest.raises(ClanError, match="owner cannot leave"):
            ClanService(session).leave(user, clan)

    def test_member_leaves(self, session, clan, bob):
        ClanService(session).leave(bob, clan)
        assert not clan.is_member(bob)

    def test_remove_member(self, session, clan, bob):
        ClanService(session).remove_member(clan, bob.id)
        assert len(clan.members) == 1

    def test_owner_cannot_be_removed(self, session, clan, user):
        with pytest.raises(ClanError):
            ClanService(session).remove_member(clan, user.id)

    def test_remove_non_member_is_404(self, session, clan, carol):
        with pytest.raises(ClanError) as exc_info:
            ClanService(session).remove_member(clan, carol.id)
        assert exc_info.value.status_code == 404

    def test_transfer_ownership(self, session, clan, bob, carol):
        service = ClanService(session)
        with pytest.raises(ClanError, match="must be a member"):
            service.transfer_ownership(clan, carol)
        service.transfer_ownership(clan, bob)
        assert clan.is_owner(bob)

    def test_regenerate_invite_link(self, session, clan):
        old = clan.invite_link
        assert ClanService(session).update_invite_link(clan) != old


class TestClanMatches:
    """Test which matches count as clan matches."""

    def test_join_picks_up_shared_matches(self, session, user, bob, make_match):
        shared = make_match()
        make_match(roster=[(USER_STEAM_ID, "alice", "A"), (TEAMMATE_STEAM_ID, "bob", "B")])

        service = ClanService(session)
        clan = service.create(user, "Night Owls")
        service.join(bob, clan.invite_link)
        assert clan_match_ids(session, clan) == [shared.id]

    def test_process_match_adds_new_match(self, session, clan, make_match):
        match = make_match()
        added = ClanService(session).process_match(match.id)
        assert added == [clan.id]
        assert clan_match_ids(session, clan) == [match.id]

    def test_process_match_is_idempotent(self, session, clan, make_match):
        match = make_match()
        service = ClanService(session)
        service.process_match(match.id)
        assert service.process_match(match.id) == []

    def test_opposing_teams_do_not_count(self, session, clan, make_match):
        match = make_match(roster=[(USER_STEAM_ID, "alice", "A"), (TEAMMATE_STEAM_ID, "bob", "B")])
        assert ClanService(session).process_match(match.id) == []

    def test_unknown_match(self, session, clan):
        assert ClanService(session).process_match(12345) == []

    def test_notify_only_for_discord_linked_clans(self, session, clan, make_match):
        notify = MagicMock()
        match = make_match()
        ClanService(session).process_match(match.id, notify=notify)
        notify.assert_not_called()

        clan.discord_guild_id = "guild-1"
        clan.discord_channel_id = "channel-1"
        session.commit()
        second = make_match()
        ClanService(session).process_match(second.id, notify=notify)
        notify.assert_called_once()

    def test_notify_failure_does_not_undo_the_link(self, session, clan, make_match):
        clan.discord_guild_id = "guild-1"
        clan.discord_channel_id = "channel-1"
        session.commit()
        match = make_match()

        notify = MagicMock(side_effect=RuntimeError("discord down"))
        assert ClanService(session).process_match(match.id, notify=notify) == [clan.id]


class TestLeaderboards:
    """Test leaderboard windows and rankings."""

    def test_period_window(self):
        now = datetime(2026, 10, 18, 15, 30, tzinfo=UTC)
        start, end = period_window("week", now)
        assert start == datetime(2026, 10, 11, tzinfo=UTC)
        assert end.date() == now.date()
        assert end.hour == 23

        month_start, _ = period_window("month", now)
        assert month_start == datetime(2026, 9, 18, tzinfo=UTC)

    def test_unknown_period_falls_back_to_week(self):
        now = datetime(2026, 10, 18, tzinfo=UTC)
        assert period_window("year", now) == period_window("week", now)

    def test_impact_leaderboard(self, session, cache, clan, make_clan_match):
        make_clan_match(stats={USER_STEAM_ID: {"average_impact": 5.0}, TEAMMATE_STEAM_ID: {"average_impact": 8.0}})

        service = ClanLeaderboardService(session, cache)
        start, end = period_window("week")
        assert service.calculate(clan, "impact", start, end) == 2

        board = service.get_leaderboard(clan, "impact")
        assert board["type"] == "impact"
        assert [(row["position"], row["username"], row["value"]) for row in board["data"]] == [
            (1, "bob", 8.0),
            (2, "alice", 5.0),
        ]

    def test_recalculating_updates_positions(self, session, cache, clan, make_clan_match):
        make_clan_match(stats={USER_STEAM_ID: {"average_impact": 5.0}, TEAMMATE_STEAM_ID: {"average_impact": 8.0}})
        make_clan_match(stats={USER_STEAM_ID: {"average_impact": 15.0}, TEAMMATE_STEAM_ID: {"average_impact": 2.0}})
        service = ClanLeaderboardService(session, cache)
        start, end = period_window("week")
        service.calculate(clan, "impact", start, end)

        board = service.get_leaderboard(clan, "impact")
        assert [row["username"] for row in board["data"]] == ["alice", "bob"]
        assert board["data"][0]["value"] == 10.0

    def test_complexion_leaderboard(self, session, cache, clan, make_clan_match):
        make_clan_match(stats={USER_STEAM_ID: {"kills": 30, "deaths": 10, "adr": 100.0}, TEAMMATE_STEAM_ID: {"kills": 2}})
        service = ClanLeaderboardService(session, cache)
        start, end = period_window("week")
        service.calculate(clan, "fragger", start, end)

        board = service.get_leaderboard(clan, "fragger")
        assert board["data"][0]["username"] == "alice"

    def test_no_matches_in_window(self, session, cache, clan, make_match):
        make_match(stats={USER_STEAM_ID: {"average_impact": 5.0}})
        start = datetime(2020, 1, 1, tzinfo=UTC)
        end = datetime(2020, 1, 7, tzinfo=UTC)
        assert ClanLeaderboardService(session, cache).calculate(clan, "impact", start, end) == 0

    def test_calculate_for_all_clans(self, session, cache, clan, make_clan_match):
        make_clan_match(stats={USER_STEAM_ID: {"average_impact": 5.0}, TEAMMATE_STEAM_ID: {"average_impact": 8.0}})
        service = ClanLeaderboardService(session, cache)
        assert service.calculate_for_all_clans() == 1
        assert len(service.get_leaderboard(clan, "impact", period="month")["data"]) == 2

    def test_no_clans(self, session, cache):
        assert ClanLeaderboardService(session, cache).calculate_for_all_clans() == 0


class TestClanEndpoints:
    """Test the clan routes."""

    def test_create(self, client, auth_headers):
        response = client.post("/api/clans", json={"name": "Night Owls", "tag": "OWL"}, headers=auth_headers)
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["name"] == "Night Owls"
        assert data["members_count"] == 1

    def test_tag_too_long(self, client, auth_headers):
        response = client.post("/api/clans", json={"name": "Night Owls", "tag": "OWLS1"}, headers=auth_headers)
        assert response.status_code == 422

    def test_index_lists_my_clans(self, client, clan, auth_headers):
        data = client.get("/api/clans", headers=auth_headers).json()["data"]
        assert [c["name"] for c in data] == ["Night Owls"]
        assert len(data[0]["members"]) == 2

    def test_show_requires_membership(self, client, clan, carol, headers_for):
        assert client.get(f"/api/clans/{clan.id}", headers=headers_for(carol)).status_code == 403

    def test_show_lists_matches(self, client, session, clan, auth_headers, make_match):
        match = make_match()
        ClanService(session).process_match(match.id)
        data = client.get(f"/api/clans/{clan.id}", headers=auth_headers).json()["data"]
        assert [m["id"] for m in data["matches"]] == [match.id]

    def test_unknown_clan_is_404(self, client, auth_headers):
        assert client.get("/api/clans/999", headers=auth_headers).status_code == 404

    def test_join_by_invite(self, client, session, user, carol, headers_for):
        clan = ClanService(session).create(user, "Night Owls")
        response = client.post("/api/clans/join", json={"invite_link": clan.invite_link}, headers=headers_for(carol))
        assert response.status_code == 200
        assert response.json()["data"]["members_count"] == 2

    def test_join_invalid_invite(self, client, auth_headers):
        response = client.post("/api/clans/join", json={"invite_link": "nope"}, headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Invalid invite link"

    def test_only_owner_updates(self, client, clan, bob, headers_for, auth_headers):
        assert client.put(f"/api/clans/{clan.id}", json={"name": "x"}, headers=headers_for(bob)).status_code == 403
        response = client.put(f"/api/clans/{clan.id}", json={"name": "Day Owls"}, headers=auth_headers)
        assert response.json()["data"]["name"] == "Day Owls"

    def test_owner_leave_is_400(self, client, clan, auth_headers):
        assert client.post(f"/api/clans/{clan.id}/leave", headers=auth_headers).status_code == 400

    def test_remove_member(self, client, clan, bob, auth_headers):
        response = client.delete(f"/api/clans/{clan.id}/members/{bob.id}", headers=auth_headers)
        assert response.status_code == 200
        members = client.get(f"/api/clans/{clan.id}/members", headers=auth_headers).json()["data"]
        assert [m["username"] for m in members] == ["alice"]

    def test_transfer_to_unknown_user(self, client, clan, auth_headers):
        response = client.post(f"/api/clans/{clan.id}/transfer-ownership/999", headers=auth_headers)
        assert response.status_code == 404

    def test_delete(self, client, clan, auth_headers):
        assert client.delete(f"/api/clans/{clan.id}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/clans/{clan.id}", headers=auth_headers).status_code == 404

    def test_leaderboard(self, client, session, cache, clan, auth_headers, make_clan_match):
        make_clan_match(stats={USER_STEAM_ID: {"average_impact": 5.0}, TEAMMATE_STEAM_ID: {"average_impact": 8.0}})
        ClanLeaderboardService(session, cache).calculate_all(clan)

        response = client.get(f"/api/clans/{clan.id}/leaderboards/impact", headers=auth_headers)
        assert response.status_code == 200
        assert [row["username"] for row in response.json()["data"]] == ["bob", "alice"]

        everything = client.get(f"/api/clans/{clan.id}/leaderboards", headers=auth_headers).json()
        assert set(everything["data"]) == {"aim", "impact", "round_swing", "fragger", "support", "opener", "closer"}

    def test_bad_leaderboard_type(self, client, clan, auth_headers):
        assert client.get(f"/api/clans/{clan.id}/leaderboards/best", headers=auth_headers).status_code == 422
