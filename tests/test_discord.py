"""Tests for Discord interactions: slash commands, match reports and the signed webhook."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from topfrag.auth.discord_signature import verify_ed25519
from topfrag.integrations.exceptions import DiscordError
from topfrag.services.clan_leaderboards import ClanLeaderboardService, period_window
from topfrag.services.clans import ClanService
from topfrag.services.discord import (
    APPLICATION_COMMAND,
    CHANNEL_MESSAGE_WITH_SOURCE,
    EPHEMERAL,
    MESSAGE_COMPONENT,
    MODAL_SUBMIT,
    PING,
    UPDATE_MESSAGE,
    DiscordService,
    command_options,
    interaction_user_id,
)

from conftest import TEAMMATE_STEAM_ID, USER_STEAM_ID

OWNER_DISCORD_ID = "111111111111111111"
BOB_DISCORD_ID = "222222222222222222"
GUILD_ID = "900000000000000001"
CHANNEL_ID = "800000000000000001"


def command(name: str, options: dict | None = None, discord_id: str = OWNER_DISCORD_ID, guild_id=GUILD_ID) -> dict:
    payload = {
        "type": APPLICATION_COMMAND,
        "data": {"name": name, "options": [{"name": k, "value": v} for k, v in (options or {}).items()]},
        "member": {"user": {"id": discord_id}},
        "channel_id": CHANNEL_ID,
    }
    if guild_id:
        payload["guild_id"] = guild_id
    return payload


def content(response: dict) -> str:
    return response["data"]["content"]


@pytest.fixture
def owner(make_user):
    return make_user("alice", steam_id=USER_STEAM_ID, discord_id=OWNER_DISCORD_ID)


@pytest.fixture
def bob(make_user):
    return make_user("bob", steam_id=TEAMMATE_STEAM_ID, discord_id=BOB_DISCORD_ID)


@pytest.fixture
def clan(session, owner):
    return ClanService(session).create(owner, "Night Owls", "OWL")


@pytest.fixture
def linked_clan(session, clan):
    clan.discord_guild_id = GUILD_ID
    clan.discord_channel_id = CHANNEL_ID
    session.commit()
    return clan


@pytest.fixture
def connector():
    connector = MagicMock()
    connector.get_guild_members.return_value = []
    connector.get_channel.return_value = {"id": CHANNEL_ID, "name": "match-reports"}
    return connector


@pytest.fixture
def service(session, cache, connector):
    return DiscordService(session, connector=connector, cache=cache)


class TestPayloadHelpers:
    def test_command_options(self):
        assert command_options(command("leaderboard", {"type": "aim", "period": "month"})) == {
            "type": "aim",
            "period": "month",
        }
        assert command_options({"data": {}}) == {}

    def test_interaction_user_id(self):
        assert interaction_user_id({"member": {"user": {"id": "1"}}}) == "1"
        assert interaction_user_id({"user": {"id": "2"}}) == "2"
        assert interaction_user_id({}) is None


class TestDispatch:
    """Test interaction routing."""

    def test_ping(self, service):
        assert service.handle_interaction({"type": PING}) == {"type": 1}

    def test_unknown_command(self, service):
        response = service.handle_interaction(command("dance"))
        assert response["type"] == CHANNEL_MESSAGE_WITH_SOURCE
        assert response["data"]["flags"] == EPHEMERAL
        assert content(response).startswith("❌ Unknown command.")

    def test_modal(self, service):
        assert content(service.handle_interaction({"type": MODAL_SUBMIT})) == "❌ Unknown modal."

    def test_unknown_component(self, service):
        payload = {"type": MESSAGE_COMPONENT, "data": {"custom_id": "something_else"}}
        assert content(service.handle_interaction(payload)) == "❌ Unknown interaction."


class TestSetup:
    """Test /setup and /unlink-clan."""

    def test_links_guild_to_clan(self, service, session, owner, clan):
        response = service.handle_interaction(command("setup", {"invite_link": clan.invite_link}))
        session.refresh(clan)

        assert "has been linked" in content(response)
        assert clan.discord_guild_id == GUILD_ID
        assert clan.discord_channel_id == CHANNEL_ID

    def test_accepts_full_invite_url(self, service, session, owner, clan):
        url = f"https://topfrag.example/clans/join/{clan.invite_link}/"
        service.handle_interaction(command("setup", {"invite_link": url}))
        session.refresh(clan)
        assert clan.discord_guild_id == GUILD_ID

    def test_adds_linked_guild_members(self, service, connector, session, owner, bob, clan):
        connector.get_guild_members.return_value = [OWNER_DISCORD_ID, BOB_DISCORD_ID, "333"]
        response = service.handle_interaction(command("setup", {"invite_link": clan.invite_link}))

        assert "Added 1 members" in content(response)
        session.refresh(clan)
        assert clan.is_member(bob)

    def test_member_fetch_failure_still_links(self, service, connector, session, owner, clan):
        connector.get_guild_members.side_effect = DiscordError.from_status(403, "Missing Access")
        response = service.handle_interaction(command("setup", {"invite_link": clan.invite_link}))
        assert "has been linked" in content(response)

    def test_requires_guild(self, service, owner, clan):
        response = service.handle_interaction(command("setup", {"invite_link": clan.invite_link}, guild_id=None))
        assert "only be used in a Discord server" in content(response)

    def test_requires_linked_account(self, service, clan):
        response = service.handle_interaction(command("setup", {"invite_link": clan.invite_link}, discord_id="999"))
        assert "linked Discord account" in content(response)

    def test_requires_invite_link(self, service, owner):
        assert "invite link is required" in content(service.handle_interaction(command("setup")))

    def test_unknown_invite(self, service, owner):
        response = service.handle_interaction(command("setup", {"invite_link": "nope"}))
        assert content(response) == "❌ No clan found for that invite link."

    def test_only_owner(self, service, session, bob, clan):
        ClanService(session).join(bob, clan.invite_link)
        response = service.handle_interaction(
            command("setup", {"invite_link": clan.invite_link}, discord_id=BOB_DISCORD_ID)
        )
        assert "Only the clan owner" in content(response)

    def test_guild_already_linked(self, service, owner, linked_clan):
        response = service.handle_interaction(command("setup", {"invite_link": linked_clan.invite_link}))
        assert "already linked to clan" in content(response)

    def test_unlink(self, service, session, owner, linked_clan):
        response = service.handle_interaction(command("unlink-clan"))
        session.refresh(linked_clan)
        assert "has been unlinked" in content(response)
        assert linked_clan.discord_guild_id is None

    def test_unlink_without_clan(self, service, owner):
        assert "not linked to any clan" in content(service.handle_interaction(command("unlink-clan")))

    def test_select_channel(self, service, session, linked_clan):
        payload = {
            "type": MESSAGE_COMPONENT,
            "guild_id": GUILD_ID,
            "data": {"custom_id": "select_match_report_channel", "values": ["700"]},
        }
        response = service.handle_interaction(payload)
        session.refresh(linked_clan)

        assert response["type"] == UPDATE_MESSAGE
        assert "#match-reports" in response["data"]["content"]
        assert linked_clan.discord_channel_id == "700"


class TestCommands:
    """Test /members, /leaderboard and /match-report."""

    def test_members(self, service, session, bob, make_user, linked_clan):
        ClanService(session).join(bob, linked_clan.invite_link)
        ClanService(session).join(make_user("carol"), linked_clan.invite_link)
        text = content(service.handle_interaction(command("members")))
        assert "**Clan Members (Night Owls)**" in text
        assert "✅ alice" in text
        assert "❌ carol" in text

    def test_leaderboard_requires_type(self, service, linked_clan):
        assert "type is required" in content(service.handle_interaction(command("leaderboard")))

    def test_leaderboard_invalid_type(self, service, linked_clan):
        text = content(service.handle_interaction(command("leaderboard", {"leaderboard_type": "best"})))
        assert text.startswith("❌ Invalid leaderboard type.")

    def test_leaderboard_invalid_period(self, service, linked_clan):
        text = content(service.handle_interaction(command("leaderboard", {"type": "aim", "period": "year"})))
        assert "Invalid period" in text

    def test_leaderboard_empty(self, service, linked_clan):
        text = content(service.handle_interaction(command("leaderboard", {"type": "impact"})))
        assert text == "No leaderboard data available for Impact this week."

    def test_leaderboard_embed(self, service, session, cache, bob, linked_clan, make_match):
        ClanService(session).join(bob, linked_clan.invite_link)
        match = make_match(stats={USER_STEAM_ID: {"average_impact": 4.0}, TEAMMATE_STEAM_ID: {"average_impact": 6.5}})
        ClanService(session).process_match(match.id)
        ClanLeaderboardService(session, cache).calculate(linked_clan, "impact", *period_window("week"))

        response = service.handle_interaction(command("leaderboard", {"leaderboard_type": "impact"}))
        embed = response["data"]["embeds"][0]
        assert embed["title"] == "Weekly Impact Leaderboard"
        assert embed["fields"][0]["name"] == "🥇 #1 bob"
        assert embed["fields"][0]["value"] == "6.50"
        assert embed["footer"] == {"text": "Night Owls"}

    def test_match_report_by_id(self, service, make_match):
        match = make_match(stats={USER_STEAM_ID: {"kills": 25, "deaths": 10, "adr": 95.0}})
        embed = service.handle_interaction(command("match-report", {"id": match.id}))["data"]["embeds"][0]
        assert embed["title"] == f"Match Report #{match.id}"
        assert "de_mirage" in embed["description"]
        assert embed["fields"][0]["name"] == "Team A (winner)"
        assert "**alice** 25/10" in embed["fields"][0]["value"]

    def test_match_report_unknown_id(self, service):
        assert "not found" in content(service.handle_interaction(command("match-report", {"id": 404})))

    def test_latest_clan_match(self, service, session, bob, linked_clan, make_match):
        ClanService(session).join(bob, linked_clan.invite_link)
        assert "no matches yet" in content(service.handle_interaction(command("match-report")))

        match = make_match()
        ClanService(session).process_match(match.id)
        embed = service.handle_interaction(command("match-report"))["data"]["embeds"][0]
        assert embed["title"] == f"Match Report #{match.id}"


class TestSendMatchReport:
    """Test pushing reports to the clan's channel."""

    def test_sends_to_channel(self, service, connector, linked_clan, make_match):
        match = make_match()
        assert service.send_match_report(match, linked_clan) is True
        channel_id, data = connector.send_message.call_args.args
        assert channel_id == CHANNEL_ID
        assert data["embeds"][0]["footer"] == {"text": "Night Owls"}

    def test_unlinked_clan_is_skipped(self, service, connector, clan, make_match):
        assert service.send_match_report(make_match(), clan) is False
        connector.send_message.assert_not_called()

    def test_without_bot_token(self, session, cache, linked_clan, make_match):
        assert DiscordService(session, cache=cache).send_match_report(make_match(), linked_clan) is False


def signed_headers(signing_key, body: bytes, timestamp: str = "1700000000") -> dict[str, str]:
    signature = signing_key.sign(timestamp.encode() + body).signature.hex()
    return {
        "X-Signature-Ed25519": signature,
        "X-Signature-Timestamp": timestamp,
        "Content-Type": "application/json",
    }


class TestSignature:
    """Test ed25519 verification."""

    def test_valid_signature(self, discord_signing_key):
        public_key = discord_signing_key.verify_key.encode().hex()
        signature = discord_signing_key.sign(b"123hello").signature.hex()
        assert verify_ed25519(public_key, signature, b"123hello")

    def test_tampered_message(self, discord_signing_key):
        public_key = discord_signing_key.verify_key.encode().hex()
        signature = discord_signing_key.sign(b"123hello").signature.hex()
        assert not verify_ed25519(public_key, signature, b"123hellO")

    def test_bad_hex(self, discord_signing_key):
        assert not verify_ed25519("zz", "zz", b"")

    def test_wrong_lengths(self, discord_signing_key):
        assert not verify_ed25519("ab" * 16, "cd" * 64, b"")


class TestWebhookEndpoint:
    """Test POST /api/discord/webhook."""

    def test_ping(self, client, discord_signing_key):
        body = json.dumps({"type": PING}).encode()
        response = client.post("/api/discord/webhook", content=body, headers=signed_headers(discord_signing_key, body))
        assert response.status_code == 200
        assert response.json() == {"type": 1}

    def test_missing_signature(self, client):
        response = client.post("/api/discord/webhook", content=b'{"type": 1}')
        assert response.status_code == 401
        assert response.json() == {"error": "Missing signature headers"}

    def test_invalid_signature(self, client, discord_signing_key):
        body = b'{"type": 1}'
        headers = signed_headers(discord_signing_key, b'{"type": 2}')
        response = client.post("/api/discord/webhook", content=body, headers=headers)
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}

    def test_missing_public_key(self, client, config, discord_signing_key):
        config.discord.public_key = None
        body = b'{"type": 1}'
        response = client.post("/api/discord/webhook", content=body, headers=signed_headers(discord_signing_key, body))
        assert response.status_code == 500

    def test_invalid_json(self, client, discord_signing_key):
        body = b"not json"
        response = client.post("/api/discord/webhook", content=body, headers=signed_headers(discord_signing_key, body))
        assert response.status_code == 400

    def test_unsupported_type(self, client, discord_signing_key):
        body = json.dumps({"type": 99}).encode()
        response = client.post("/api/discord/webhook", content=body, headers=signed_headers(discord_signing_key, body))
        assert response.status_code == 400

    def test_command(self, client, discord_signing_key, owner, clan):
        body = json.dumps(command("setup", {"invite_link": clan.invite_link})).encode()
        response = client.post("/api/discord/webhook", content=body, headers=signed_headers(discord_signing_key, body))
        assert response.status_code == 200
        assert "has been linked" in response.json()["data"]["content"]
