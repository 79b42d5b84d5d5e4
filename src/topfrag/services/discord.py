"""
Discord interactions for clans.

Slash commands arrive through the signed webhook and are answered inline
with an interaction response. Match reports are pushed to a clan's linked
channel through the bot.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import LeaderboardType
from topfrag.infra.cache import MatchCacheManager
from topfrag.infra.database import Clan, ClanMatch, GameMatch, User, get_user_by_discord_id
from topfrag.integrations.discord import DiscordConnector
from topfrag.integrations.exceptions import ConnectorError
from topfrag.services.clan_leaderboards import ClanLeaderboardService, period_window
from topfrag.services.clans import ClanError, ClanService
from topfrag.services.match_details import scoreboard

logger = logging.getLogger(__name__)

# Interaction types
PING = 1
APPLICATION_COMMAND = 2
MESSAGE_COMPONENT = 3
MODAL_SUBMIT = 5
HANDLED_TYPES = (APPLICATION_COMMAND, MESSAGE_COMPONENT, MODAL_SUBMIT)

# Response types
PONG = 1
CHANNEL_MESSAGE_WITH_SOURCE = 4
UPDATE_MESSAGE = 7

EPHEMERAL = 64
EMBED_COLOUR = 0x5865F2
TROPHIES = {1: "🥇", 2: "🥈", 3: "🥉"}


def message(content: str, ephemeral: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {"content": content}
    if ephemeral:
        data["flags"] = EPHEMERAL
    return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": data}


def error_message(content: str) -> dict[str, Any]:
    return message(f"❌ {content}")


def command_options(payload: dict[str, Any]) -> dict[str, Any]:
    return {option.get("name"): option.get("value") for option in payload.get("data", {}).get("options") or []}


def interaction_user_id(payload: dict[str, Any]) -> str | None:
    """The invoking user's id, from member.user in a guild or user in a DM."""
    member_user = (payload.get("member") or {}).get("user") or {}
    return member_user.get("id") or (payload.get("user") or {}).get("id")


class DiscordService:
    def __init__(
        self,
        session: Session,
        connector: DiscordConnector | None = None,
        cache: MatchCacheManager | None = None,
    ):
        self.session = session
        self._connector = connector
        self.clans = ClanService(session)
        self.leaderboards = ClanLeaderboardService(session, cache)

    @property
    def connector(self) -> DiscordConnector | None:
        """The bot connector, or None when no bot token is configured."""
        if self._connector is None:
            try:
                self._connector = DiscordConnector()
            except ConnectorError:
                logger.warning("Discord bot token not configured")
                return None
        return self._connector

    # =========================================================================
    # Dispatch
    # =========================================================================

    def handle_interaction(self, payload: dict[str, Any]) -> dict[str, Any]:
        interaction_type = payload.get("type")
        logger.info(f"Discord interaction received (type {interaction_type})")

        if interaction_type == PING:
            return {"type": PONG}
        if interaction_type == APPLICATION_COMMAND:
            return self.handle_command(payload)
        if interaction_type == MESSAGE_COMPONENT:
            return self.handle_component(payload)
        if interaction_type == MODAL_SUBMIT:
            return error_message("Unknown modal.")
        return {"type": PONG}

    def handle_command(self, payload: dict[str, Any]) -> dict[str, Any]:
        name = payload.get("data", {}).get("name")
        logger.info(f"Discord command {name} from guild {payload.get('guild_id')}")
        handlers = {
            "setup": self.setup,
            "unlink-clan": self.unlink_clan,
            "members": self.members,
            "leaderboard": self.leaderboard,
            "match-report": self.match_report,
        }
        handler = handlers.get(name)
        if handler is None:
            return error_message("Unknown command. Use `/setup` to link this Discord server to your TopFrag clan.")
        return handler(payload)

    def handle_component(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = payload.get("data", {})
        values = data.get("values") or []
        if data.get("custom_id") == "select_match_report_channel" and values:
            return self.select_channel(payload, values[0])
        return error_message("Unknown interaction.")

    # =========================================================================
    # Commands
    # =========================================================================

    def _caller(self, payload: dict[str, Any]) -> User | None:
        discord_id = interaction_user_id(payload)
        return get_user_by_discord_id(self.session, discord_id) if discord_id else None

    def _guild_clan(self, guild_id: str) -> Clan | None:
        return self.session.execute(select(Clan).where(Clan.discord_guild_id == guild_id)).scalar_one_or_none()

    def setup(self, payload: dict[str, Any]) -> dict[str, Any]:
        guild_id = payload.get("guild_id")
        if not guild_id or not interaction_user_id(payload):
            return error_message("This command can only be used in a Discord server.")

        user = self._caller(payload)
        if user is None:
            return error_message("You must be a TopFrag member with a linked Discord account to use this command.")

        existing = self._guild_clan(guild_id)
        if existing is not None:
            return error_message(
                f'This Discord server is already linked to clan "{existing.name}". '
                "Use `/unlink-clan` to unlink it first."
            )

        invite_link = command_options(payload).get("invite_link")
        if not invite_link:
            return error_message("An invite link is required: `/setup invite_link:<link>`")
        invite_link = str(invite_link).rstrip("/").rsplit("/", 1)[-1]

        clan = self.session.execute(select(Clan).where(Clan.invite_link == invite_link)).scalar_one_or_none()
        if clan is None:
            return error_message("No clan found for that invite link.")
        if not clan.is_owner(user):
            return error_message("Only the clan owner can link the clan to Discord.")
        if clan.discord_guild_id:
            return error_message(f'Clan "{clan.name}" is already linked to another Discord server.')

        clan.discord_guild_id = guild_id
        clan.discord_channel_id = payload.get("channel_id") or (payload.get("channel") or {}).get("id")
        self.session.commit()
        logger.info(f"Clan {clan.id} linked to Discord guild {guild_id}")

        added = self.add_guild_members(clan, guild_id)
        content = f'✅ Your clan "{clan.name}" has been linked to this Discord server!'
        if clan.discord_channel_id:
            content += " Match reports will be posted in this channel."
        if added:
            content += f" Added {added} members with linked TopFrag accounts."
        return message(content)

    def add_guild_members(self, clan: Clan, guild_id: str) -> int:
        """Add guild members with a linked TopFrag account to clan. Returns how many joined."""
        connector = self.connector
        if connector is None:
            return 0
        try:
            discord_ids = connector.get_guild_members(guild_id)
        except ConnectorError as e:
            logger.error(f"Failed to fetch members of guild {guild_id}: {e.message}")
            return 0
        if not discord_ids:
            return 0

        users = self.session.execute(select(User).where(User.discord_id.in_(discord_ids))).scalars().all()
        added = 0
        for user in users:
            if clan.is_member(user):
                continue
            try:
                self.clans.join(user, clan.invite_link)
                added += 1
            except ClanError as e:
                logger.warning(f"Failed to add user {user.id} to clan {clan.id}: {e.message}")
        logger.info(f"Added {added} of {len(users)} linked guild members to clan {clan.id}")
        return added

    def select_channel(self, payload: dict[str, Any], channel_id: str) -> dict[str, Any]:
        guild_id = payload.get("guild_id")
        clan = self._guild_clan(guild_id) if guild_id else None
        if clan is None:
            return error_message("Clan not found for this Discord server.")

        clan.discord_channel_id = channel_id
        self.session.commit()
        logger.info(f"Match report channel for clan {clan.id} set to {channel_id}")

        channel_name = "the selected channel"
        connector = self.connector
        if connector is not None:
            try:
                channel_name = connector.get_channel(channel_id).get("name") or channel_name
            except ConnectorError as e:
                logger.warning(f"Failed to fetch channel {channel_id}: {e.message}")

        return {
            "type": UPDATE_MESSAGE,
            "data": {
                "content": f"✅ Setup complete! Match reports will be posted to #{channel_name}.",
                "components": [],
                "flags": EPHEMERAL,
            },
        }

    def unlink_clan(self, payload: dict[str, Any]) -> dict[str, Any]:
        guild_id = payload.get("guild_id")
        if not guild_id or not interaction_user_id(payload):
            return error_message("This command can only be used in a Discord server.")

        user = self._caller(payload)
        if user is None:
            return error_message("You must be a TopFrag member with a linked Discord account to use this command.")

        clan = self._guild_clan(guild_id)
        if clan is None:
            return error_message("This Discord server is not linked to any clan.")
        if not clan.is_owner(user):
            return error_message("Only the clan owner can unlink the clan from Discord.")

        clan.discord_guild_id = None
        clan.discord_channel_id = None
        self.session.commit()
        logger.info(f"Clan {clan.id} unlinked from Discord guild {guild_id}")
        return message(f'Clan "{clan.name}" has been unlinked from this Discord server.')

    def members(self, payload: dict[str, Any]) -> dict[str, Any]:
        guild_id = payload.get("guild_id")
        if not guild_id:
            return error_message("This command can only be used in a Discord server.")
        clan = self._guild_clan(guild_id)
        if clan is None:
            return error_message("This Discord server is not linked to any clan.")
        if not clan.members:
            return message("This clan has no members yet.")

        lines = []
        for member in clan.members:
            linked = member.user is not None and member.user.discord_id is not None
            name = member.user.username if member.user else "Unknown"
            lines.append(f"{'✅' if linked else '❌'} {name}")

        content = f"**Clan Members ({clan.name})**\n\n" + "\n".join(lines)
        content += "\n\n✅ = Discord linked\n❌ = Discord not linked"
        return message(content)

    def leaderboard(self, payload: dict[str, Any]) -> dict[str, Any]:
        guild_id = payload.get("guild_id")
        if not guild_id:
            return error_message("This command can only be used in a Discord server.")

        options = command_options(payload)
        raw_type = options.get("leaderboard_type") or options.get("type")
        if not raw_type:
            return error_message("Leaderboard type is required.")
        try:
            leaderboard_type = LeaderboardType(raw_type)
        except ValueError:
            valid = ", ".join(member.value for member in LeaderboardType)
            return error_message(f"Invalid leaderboard type. Valid types: {valid}")

        period = options.get("period") or "week"
        if period not in ("week", "month"):
            return error_message("Invalid period. Valid periods: week, month")

        clan = self._guild_clan(guild_id)
        if clan is None:
            return error_message("This Discord server is not linked to any clan.")

        start, end = period_window(period)
        board = self.leaderboards.get_leaderboard(clan, leaderboard_type, start=start, end=end)
        title = f"{'Weekly' if period == 'week' else 'Monthly'} {leaderboard_type.label} Leaderboard"
        if not board["data"]:
            return message(f"No leaderboard data available for {leaderboard_type.label} this {period}.")

        fields = [
            {
                "name": f"{TROPHIES.get(entry['position'], '')} #{entry['position']} {entry['username'] or 'Unknown'}".strip(),
                "value": f"{entry['value']:.2f}",
                "inline": False,
            }
            for entry in board["data"][:10]
        ]
        embed = {
            "title": title,
            "description": f"Period: {start:%b %d} - {end:%b %d, %Y}",
            "fields": fields,
            "footer": {"text": clan.name},
            "color": EMBED_COLOUR,
        }
        return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": {"embeds": [embed], "flags": EPHEMERAL}}

    def match_report(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Report for the given match id, or the clan's latest match."""
        match_id = command_options(payload).get("id")
        clan = self._guild_clan(payload["guild_id"]) if payload.get("guild_id") else None

        if match_id:
            match = self.session.get(GameMatch, int(match_id))
            if match is None:
                return error_message(f"Match with ID {match_id} not found.")
        else:
            if clan is None:
                return error_message("This Discord server is not linked to any clan.")
            match = self.session.execute(
                select(GameMatch)
                .join(ClanMatch, ClanMatch.match_id == GameMatch.id)
                .where(ClanMatch.clan_id == clan.id)
                .order_by(GameMatch.created_at.desc(), GameMatch.id.desc())
            ).scalars().first()
            if match is None:
                return message("This clan has no matches yet.")

        embed = self.match_report_embed(match, clan)
        return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": {"embeds": [embed], "flags": EPHEMERAL}}

    # =========================================================================
    # Match reports
    # =========================================================================

    def match_report_embed(self, match: GameMatch, clan: Clan | None = None) -> dict[str, Any]:
        rows = scoreboard(self.session, match.id)
        if clan is not None:
            steam_ids = {m.user.steam_id for m in clan.members if m.user and m.user.steam_id}
            rows = [row for row in rows if row["player_steam_id"] in steam_ids] or rows

        fields = []
        for team in ("A", "B"):
            team_rows = sorted(
                (row for row in rows if row["team"] == team), key=lambda row: row["player_kills"], reverse=True
            )
            if not team_rows:
                continue
            lines = [
                f"**{row['player_name']}** {row['player_kills']}/{row['player_deaths']} "
                f"K/D {row['player_kill_death_ratio']} ADR {row['player_adr']}"
                for row in team_rows
            ]
            label = f"Team {team}" + (" (winner)" if match.winning_team == team else "")
            fields.append({"name": label, "value": "\n".join(lines), "inline": False})

        embed: dict[str, Any] = {
            "title": f"Match Report #{match.id}",
            "description": f"**Map:** {match.map}\n**Score:** {match.winning_team_score} - {match.losing_team_score}",
            "fields": fields,
            "color": EMBED_COLOUR,
        }
        if clan is not None:
            embed["footer"] = {"text": clan.name}
        return embed

    def send_match_report(self, match: GameMatch, clan: Clan) -> bool:
        """Post the match report to the clan's channel. Returns whether it was sent."""
        if not clan.discord_guild_id or not clan.discord_channel_id:
            logger.info(f"Clan {clan.id} not configured for Discord notifications")
            return False
        connector = self.connector
        if connector is None:
            return False

        connector.send_message(clan.discord_channel_id, {"embeds": [self.match_report_embed(match, clan)]})
        logger.info(f"Match report for match {match.id} sent to clan {clan.id} channel {clan.discord_channel_id}")
        return True
