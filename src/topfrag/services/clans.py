"""
Clans: membership, invite links and the matches members played together.

A match belongs to a clan once two or more members played it on the same
team.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from topfrag.infra.database import Clan, ClanMatch, ClanMember, GameMatch, MatchPlayer, Player, User

logger = logging.getLogger(__name__)


class ClanError(Exception):
    """A clan rule was broken. status_code is what the API answers with."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def generate_invite_link() -> str:
    return str(uuid.uuid4())


class ClanService:
    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Lookups
    # =========================================================================

    def get(self, clan_id: int) -> Clan:
        clan = self.session.get(Clan, clan_id)
        if clan is None:
            raise ClanError("Clan not found", 404)
        return clan

    def for_user(self, user: User) -> list[Clan]:
        return list(
            self.session.execute(
                select(Clan).join(ClanMember, ClanMember.clan_id == Clan.id).where(ClanMember.user_id == user.id)
            ).scalars()
        )

    def matches(self, clan: Clan) -> list[GameMatch]:
        return list(
            self.session.execute(
                select(GameMatch)
                .join(ClanMatch, ClanMatch.match_id == GameMatch.id)
                .where(ClanMatch.clan_id == clan.id)
                .order_by(GameMatch.created_at.desc(), GameMatch.id.desc())
            ).scalars()
        )

    # =========================================================================
    # Membership
    # =========================================================================

    def create(self, owner: User, name: str, tag: str | None = None) -> Clan:
        if self.session.execute(select(Clan.id).where(Clan.name == name)).first():
            raise ClanError("A clan with this name already exists")
        if tag and self.session.execute(select(Clan.id).where(Clan.tag == tag)).first():
            raise ClanError("A clan with this tag already exists")

        clan = Clan(owned_by=owner.id, name=name, tag=tag, invite_link=generate_invite_link())
        try:
            self.session.add(clan)
            self.session.flush()
            self.session.add(ClanMember(clan_id=clan.id, user_id=owner.id))
            self.session.flush()
            self.find_matches_for_clan(clan)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error creating clan for user {owner.id}: {e}")
            raise

        self.session.refresh(clan)
        logger.info(f"User {owner.id} created clan {clan.id} ({clan.name})")
        return clan

    def update(self, clan: Clan, name: str | None = None, tag: str | None = None) -> Clan:
        if name is not None:
            clan.name = name
        if tag is not None:
            clan.tag = tag
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise ClanError("A clan with this name or tag already exists") from e
        return clan

    def join(self, user: User, invite_link: str) -> Clan:
        clan = self.session.execute(select(Clan).where(Clan.invite_link == invite_link)).scalar_one_or_none()
        if clan is None:
            raise ClanError("Invalid invite link", 404)
        if clan.is_member(user):
            raise ClanError("User is already a member of this clan")

        self.session.add(ClanMember(clan_id=clan.id, user_id=user.id))
        self.session.flush()
        self.session.refresh(clan)
        self.find_matches_for_clan(clan)
        self.session.commit()
        logger.info(f"User {user.id} joined clan {clan.id}")
        return clan

    def leave(self, user: User, clan: Clan) -> None:
        if clan.is_owner(user):
            raise ClanError("Clan owner cannot leave the clan. Transfer ownership or delete the clan instead.")

        member = self.session.execute(
            select(ClanMember).where(ClanMember.clan_id == clan.id, ClanMember.user_id == user.id)
        ).scalar_one_or_none()
        if member is None:
            raise ClanError("User is not a member of this clan")

        self.session.delete(member)
        self.session.commit()
        self.session.refresh(clan)
        logger.info(f"User {user.id} left clan {clan.id}")

    def remove_member(self, clan: Clan, user_id: int) -> None:
        """Owner action: drop another member from the clan."""
        if clan.owned_by == user_id:
            raise ClanError("Clan owner cannot be removed from the clan")

        member = self.session.execute(
            select(ClanMember).where(ClanMember.clan_id == clan.id, ClanMember.user_id == user_id)
        ).scalar_one_or_none()
        if member is None:
            raise ClanError("User is not a member of this clan", 404)

        self.session.delete(member)
        self.session.commit()
        self.session.refresh(clan)
        logger.info(f"Removed user {user_id} from clan {clan.id}")

    def update_invite_link(self, clan: Clan) -> str:
        clan.invite_link = generate_invite_link()
        self.session.commit()
        return clan.invite_link

    def delete(self, clan: Clan) -> None:
        clan_id = clan.id
        self.session.delete(clan)
        self.session.commit()
        logger.info(f"Deleted clan {clan_id}")

    def transfer_ownership(self, clan: Clan, new_owner: User) -> Clan:
        if not clan.is_member(new_owner):
            raise ClanError("New owner must be a member of the clan")
        if clan.is_owner(new_owner):
            raise ClanError("User is already the owner of this clan")

        clan.owned_by = new_owner.id
        self.session.commit()
        logger.info(f"Clan {clan.id} transferred to user {new_owner.id}")
        return clan

    # =========================================================================
    # Clan matches
    # =========================================================================

    def member_player_ids(self, clan: Clan) -> list[int]:
        """Player ids of members with a linked Steam account."""
        steam_ids = [member.user.steam_id for member in clan.members if member.user and member.user.steam_id]
        if not steam_ids:
            return []
        return list(self.session.execute(select(Player.id).where(Player.steam_id.in_(steam_ids))).scalars())

    def _shared_team_matches(self, player_ids: list[int], match_id: int | None = None) -> list[int]:
        query = (
            select(MatchPlayer.match_id)
            .where(MatchPlayer.player_id.in_(player_ids))
            .group_by(MatchPlayer.match_id, MatchPlayer.team)
            .having(func.count(func.distinct(MatchPlayer.player_id)) >= 2)
        )
        if match_id is not None:
            query = query.where(MatchPlayer.match_id == match_id)
        return sorted(set(self.session.execute(query).scalars()))

    def _has_clan_match(self, clan: Clan, match_id: int) -> bool:
        return (
            self.session.execute(
                select(ClanMatch.id).where(ClanMatch.clan_id == clan.id, ClanMatch.match_id == match_id)
            ).first()
            is not None
        )

    def find_matches_for_clan(self, clan: Clan) -> int:
        """Attach every match two or more members played on one team. Returns how many were new."""
        if len(clan.members) < 2:
            return 0
        player_ids = self.member_player_ids(clan)
        if not player_ids:
            return 0

        added = 0
        for match_id in self._shared_team_matches(player_ids):
            if not self._has_clan_match(clan, match_id):
                self.session.add(ClanMatch(clan_id=clan.id, match_id=match_id))
                added += 1
        self.session.flush()
        if added:
            logger.info(f"Added {added} matches to clan {clan.id}")
        return added

    def check_and_add_match(self, clan: Clan, match: GameMatch) -> bool:
        """Attach match to clan when two or more members played it on one team."""
        if self._has_clan_match(clan, match.id) or len(clan.members) < 2:
            return False
        player_ids = self.member_player_ids(clan)
        if not player_ids or not self._shared_team_matches(player_ids, match.id):
            return False

        self.session.add(ClanMatch(clan_id=clan.id, match_id=match.id))
        self.session.commit()
        return True

    def process_match(
        self, match_id: int, notify: Callable[[GameMatch, Clan], object] | None = None
    ) -> list[int]:
        """
        Offer a freshly parsed match to every clan.

        notify is called for each clan that gained the match and is linked to
        a Discord channel. A failure for one clan is logged and the rest
        still run.

        Returns:
            Ids of the clans the match was added to
        """
        match = self.session.get(GameMatch, match_id)
        if match is None:
            logger.warning(f"Match {match_id} not found for clan processing")
            return []

        logger.info(f"Processing clan match {match_id}")
        added_to = []
        for clan in self.session.execute(select(Clan).order_by(Clan.id)).scalars().all():
            try:
                if not self.check_and_add_match(clan, match):
                    continue
                added_to.append(clan.id)
                logger.info(f"Added match {match_id} to clan {clan.id}")
            except Exception as e:
                self.session.rollback()
                logger.error(f"Error processing clan match {match_id} for clan {clan.id}: {e}")
                continue

            if notify is not None and clan.discord_guild_id and clan.discord_channel_id:
                try:
                    notify(match, clan)
                except Exception as e:
                    logger.error(f"Failed to send Discord match report for clan {clan.id}, match {match_id}: {e}")
        return added_to
