"""FACEIT profile linking: store a user's FACEIT identity and current level/elo."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.config import get_config
from topfrag.core.enums import RankType
from topfrag.infra.database import Player, PlayerRank, User
from topfrag.integrations.exceptions import FaceITError
from topfrag.integrations.faceit import FACEITClient

logger = logging.getLogger(__name__)

FACEIT_RANK_TYPE = RankType.FACEIT.value


class FaceITProfileService:
    """
    Looks the user's Steam account up on FACEIT after a Steam login or link.

    On a match the user gets faceit_player_id / faceit_nickname and the
    player gets a new "faceit" PlayerRank (level as rank, elo as value).
    FACEIT being unreachable or unconfigured never fails the login.
    """

    def __init__(self, session: Session, client: FACEITClient | None = None):
        self.session = session
        self._client = client

    def _get_client(self) -> FACEITClient | None:
        if self._client is None:
            if not get_config().faceit.api_key:
                logger.debug("FACEIT API key not configured, skipping profile lookup")
                return None
            self._client = FACEITClient()
        return self._client

    def fetch_and_store(self, user: User) -> PlayerRank | None:
        if not user.steam_id:
            return None
        client = self._get_client()
        if client is None:
            return None

        try:
            profile = client.get_player_by_steam_id(user.steam_id)
        except FaceITError as e:
            logger.error(f"Failed to fetch FACEIT profile for user {user.id} ({user.steam_id}): {e}")
            return None

        if not profile.player_id or not profile.nickname:
            logger.warning(f"FACEIT data missing player id or nickname for user {user.id}")
            return None
        if not profile.skill_level or not profile.faceit_elo:
            logger.warning(f"FACEIT CS2 game data missing for user {user.id} ({profile.nickname})")
            return None

        user.faceit_player_id = profile.player_id
        user.faceit_nickname = profile.nickname

        player = self.session.execute(
            select(Player).where(Player.steam_id == user.steam_id)
        ).scalar_one_or_none()
        if player is None:
            player = Player(steam_id=user.steam_id, name=profile.nickname)
            self.session.add(player)
            self.session.flush()

        rank = PlayerRank(
            player_id=player.id,
            rank_type=FACEIT_RANK_TYPE,
            map=None,
            rank=str(profile.skill_level),
            rank_value=profile.faceit_elo,
        )
        self.session.add(rank)
        try:
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Failed to store FACEIT profile for user {user.id}: {e}")
            raise

        logger.info(
            f"Updated FACEIT profile for user {user.id}: {profile.nickname} "
            f"(level {profile.skill_level}, elo {profile.faceit_elo})"
        )
        return rank
