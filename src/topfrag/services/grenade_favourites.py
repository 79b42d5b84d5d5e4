"""Grenade throws a user saved from their matches."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from topfrag.core.enums import GrenadeType, MapType, PlayerSide
from topfrag.infra.database import GameMatch, GrenadeFavourite, Player, User
from topfrag.services.grenade_explorer import _selected, apply_grenade_type

logger = logging.getLogger(__name__)

# Identifies one throw; a user can favourite it once
IDENTITY_FIELDS = ("match_id", "round_number", "tick_timestamp", "player_steam_id")


class FavouriteError(Exception):
    def __init__(self, message: str, status_code: int):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class GrenadeFavouriteService:
    def __init__(self, session: Session):
        self.session = session

    def _base_query(self, user: User):
        return (
            select(GrenadeFavourite, GameMatch.map, Player.name)
            .join(GameMatch, GameMatch.id == GrenadeFavourite.match_id)
            .outerjoin(Player, Player.steam_id == GrenadeFavourite.player_steam_id)
            .where(GrenadeFavourite.user_id == user.id)
        )

    def _serialise(self, rows) -> list[dict[str, Any]]:
        return [
            {**favourite.to_dict(), "map": map_name, "player_name": player_name}
            for favourite, map_name, player_name in rows
        ]

    def index(self, user: User, filters: dict[str, Any]) -> dict[str, Any]:
        query = self._base_query(user)
        if filters.get("map"):
            query = query.where(GameMatch.map == filters["map"])
        if filters.get("match_id"):
            query = query.where(GrenadeFavourite.match_id == int(filters["match_id"]))
        if _selected(filters.get("round_number")):
            query = query.where(GrenadeFavourite.round_number == int(filters["round_number"]))
        query = apply_grenade_type(query, GrenadeFavourite.grenade_type, filters.get("grenade_type"))
        if _selected(filters.get("player_steam_id")):
            query = query.where(GrenadeFavourite.player_steam_id == filters["player_steam_id"])
        if _selected(filters.get("player_side")):
            query = query.where(GrenadeFavourite.player_side == filters["player_side"])

        rows = self.session.execute(
            query.order_by(GrenadeFavourite.created_at.desc(), GrenadeFavourite.id.desc())
        ).all()
        return {
            "grenades": self._serialise(rows),
            "filters": {
                name: filters.get(name)
                for name in ("map", "match_id", "round_number", "grenade_type", "player_steam_id", "player_side")
            },
        }

    def filter_options(self, user: User, filters: dict[str, Any]) -> dict[str, Any]:
        map_name = filters.get("map")
        match_id = filters.get("match_id")

        matches: list[dict[str, Any]] = []
        if map_name:
            rows = self.session.execute(
                select(GameMatch.id, GameMatch.map)
                .join(GrenadeFavourite, GrenadeFavourite.match_id == GameMatch.id)
                .where(GrenadeFavourite.user_id == user.id, GameMatch.map == map_name)
                .distinct()
                .order_by(GameMatch.id)
            ).all()
            matches = [{"id": row.id, "name": f"Match #{row.id} - {row.map}"} for row in rows]
            if matches:
                matches.insert(0, {"id": "all", "name": "All Matches"})

        rounds: list[dict[str, int]] = []
        players: list[dict[str, str]] = []
        if match_id:
            numbers = self.session.execute(
                select(GrenadeFavourite.round_number)
                .where(GrenadeFavourite.user_id == user.id, GrenadeFavourite.match_id == int(match_id))
                .distinct()
                .order_by(GrenadeFavourite.round_number)
            ).scalars()
            rounds = [{"number": number} for number in numbers]

            player_rows = self.session.execute(
                select(Player.steam_id, Player.name)
                .join(GrenadeFavourite, GrenadeFavourite.player_steam_id == Player.steam_id)
                .where(GrenadeFavourite.user_id == user.id, GrenadeFavourite.match_id == int(match_id))
                .distinct()
                .order_by(Player.name)
            ).all()
            players = [{"steam_id": steam_id, "name": name} for steam_id, name in player_rows]

        return {
            "maps": MapType.options(),
            "matches": matches,
            "rounds": rounds,
            "grenadeTypes": GrenadeType.options(),
            "players": players,
            "playerSides": PlayerSide.options(),
        }

    def find(self, user: User, identity: dict[str, Any]) -> GrenadeFavourite | None:
        conditions = [GrenadeFavourite.user_id == user.id]
        for name in IDENTITY_FIELDS:
            conditions.append(getattr(GrenadeFavourite, name) == identity.get(name))
        return self.session.execute(select(GrenadeFavourite).where(*conditions)).scalars().first()

    def create(self, user: User, data: dict[str, Any]) -> dict[str, Any]:
        """
        Save a favourite for user.

        Raises:
            FavouriteError: 422 for an unknown match, 409 for a duplicate
        """
        if self.session.get(GameMatch, data["match_id"]) is None:
            raise FavouriteError("The specified match does not exist.", 422)
        if self.find(user, data) is not None:
            raise FavouriteError("Grenade is already in your favourites", 409)

        favourite = GrenadeFavourite(user_id=user.id, **data)
        self.session.add(favourite)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"Duplicate grenade favourite for user {user.id}: {e}")
            raise FavouriteError("Grenade is already in your favourites", 409) from e

        self.session.refresh(favourite)
        logger.info(f"User {user.id} favourited grenade {favourite.id} from match {favourite.match_id}")
        result = favourite.to_dict()
        result["match"] = favourite.match.to_dict() if favourite.match else None
        return result

    def check(self, user: User, identity: dict[str, Any]) -> dict[str, Any]:
        favourite = self.find(user, identity)
        return {
            "is_favourited": favourite is not None,
            "favourite_id": favourite.id if favourite else None,
        }

    def match_favourites(self, user: User, match_id: int) -> list[dict[str, Any]]:
        rows = self.session.execute(
            self._base_query(user)
            .where(GrenadeFavourite.match_id == match_id)
            .order_by(GrenadeFavourite.round_number, GrenadeFavourite.tick_timestamp)
        ).all()
        return self._serialise(rows)

    def delete(self, user: User, favourite_id: int) -> None:
        favourite = self.session.execute(
            select(GrenadeFavourite).where(
                GrenadeFavourite.id == favourite_id, GrenadeFavourite.user_id == user.id
            )
        ).scalar_one_or_none()
        if favourite is None:
            raise FavouriteError("Grenade favourite not found", 404)

        self.session.delete(favourite)
        self.session.commit()
        logger.info(f"User {user.id} removed grenade favourite {favourite_id}")
