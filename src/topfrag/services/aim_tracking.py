"""Aim tracking: per-player and per-weapon accuracy for a match."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.infra.cache import MatchCacheManager, filter_cache_key, get_cache_manager
from topfrag.infra.database import (
    GameMatch,
    PlayerMatchAimEvent,
    PlayerMatchAimWeaponEvent,
    User,
    user_has_match_access,
)
from topfrag.services.utility_analysis import match_players

WEAPON_NAMES = {
    "ak47": "AK-47",
    "aug": "AUG",
    "awp": "AWP",
    "bizon": "PP-Bizon",
    "cz75a": "CZ75-Auto",
    "deagle": "Desert Eagle",
    "elite": "Dual Berettas",
    "famas": "FAMAS",
    "fiveseven": "Five-SeveN",
    "g3sg1": "G3SG1",
    "galilar": "Galil AR",
    "glock": "Glock-18",
    "hkp2000": "P2000",
    "m249": "M249",
    "m4a1": "M4A4",
    "m4a1_silencer": "M4A1-S",
    "mac10": "MAC-10",
    "mag7": "MAG-7",
    "mp5sd": "MP5-SD",
    "mp7": "MP7",
    "mp9": "MP9",
    "negev": "Negev",
    "nova": "Nova",
    "p250": "P250",
    "p90": "P90",
    "revolver": "R8 Revolver",
    "sawedoff": "Sawed-Off",
    "scar20": "SCAR-20",
    "sg556": "SG 553",
    "ssg08": "SSG 08",
    "tec9": "Tec-9",
    "ump45": "UMP-45",
    "usp_silencer": "USP-S",
    "xm1014": "XM1014",
}

# Fields shared by the match-wide and per-weapon aim rows
SHARED_FIELDS = (
    "shots_fired",
    "shots_hit",
    "accuracy_all_shots",
    "spraying_shots_fired",
    "spraying_shots_hit",
    "spraying_accuracy",
    "average_crosshair_placement_x",
    "average_crosshair_placement_y",
    "headshot_accuracy",
    "head_hits_total",
    "upper_chest_hits_total",
    "chest_hits_total",
    "legs_hits_total",
)


def weapon_display_name(weapon_name: str) -> str:
    return WEAPON_NAMES.get(weapon_name, weapon_name[:1].upper() + weapon_name[1:])


def _fields(row: Any, names: tuple[str, ...]) -> dict[str, Any]:
    return {name: getattr(row, name) for name in names}


class AimTrackingService:
    def __init__(self, session: Session, cache: MatchCacheManager | None = None):
        self.session = session
        self.cache = cache if cache is not None else get_cache_manager()

    def _remember(self, component: str, user: User, filters: dict, match_id: int, builder) -> dict[str, Any]:
        if not user_has_match_access(self.session, user, match_id):
            return {}
        key = filter_cache_key(component, filters)
        return self.cache.remember(key, match_id, lambda: builder(filters, match_id))

    def get(self, user: User, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        return self._remember("aim-tracking", user, filters, match_id, self._build_aim)

    def get_weapon_stats(self, user: User, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        return self._remember("aim-tracking-weapon", user, filters, match_id, self._build_weapon)

    def get_filter_options(self, user: User, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        options = self._remember("aim-tracking-filter-options", user, filters, match_id, self._build_options)
        if not options:
            return options
        return {**options, "current_user_steam_id": user.steam_id}

    def _aim_event(self, match_id: int, steam_id: str) -> PlayerMatchAimEvent | None:
        return self.session.execute(
            select(PlayerMatchAimEvent).where(
                PlayerMatchAimEvent.match_id == match_id,
                PlayerMatchAimEvent.player_steam_id == steam_id,
            )
        ).scalars().first()

    def _build_aim(self, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        steam_id = filters.get("player_steam_id")
        if self.session.get(GameMatch, match_id) is None or not steam_id:
            return {}

        event = self._aim_event(match_id, steam_id)
        if event is None:
            return {}
        return {
            "match_id": event.match_id,
            "player_steam_id": event.player_steam_id,
            **_fields(event, SHARED_FIELDS),
            "average_time_to_damage": event.average_time_to_damage,
            "aim_rating": event.aim_rating,
        }

    def _build_weapon(self, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        steam_id = filters.get("player_steam_id")
        if self.session.get(GameMatch, match_id) is None or not steam_id:
            return {}

        weapon_name = filters.get("weapon_name")
        if not weapon_name or weapon_name == "all":
            row = self._aim_event(match_id, steam_id)
            weapon_name = None
        else:
            row = self.session.execute(
                select(PlayerMatchAimWeaponEvent).where(
                    PlayerMatchAimWeaponEvent.match_id == match_id,
                    PlayerMatchAimWeaponEvent.player_steam_id == steam_id,
                    PlayerMatchAimWeaponEvent.weapon_name == weapon_name,
                )
            ).scalars().first()

        if row is None:
            return {}
        return {
            "match_id": match_id,
            "player_steam_id": steam_id,
            "weapon_name": weapon_name,
            **_fields(row, SHARED_FIELDS),
        }

    def _build_options(self, filters: dict[str, Any], match_id: int) -> dict[str, Any]:
        if self.session.get(GameMatch, match_id) is None:
            return {}

        weapons: list[dict[str, str]] = []
        steam_id = filters.get("player_steam_id")
        if steam_id:
            names = self.session.execute(
                select(PlayerMatchAimWeaponEvent.weapon_name)
                .where(
                    PlayerMatchAimWeaponEvent.match_id == match_id,
                    PlayerMatchAimWeaponEvent.player_steam_id == steam_id,
                )
                .distinct()
                .order_by(PlayerMatchAimWeaponEvent.weapon_name)
            ).scalars()
            weapons = [{"value": "all", "label": "All Weapons"}]
            weapons += [{"value": name, "label": weapon_display_name(name)} for name in names]

        return {
            "players": match_players(self.session, match_id),
            "weapons": weapons,
        }
