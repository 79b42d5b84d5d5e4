"""
Shared enums for TopFrag.

String-valued so they serialise straight into JSON responses and database
columns.
"""

from enum import StrEnum


class ProcessingStatus(StrEnum):
    """
    Demo processing job status.

    The parser reports progress through these in order; completed, failed and
    cancelled are terminal.
    """

    PENDING = "pending"
    QUEUED = "queued"
    PARSING = "parsing"
    PROCESSING = "processing"
    PROCESSING_EVENTS = "processing_events"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.CANCELLED)


class MatchType(StrEnum):
    """Where a match was played."""

    HLTV = "hltv"
    MATCHMAKING = "matchmaking"
    FACEIT = "faceit"
    ESPORTAL = "esportal"
    OTHER = "other"

    @classmethod
    def from_parser(cls, value: str | None) -> "MatchType":
        """Map the parser's short names (mm, hltv, ...) onto a MatchType."""
        mapping = {
            "hltv": cls.HLTV,
            "mm": cls.MATCHMAKING,
            "matchmaking": cls.MATCHMAKING,
            "faceit": cls.FACEIT,
            "esportal": cls.ESPORTAL,
        }
        return mapping.get((value or "").lower(), cls.OTHER)


class Team(StrEnum):
    """Starting team of a player. A and B rather than CT/T since sides swap."""

    A = "A"
    B = "B"


class MatchEventType(StrEnum):
    """Event batches the parser posts to /api/job/{job_id}/event/{name}."""

    DAMAGE = "damage"
    GUNFIGHT = "gunfight"
    GRENADE = "grenade"
    PLAYER_ROUND = "player-round"
    PLAYER_MATCH = "player-match"
    MATCH = "match"
    AIM = "aim"
    AIM_WEAPON = "aim-weapon"

    @property
    def is_round_event(self) -> bool:
        return self in (
            MatchEventType.DAMAGE,
            MatchEventType.GUNFIGHT,
            MatchEventType.GRENADE,
            MatchEventType.PLAYER_ROUND,
        )


class GrenadeType(StrEnum):
    """Grenade labels as the parser sends them."""

    FLASHBANG = "Flashbang"
    SMOKE_GRENADE = "Smoke Grenade"
    HE_GRENADE = "HE Grenade"
    MOLOTOV = "Molotov"
    INCENDIARY = "Incendiary"
    DECOY = "Decoy"

    @classmethod
    def fire_types(cls) -> list[str]:
        return [cls.MOLOTOV.value, cls.INCENDIARY.value]

    @classmethod
    def options(cls) -> list[dict[str, str]]:
        """Filter options, with molotov and incendiary folded into one entry."""
        return [
            {"value": cls.FLASHBANG.value, "label": "Flashbang"},
            {"value": cls.SMOKE_GRENADE.value, "label": "Smoke Grenade"},
            {"value": cls.HE_GRENADE.value, "label": "HE Grenade"},
            {"value": "fire_grenades", "label": "Fire Grenades"},
            {"value": cls.DECOY.value, "label": "Decoy"},
        ]


class PlayerSide(StrEnum):
    T = "T"
    CT = "CT"

    @classmethod
    def options(cls) -> list[dict[str, str]]:
        return [
            {"value": "all", "label": "All Sides"},
            {"value": cls.CT.value, "label": "Counter-Terrorist"},
            {"value": cls.T.value, "label": "Terrorist"},
        ]


class ComplexionRole(StrEnum):
    OPENER = "opener"
    CLOSER = "closer"
    SUPPORT = "support"
    FRAGGER = "fragger"


class RankType(StrEnum):
    """Rank ladders a PlayerRank can belong to; competitive ranks are per map."""

    COMPETITIVE = "competitive"
    PREMIER = "premier"
    FACEIT = "faceit"


class LeaderboardType(StrEnum):
    """Metrics clan leaderboards can rank members by."""

    AIM = "aim"
    IMPACT = "impact"
    ROUND_SWING = "round_swing"
    FRAGGER = "fragger"
    SUPPORT = "support"
    OPENER = "opener"
    CLOSER = "closer"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class MapType(StrEnum):
    """Competitive map pool as named in demo headers."""

    ANCIENT = "de_ancient"
    ANUBIS = "de_anubis"
    DUST2 = "de_dust2"
    INFERNO = "de_inferno"
    MIRAGE = "de_mirage"
    NUKE = "de_nuke"
    OVERPASS = "de_overpass"
    TRAIN = "de_train"
    VERTIGO = "de_vertigo"

    @property
    def label(self) -> str:
        return "Dust II" if self is MapType.DUST2 else self.value.removeprefix("de_").title()

    @classmethod
    def options(cls) -> list[dict[str, str]]:
        return [{"value": member.value, "label": member.label} for member in cls]
