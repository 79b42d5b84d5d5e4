"""
TopFrag Core - configuration and shared enums.

- config: Application configuration and logging setup
- enums: Status, team, grenade and leaderboard enums
"""

from topfrag.core.config import TopFragConfig, configure_logging, get_config
from topfrag.core.enums import (
    ComplexionRole,
    GrenadeType,
    LeaderboardType,
    MatchEventType,
    MatchType,
    PlayerSide,
    ProcessingStatus,
    Team,
)

__all__ = [
    "ComplexionRole",
    "GrenadeType",
    "LeaderboardType",
    "MatchEventType",
    "MatchType",
    "PlayerSide",
    "ProcessingStatus",
    "Team",
    "TopFragConfig",
    "configure_logging",
    "get_config",
]
