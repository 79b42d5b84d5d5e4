"""
TopFrag database models and session management.

SQLite (through SQLAlchemy ORM) by default; any SQLAlchemy URL works via
TOPFRAG_DATABASE_URL. Holds users, players, matches, the per-round and
per-match event tables the parser fills, demo processing jobs, clans and
grenade favourites.
"""

import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".topfrag" / "topfrag.db"
Base = declarative_base()


# =============================================================================
# Users and Players
# =============================================================================


class User(Base):
    """Registered account. May be linked to a Steam, Discord and FACEIT identity."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    # Null for accounts created through Steam login
    password_hash = Column(String(255), nullable=True)

    steam_id = Column(String(20), unique=True, nullable=True, index=True)
    discord_id = Column(String(32), unique=True, nullable=True, index=True)
    faceit_player_id = Column(String(64), nullable=True)
    faceit_nickname = Column(String(100), nullable=True)

    steam_sharecode = Column(String(64), nullable=True)
    steam_game_auth_code = Column(String(32), nullable=True)
    steam_sharecode_added_at = Column(DateTime, nullable=True)
    steam_match_processing_enabled = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)
    last_login = Column(DateTime, nullable=True)

    clan_memberships = relationship("ClanMember", back_populates="user", cascade="all, delete-orphan")

    def has_steam_sharecode(self) -> bool:
        return bool(self.steam_sharecode)

    def has_complete_steam_setup(self) -> bool:
        return bool(self.steam_sharecode) and bool(self.steam_game_auth_code)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.username,
            "username": self.username,
            "email": self.email,
            "steam_id": self.steam_id,
            "discord_id": self.discord_id,
            "faceit_nickname": self.faceit_nickname,
            "steam_sharecode": self.steam_sharecode,
            "steam_sharecode_added_at": _iso(self.steam_sharecode_added_at),
            "steam_match_processing_enabled": bool(self.steam_match_processing_enabled),
            "has_password": self.password_hash is not None,
            "created_at": _iso(self.created_at),
            "last_login": _iso(self.last_login),
        }


class Player(Base):
    """A Steam account seen in at least one parsed demo."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    steam_id = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False, default="Unknown")
    first_seen_at = Column(DateTime, default=_utc_now)
    last_seen_at = Column(DateTime, default=_utc_now)
    total_matches = Column(Integer, default=0, nullable=False)

    match_players = relationship("MatchPlayer", back_populates="player", cascade="all, delete-orphan")
    ranks = relationship("PlayerRank", back_populates="player", cascade="all, delete-orphan")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "steam_id": self.steam_id,
            "name": self.name,
            "first_seen_at": _iso(self.first_seen_at),
            "last_seen_at": _iso(self.last_seen_at),
            "total_matches": self.total_matches,
        }


# =============================================================================
# Matches
# =============================================================================


class GameMatch(Base):
    """Match metadata and final score."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_hash = Column(String(64), nullable=True, index=True)
    map = Column(String(50), nullable=False, default="Unknown")
    winning_team = Column(String(1), nullable=False, default="A")
    winning_team_score = Column(Integer, default=0, nullable=False)
    losing_team_score = Column(Integer, default=0, nullable=False)
    match_type = Column(String(20), default="other", nullable=False)
    game_mode = Column(String(50), nullable=True)
    total_rounds = Column(Integer, default=0, nullable=False)
    playback_ticks = Column(Integer, default=0, nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=_utc_now, index=True)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    match_players = relationship("MatchPlayer", back_populates="match", cascade="all, delete-orphan")
    player_match_events = relationship(
        "PlayerMatchEvent", back_populates="match", cascade="all, delete-orphan"
    )
    gunfight_events = relationship("GunfightEvent", cascade="all, delete-orphan")
    grenade_events = relationship("GrenadeEvent", cascade="all, delete-orphan")
    damage_events = relationship("DamageEvent", cascade="all, delete-orphan")
    player_round_events = relationship("PlayerRoundEvent", cascade="all, delete-orphan")
    aim_events = relationship("PlayerMatchAimEvent", cascade="all, delete-orphan")
    aim_weapon_events = relationship("PlayerMatchAimWeaponEvent", cascade="all, delete-orphan")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "match_hash": self.match_hash,
            "map": self.map,
            "winning_team": self.winning_team,
            "winning_team_score": self.winning_team_score,
            "losing_team_score": self.losing_team_score,
            "match_type": self.match_type,
            "game_mode": self.game_mode,
            "total_rounds": self.total_rounds,
            "playback_ticks": self.playback_ticks,
            "created_at": _iso(self.created_at),
        }


class MatchPlayer(Base):
    """Which team a player started on in a match."""

    __tablename__ = "match_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False, index=True)
    team = Column(String(1), nullable=False, default="A")

    match = relationship("GameMatch", back_populates="match_players")
    player = relationship("Player", back_populates="match_players")

    __table_args__ = (UniqueConstraint("match_id", "player_id", name="uq_match_player"),)


class PlayerRank(Base):
    """One observation of a player's rank; map is set for per-map competitive ranks."""

    __tablename__ = "player_ranks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    rank_type = Column(String(30), nullable=False)
    map = Column(String(50), nullable=True)
    rank = Column(String(50), nullable=True)
    rank_value = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    player = relationship("Player", back_populates="ranks")

    __table_args__ = (Index("idx_player_rank_history", "player_id", "rank_type", "created_at"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank_type": self.rank_type,
            "map": self.map,
            "rank": self.rank,
            "rank_value": self.rank_value,
            "created_at": _iso(self.created_at),
        }


# =============================================================================
# Per-round Events
# =============================================================================


class DamageEvent(Base):
    """A single damage instance."""

    __tablename__ = "damage_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    round_time = Column(Integer, default=0)
    tick_timestamp = Column(Integer, default=0)
    attacker_steam_id = Column(String(20), index=True)
    victim_steam_id = Column(String(20), index=True)
    damage = Column(Integer, default=0)
    armor_damage = Column(Integer, default=0)
    health_damage = Column(Integer, default=0)
    headshot = Column(Boolean, default=False)
    weapon = Column(String(50))

    __table_args__ = (Index("idx_damage_match_round", "match_id", "round_number"),)


class GunfightEvent(Base):
    """A duel between two players, with both players' state at its start."""

    __tablename__ = "gunfight_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    round_time = Column(Integer, default=0)
    tick_timestamp = Column(Integer, default=0)

    player_1_steam_id = Column(String(20), index=True)
    player_1_side = Column(String(2), default=None)
    player_1_hp_start = Column(Integer, default=100)
    player_1_armor = Column(Integer, default=0)
    player_1_equipment_value = Column(Integer, default=0)
    player_1_flashed = Column(Boolean, default=False)
    player_1_weapon = Column(String(50))
    player_1_x = Column(Float, default=0.0)
    player_1_y = Column(Float, default=0.0)
    player_1_z = Column(Float, default=0.0)

    player_2_steam_id = Column(String(20), index=True)
    player_2_side = Column(String(2), default=None)
    player_2_hp_start = Column(Integer, default=100)
    player_2_armor = Column(Integer, default=0)
    player_2_equipment_value = Column(Integer, default=0)
    player_2_flashed = Column(Boolean, default=False)
    player_2_weapon = Column(String(50))
    player_2_x = Column(Float, default=0.0)
    player_2_y = Column(Float, default=0.0)
    player_2_z = Column(Float, default=0.0)

    distance = Column(Float, default=0.0)
    headshot = Column(Boolean, default=False)
    wallbang = Column(Boolean, default=False)
    penetrated_objects = Column(Integer, default=0)
    victor_steam_id = Column(String(20), nullable=True)
    damage_dealt = Column(Integer, default=0)
    is_first_kill = Column(Boolean, default=False)
    flash_assister_steam_id = Column(String(20), default=None)
    damage_assist_steam_id = Column(String(20), default=None)
    round_scenario = Column(String(20), default=None)

    __table_args__ = (Index("idx_gunfight_match_round", "match_id", "round_number"),)


class GrenadeEvent(Base):
    """A grenade throw with its landing spot and effect."""

    __tablename__ = "grenade_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    round_time = Column(Integer, default=0)
    tick_timestamp = Column(Integer, default=0)
    player_steam_id = Column(String(20), index=True)
    player_side = Column(String(2), default=None)
    grenade_type = Column(String(30), nullable=False)

    player_x = Column(Float, default=0.0)
    player_y = Column(Float, default=0.0)
    player_z = Column(Float, default=0.0)
    player_aim_x = Column(Float, default=0.0)
    player_aim_y = Column(Float, default=0.0)
    player_aim_z = Column(Float, default=0.0)
    grenade_final_x = Column(Float, default=None)
    grenade_final_y = Column(Float, default=None)
    grenade_final_z = Column(Float, default=None)

    damage_dealt = Column(Integer, default=0)
    team_damage_dealt = Column(Integer, default=0)
    friendly_flash_duration = Column(Float, default=None)
    enemy_flash_duration = Column(Float, default=None)
    friendly_players_affected = Column(Integer, default=0)
    enemy_players_affected = Column(Integer, default=0)
    throw_type = Column(String(20), default="utility")
    effectiveness_rating = Column(Float, default=None)
    flash_leads_to_kill = Column(Boolean, default=False)
    flash_leads_to_death = Column(Boolean, default=False)
    smoke_blocking_duration = Column(Integer, default=0)

    __table_args__ = (Index("idx_grenade_match_round", "match_id", "round_number"),)

    def to_dict(self) -> dict[str, Any]:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}


class PlayerRoundEvent(Base):
    """One player's summary of one round."""

    __tablename__ = "player_round_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    player_steam_id = Column(String(20), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)

    kills = Column(Integer, default=0)
    assists = Column(Integer, default=0)
    died = Column(Boolean, default=False)
    damage = Column(Integer, default=0)
    headshots = Column(Integer, default=0)
    first_kill = Column(Boolean, default=False)
    first_death = Column(Boolean, default=False)
    round_time_of_death = Column(Integer, default=None)
    kills_with_awp = Column(Integer, default=0)

    damage_dealt = Column(Integer, default=0)
    flashes_thrown = Column(Integer, default=0)
    fire_grenades_thrown = Column(Integer, default=0)
    smokes_thrown = Column(Integer, default=0)
    hes_thrown = Column(Integer, default=0)
    decoys_thrown = Column(Integer, default=0)
    friendly_flash_duration = Column(Float, default=0.0)
    enemy_flash_duration = Column(Float, default=0.0)
    friendly_players_affected = Column(Integer, default=0)
    enemy_players_affected = Column(Integer, default=0)
    flashes_leading_to_kill = Column(Integer, default=0)
    flashes_leading_to_death = Column(Integer, default=0)
    grenade_effectiveness = Column(Float, default=0.0)
    smoke_blocking_duration = Column(Integer, default=0)

    successful_trades = Column(Integer, default=0)
    total_possible_trades = Column(Integer, default=0)
    successful_traded_deaths = Column(Integer, default=0)
    total_possible_traded_deaths = Column(Integer, default=0)

    clutch_attempts_1v1 = Column(Integer, default=0)
    clutch_attempts_1v2 = Column(Integer, default=0)
    clutch_attempts_1v3 = Column(Integer, default=0)
    clutch_attempts_1v4 = Column(Integer, default=0)
    clutch_attempts_1v5 = Column(Integer, default=0)
    clutch_wins_1v1 = Column(Integer, default=0)
    clutch_wins_1v2 = Column(Integer, default=0)
    clutch_wins_1v3 = Column(Integer, default=0)
    clutch_wins_1v4 = Column(Integer, default=0)
    clutch_wins_1v5 = Column(Integer, default=0)

    time_to_contact = Column(Float, default=0.0)
    is_eco = Column(Boolean, default=False)
    is_force_buy = Column(Boolean, default=False)
    is_full_buy = Column(Boolean, default=False)
    kills_vs_eco = Column(Integer, default=0)
    kills_vs_force_buy = Column(Integer, default=0)
    kills_vs_full_buy = Column(Integer, default=0)
    grenade_value_lost_on_death = Column(Integer, default=0)

    __table_args__ = (Index("idx_player_round_match_player", "match_id", "player_steam_id"),)


# =============================================================================
# Per-match Events
# =============================================================================


class PlayerMatchEvent(Base):
    """One player's aggregate line for a whole match."""

    __tablename__ = "player_match_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    player_steam_id = Column(String(20), nullable=False, index=True)

    kills = Column(Integer, default=0)
    assists = Column(Integer, default=0)
    deaths = Column(Integer, default=0)
    damage = Column(Integer, default=0)
    adr = Column(Float, default=0.0)
    headshots = Column(Integer, default=0)
    first_kills = Column(Integer, default=0)
    first_deaths = Column(Integer, default=0)
    average_round_time_of_death = Column(Float, default=0.0)
    kills_with_awp = Column(Integer, default=0)

    damage_dealt = Column(Integer, default=0)
    flashes_thrown = Column(Integer, default=0)
    fire_grenades_thrown = Column(Integer, default=0)
    smokes_thrown = Column(Integer, default=0)
    hes_thrown = Column(Integer, default=0)
    decoys_thrown = Column(Integer, default=0)
    friendly_flash_duration = Column(Float, default=0.0)
    enemy_flash_duration = Column(Float, default=0.0)
    friendly_players_affected = Column(Integer, default=0)
    enemy_players_affected = Column(Integer, default=0)
    flashes_leading_to_kills = Column(Integer, default=0)
    flashes_leading_to_deaths = Column(Integer, default=0)
    average_grenade_effectiveness = Column(Float, default=0.0)

    total_successful_trades = Column(Integer, default=0)
    total_possible_trades = Column(Integer, default=0)
    total_traded_deaths = Column(Integer, default=0)
    total_possible_traded_deaths = Column(Integer, default=0)

    clutch_wins_1v1 = Column(Integer, default=0)
    clutch_wins_1v2 = Column(Integer, default=0)
    clutch_wins_1v3 = Column(Integer, default=0)
    clutch_wins_1v4 = Column(Integer, default=0)
    clutch_wins_1v5 = Column(Integer, default=0)
    clutch_attempts_1v1 = Column(Integer, default=0)
    clutch_attempts_1v2 = Column(Integer, default=0)
    clutch_attempts_1v3 = Column(Integer, default=0)
    clutch_attempts_1v4 = Column(Integer, default=0)
    clutch_attempts_1v5 = Column(Integer, default=0)

    average_time_to_contact = Column(Float, default=0.0)
    kills_vs_eco = Column(Integer, default=0)
    kills_vs_force_buy = Column(Integer, default=0)
    kills_vs_full_buy = Column(Integer, default=0)
    average_grenade_value_lost = Column(Float, default=0.0)

    matchmaking_rank = Column(String(50), default=None)
    rank_type = Column(String(30), default=None)
    rank_value = Column(Integer, default=None)

    total_impact = Column(Float, default=0.0)
    average_impact = Column(Float, default=0.0)
    impact_percentage = Column(Float, default=0.0)
    match_swing_percent = Column(Float, default=0.0)

    match = relationship("GameMatch", back_populates="player_match_events")

    __table_args__ = (Index("idx_player_match_match_player", "match_id", "player_steam_id"),)

    def clutch_totals(self) -> tuple[int, int]:
        """Return (attempts, wins) summed over 1v1..1v5."""
        attempts = sum(getattr(self, f"clutch_attempts_1v{n}") or 0 for n in range(1, 6))
        wins = sum(getattr(self, f"clutch_wins_1v{n}") or 0 for n in range(1, 6))
        return attempts, wins

    def grenades_thrown(self) -> int:
        return sum(
            getattr(self, name) or 0
            for name in (
                "flashes_thrown",
                "fire_grenades_thrown",
                "smokes_thrown",
                "hes_thrown",
                "decoys_thrown",
            )
        )


class PlayerMatchAimEvent(Base):
    """Aim aggregate for one player in one match."""

    __tablename__ = "player_match_aim_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    player_steam_id = Column(String(20), nullable=False, index=True)

    shots_fired = Column(Integer, default=0)
    shots_hit = Column(Integer, default=0)
    accuracy_all_shots = Column(Float, default=0.0)
    spraying_shots_fired = Column(Integer, default=0)
    spraying_shots_hit = Column(Integer, default=0)
    spraying_accuracy = Column(Float, default=0.0)
    average_crosshair_placement_x = Column(Float, default=0.0)
    average_crosshair_placement_y = Column(Float, default=0.0)
    headshot_accuracy = Column(Float, default=0.0)
    average_time_to_damage = Column(Float, default=0.0)
    head_hits_total = Column(Integer, default=0)
    upper_chest_hits_total = Column(Integer, default=0)
    chest_hits_total = Column(Integer, default=0)
    legs_hits_total = Column(Integer, default=0)
    aim_rating = Column(Float, default=0.0)


class PlayerMatchAimWeaponEvent(Base):
    """Aim aggregate for one player and one weapon in one match."""

    __tablename__ = "player_match_aim_weapon_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    player_steam_id = Column(String(20), nullable=False, index=True)
    weapon_name = Column(String(50), nullable=False)

    shots_fired = Column(Integer, default=0)
    shots_hit = Column(Integer, default=0)
    accuracy_all_shots = Column(Float, default=0.0)
    spraying_shots_fired = Column(Integer, default=0)
    spraying_shots_hit = Column(Integer, default=0)
    spraying_accuracy = Column(Float, default=0.0)
    average_crosshair_placement_x = Column(Float, default=0.0)
    average_crosshair_placement_y = Column(Float, default=0.0)
    headshot_accuracy = Column(Float, default=0.0)
    head_hits_total = Column(Integer, default=0)
    upper_chest_hits_total = Column(Integer, default=0)
    chest_hits_total = Column(Integer, default=0)
    legs_hits_total = Column(Integer, default=0)


# =============================================================================
# Processing Jobs
# =============================================================================


class DemoProcessingJob(Base):
    """Progress of one demo through the external parser."""

    __tablename__ = "demo_processing_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True)
    # Local copy of the uploaded demo, removed once the job ends
    demo_path = Column(String(512), nullable=True)

    processing_status = Column(String(30), default="pending", nullable=False, index=True)
    progress_percentage = Column(Integer, default=0, nullable=False)
    current_step = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    step_progress = Column(Integer, nullable=True)
    total_steps = Column(Integer, nullable=True)
    current_step_num = Column(Integer, nullable=True)
    start_time = Column(DateTime, nullable=True)
    last_update_time = Column(DateTime, nullable=True)
    error_code = Column(String(64), nullable=True)
    context = Column(JSON, nullable=True)
    is_final = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=_utc_now, index=True)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)
    completed_at = Column(DateTime, nullable=True)

    match = relationship("GameMatch")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "uuid": self.uuid,
            "user_id": self.user_id,
            "match_id": self.match_id,
            "processing_status": self.processing_status,
            "progress_percentage": self.progress_percentage,
            "current_step": self.current_step,
            "error_message": self.error_message,
            "step_progress": self.step_progress,
            "total_steps": self.total_steps,
            "current_step_num": self.current_step_num,
            "error_code": self.error_code,
            "context": self.context,
            "is_final": bool(self.is_final),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }


# =============================================================================
# Clans
# =============================================================================


class Clan(Base):
    """A user-owned group whose members' shared matches are tracked together."""

    __tablename__ = "clans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owned_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), unique=True, nullable=False)
    tag = Column(String(4), unique=True, nullable=True)
    invite_link = Column(String(36), unique=True, nullable=False)
    discord_guild_id = Column(String(32), unique=True, nullable=True, index=True)
    discord_channel_id = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    owner = relationship("User")
    members = relationship("ClanMember", back_populates="clan", cascade="all, delete-orphan")
    clan_matches = relationship("ClanMatch", back_populates="clan", cascade="all, delete-orphan")
    leaderboards = relationship("ClanLeaderboard", back_populates="clan", cascade="all, delete-orphan")

    def is_owner(self, user: User) -> bool:
        return self.owned_by == user.id

    def is_member(self, user: User) -> bool:
        return any(member.user_id == user.id for member in self.members)

    def to_dict(self, include_members: bool = False) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        data = {
            "id": self.id,
            "owned_by": self.owned_by,
            "name": self.name,
            "tag": self.tag,
            "invite_link": self.invite_link,
            "discord_guild_id": self.discord_guild_id,
            "discord_channel_id": self.discord_channel_id,
            "members_count": len(self.members),
            "created_at": _iso(self.created_at),
        }
        if include_members:
            data["members"] = [member.to_dict() for member in self.members]
        return data


class ClanMember(Base):
    __tablename__ = "clan_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clan_id = Column(Integer, ForeignKey("clans.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=_utc_now)

    clan = relationship("Clan", back_populates="members")
    user = relationship("User", back_populates="clan_memberships")

    __table_args__ = (UniqueConstraint("clan_id", "user_id", name="uq_clan_member"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "steam_id": self.user.steam_id if self.user else None,
            "joined_at": _iso(self.created_at),
        }


class ClanMatch(Base):
    __tablename__ = "clan_matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clan_id = Column(Integer, ForeignKey("clans.id", ondelete="CASCADE"), nullable=False, index=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=_utc_now)

    clan = relationship("Clan", back_populates="clan_matches")
    match = relationship("GameMatch")

    __table_args__ = (UniqueConstraint("clan_id", "match_id", name="uq_clan_match"),)


class ClanLeaderboard(Base):
    """A member's position on one clan leaderboard for one date window."""

    __tablename__ = "clan_leaderboards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clan_id = Column(Integer, ForeignKey("clans.id", ondelete="CASCADE"), nullable=False, index=True)
    leaderboard_type = Column(String(20), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    value = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    clan = relationship("Clan", back_populates="leaderboards")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint(
            "clan_id",
            "start_date",
            "end_date",
            "leaderboard_type",
            "user_id",
            name="uq_clan_leaderboard_entry",
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "steam_id": self.user.steam_id if self.user else None,
            "value": round(self.value or 0.0, 2),
            "leaderboard_type": self.leaderboard_type,
        }


# =============================================================================
# Grenade Favourites
# =============================================================================


class GrenadeFavourite(Base):
    """A grenade throw a user saved from a match."""

    __tablename__ = "grenade_favourites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    round_time = Column(Float, nullable=False)
    tick_timestamp = Column(Integer, nullable=False)
    player_steam_id = Column(String(20), nullable=False)
    player_side = Column(String(2), nullable=False)
    grenade_type = Column(String(30), nullable=False)

    player_x = Column(Float, nullable=False)
    player_y = Column(Float, nullable=False)
    player_z = Column(Float, nullable=False)
    player_aim_x = Column(Float, nullable=False)
    player_aim_y = Column(Float, nullable=False)
    player_aim_z = Column(Float, nullable=False)
    grenade_final_x = Column(Float, nullable=False)
    grenade_final_y = Column(Float, nullable=False)
    grenade_final_z = Column(Float, nullable=False)

    damage_dealt = Column(Float, nullable=True)
    flash_duration = Column(Float, nullable=True)
    friendly_flash_duration = Column(Float, nullable=True)
    enemy_flash_duration = Column(Float, nullable=True)
    friendly_players_affected = Column(Integer, nullable=True)
    enemy_players_affected = Column(Integer, nullable=True)
    throw_type = Column(String(20), nullable=True)
    effectiveness_rating = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_utc_now, index=True)

    match = relationship("GameMatch")

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "match_id",
            "round_number",
            "tick_timestamp",
            "player_steam_id",
            name="uq_grenade_favourite",
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        data = {column.name: getattr(self, column.name) for column in self.__table__.columns}
        data["created_at"] = _iso(self.created_at)
        return data


# =============================================================================
# Column Defaults
# =============================================================================


def column_defaults(model: type) -> dict[str, Any]:
    """Scalar column defaults of a model, keyed by column name.

    Surrogate keys, the match foreign key and timestamps are left out; callers
    fill those themselves.
    """
    defaults: dict[str, Any] = {}
    for column in model.__table__.columns:
        if column.primary_key or column.name in ("match_id", "created_at", "updated_at"):
            continue
        default = column.default
        defaults[column.name] = default.arg if default is not None and default.is_scalar else None
    return defaults


# =============================================================================
# Session-level Query Helpers
# =============================================================================


def get_user_by_id(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == email)).scalar_one_or_none()


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.execute(select(User).where(User.username == username)).scalar_one_or_none()


def get_user_by_steam_id(db: Session, steam_id: str) -> User | None:
    return db.execute(select(User).where(User.steam_id == steam_id)).scalar_one_or_none()


def get_user_by_discord_id(db: Session, discord_id: str) -> User | None:
    return db.execute(select(User).where(User.discord_id == discord_id)).scalar_one_or_none()


def user_exists(
    db: Session,
    email: str | None = None,
    username: str | None = None,
    exclude_user_id: int | None = None,
) -> bool:
    """Check whether another account already uses this email or username."""
    query = select(User.id)
    if email is not None:
        query = query.where(User.email == email)
    if username is not None:
        query = query.where(User.username == username)
    if exclude_user_id is not None:
        query = query.where(User.id != exclude_user_id)
    return db.execute(query.limit(1)).first() is not None


def create_user(
    db: Session,
    username: str,
    email: str | None = None,
    password_hash: str | None = None,
    steam_id: str | None = None,
    discord_id: str | None = None,
) -> User:
    """Create and commit a user."""
    try:
        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            steam_id=steam_id,
            discord_id=discord_id,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"Created user {user.id} ({username})")
        return user
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create user {username}: {e}")
        raise


def update_user_last_login(db: Session, user: User) -> None:
    user.last_login = _utc_now()
    db.commit()


def get_match_player(db: Session, match_id: int, steam_id: str) -> MatchPlayer | None:
    return db.execute(
        select(MatchPlayer)
        .join(Player, MatchPlayer.player_id == Player.id)
        .where(MatchPlayer.match_id == match_id, Player.steam_id == steam_id)
    ).scalar_one_or_none()


def user_has_match_access(db: Session, user: User, match_id: int) -> bool:
    """A user can see a match when their linked Steam account played in it."""
    if not user.steam_id:
        return False
    return get_match_player(db, match_id, user.steam_id) is not None


def get_user_matches(db: Session, user: User, limit: int = 20, offset: int = 0) -> list[GameMatch]:
    """Matches the user's Steam account played in, newest first."""
    if not user.steam_id:
        return []
    query = (
        select(GameMatch)
        .join(MatchPlayer, MatchPlayer.match_id == GameMatch.id)
        .join(Player, MatchPlayer.player_id == Player.id)
        .where(Player.steam_id == user.steam_id)
        .order_by(GameMatch.created_at.desc(), GameMatch.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(db.execute(query).scalars())


def count_user_matches(db: Session, user: User) -> int:
    if not user.steam_id:
        return 0
    return db.execute(
        select(func.count(MatchPlayer.id))
        .join(Player, MatchPlayer.player_id == Player.id)
        .where(Player.steam_id == user.steam_id)
    ).scalar_one()


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """
    Manages database connections and sessions.

    Accepts either a SQLAlchemy URL or a SQLite file path. ``":memory:"``
    gives an in-memory database shared across sessions.
    """

    def __init__(self, db_url_or_path: Path | str | None = None):
        """Initialize database connection."""
        if db_url_or_path is None:
            from topfrag.core.config import get_config

            db_config = get_config().database
            db_url_or_path = db_config.url or db_config.path or DEFAULT_DB_PATH

        db_url_or_path = str(db_url_or_path)
        engine_kwargs: dict[str, Any] = {"echo": False}

        if db_url_or_path == ":memory:":
            self.db_url = "sqlite://"
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            engine_kwargs["poolclass"] = StaticPool
        elif "://" in db_url_or_path:
            self.db_url = db_url_or_path
            if self.db_url.startswith("sqlite"):
                engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            db_path = Path(db_url_or_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db_url = f"sqlite:///{db_path}"
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self.engine = create_engine(self.db_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)

        logger.info(f"Database initialized at: {self.db_url}")

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    def get_user_matches(self, user: User, limit: int = 20, offset: int = 0) -> list[dict]:
        session = self.get_session()
        try:
            return [m.to_dict() for m in get_user_matches(session, user, limit, offset)]
        finally:
            session.close()

    def user_has_match_access(self, user: User, match_id: int) -> bool:
        session = self.get_session()
        try:
            return user_has_match_access(session, user, match_id)
        finally:
            session.close()

    def check_connection(self) -> bool:
        """Run a trivial query; raises when the database is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()


# Global database instance (lazy initialization)
_db_manager: DatabaseManager | None = None


def get_db() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def set_db(manager: DatabaseManager | None) -> None:
    """Replace the global database manager (tests use an in-memory one)."""
    global _db_manager
    _db_manager = manager


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a session bound to the global database."""
    session = get_db().get_session()
    try:
        yield session
    finally:
        session.close()
