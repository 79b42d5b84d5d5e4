"""
Demo parser ingestion.

The external parser posts a match header with its players, then batches of
typed events keyed by job uuid. This module turns them into GameMatch,
Player, MatchPlayer and event rows, and keeps the job tracker and the
derived-stat cache in step.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from topfrag.core.enums import MatchEventType, MatchType, ProcessingStatus, Team
from topfrag.infra.cache import MatchCacheManager, get_cache_manager
from topfrag.infra.database import (
    DamageEvent,
    DatabaseManager,
    DemoProcessingJob,
    GameMatch,
    GrenadeEvent,
    GunfightEvent,
    MatchPlayer,
    Player,
    PlayerMatchAimEvent,
    PlayerMatchAimWeaponEvent,
    PlayerMatchEvent,
    PlayerRank,
    PlayerRoundEvent,
    _utc_now,
    column_defaults,
)
from topfrag.infra.job_store import JobNotFoundError, JobStore

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1000

EVENT_MODELS = {
    MatchEventType.DAMAGE: DamageEvent,
    MatchEventType.GUNFIGHT: GunfightEvent,
    MatchEventType.GRENADE: GrenadeEvent,
    MatchEventType.PLAYER_ROUND: PlayerRoundEvent,
    MatchEventType.PLAYER_MATCH: PlayerMatchEvent,
    MatchEventType.AIM: PlayerMatchAimEvent,
    MatchEventType.AIM_WEAPON: PlayerMatchAimWeaponEvent,
}


class MatchNotFoundError(Exception):
    """The job exists but the parser has not sent its match header yet."""

    def __init__(self, job_uuid: str):
        self.job_uuid = job_uuid
        super().__init__("Match not found for match creation")


def generate_match_hash(match_data: dict[str, Any], players_data: list[dict] | None = None) -> str:
    """sha256 over the match header and its sorted roster."""
    parts: list[Any] = [
        match_data.get("map", "Unknown"),
        match_data.get("winning_team_score", 0),
        match_data.get("losing_team_score", 0),
        match_data.get("match_type", "other"),
        match_data.get("total_rounds", 0),
        match_data.get("playback_ticks", 0),
    ]
    for player in sorted(players_data or [], key=lambda p: p.get("steam_id") or ""):
        parts.append(player.get("steam_id", "Unknown"))
        parts.append(player.get("team", "A"))
    return hashlib.sha256("|".join(str(part) for part in parts).encode()).hexdigest()


def map_team(team: str | None) -> str:
    return Team.B.value if (team or "").upper() == Team.B.value else Team.A.value


def build_rows(model: type, events: list[dict[str, Any]], match_id: int) -> list[dict[str, Any]]:
    """
    Event dicts as insert mappings for model.

    Every row carries the full column set: parser values where present and
    not None, the column default otherwise. Unknown keys are dropped.
    """
    defaults = column_defaults(model)
    rows = []
    for event in events:
        row = dict(defaults)
        for name in defaults:
            value = event.get(name)
            if value is not None:
                row[name] = value
        row["match_id"] = match_id
        rows.append(row)
    return rows


class DemoParserService:
    """
    Applies parser callbacks and event batches.

    Job lookups are cached per instance (uuid -> (job id, match id)) and
    dropped whenever the job itself is updated.
    """

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        cache: MatchCacheManager | None = None,
    ):
        if db_manager is None:
            from topfrag.infra.database import get_db

            db_manager = get_db()
        self.db = db_manager
        self.cache = cache if cache is not None else get_cache_manager()
        self.jobs = JobStore(db_manager)
        self._job_cache: dict[str, tuple[int, int | None]] = {}

    # =========================================================================
    # Jobs
    # =========================================================================

    def _get_job(self, session: Session, job_uuid: str) -> tuple[int, int | None]:
        if job_uuid not in self._job_cache:
            job = session.execute(
                select(DemoProcessingJob).where(DemoProcessingJob.uuid == job_uuid)
            ).scalar_one_or_none()
            if job is None:
                raise JobNotFoundError(job_uuid)
            self._job_cache[job_uuid] = (job.id, job.match_id)
        return self._job_cache[job_uuid]

    def clear_job_cache(self, job_uuid: str | None = None) -> None:
        if job_uuid is None:
            self._job_cache.clear()
        else:
            self._job_cache.pop(job_uuid, None)

    def update_processing_job(
        self, job_uuid: str, data: dict[str, Any], is_completed: bool = False
    ) -> DemoProcessingJob:
        job = self.jobs.update_processing_job(job_uuid, data, is_completed)
        self.clear_job_cache(job_uuid)
        return job

    def complete_job(self, job_uuid: str, data: dict[str, Any]) -> DemoProcessingJob:
        """
        Apply the parser's completion callback.

        A failed status stays failed with its error recorded; anything else
        completes the job at 100%.
        """
        if data.get("status") == ProcessingStatus.FAILED.value:
            job = self.jobs.mark_failed(
                job_uuid,
                data.get("error_message") or "Demo processing failed",
                data.get("error_code"),
            )
            self.clear_job_cache(job_uuid)
            return job

        job = self.update_processing_job(job_uuid, data, is_completed=True)
        if job.match_id is not None:
            self.cache.invalidate_all(job.match_id)
        return job

    # =========================================================================
    # Match header
    # =========================================================================

    def create_match_with_players(
        self,
        job_uuid: str,
        match_data: dict[str, Any],
        players_data: list[dict[str, Any]] | None = None,
    ) -> int:
        """
        Create the job's match (or overwrite its header) and attach players.

        Returns:
            The match id

        Raises:
            JobNotFoundError: If no job has this uuid
        """
        session = self.db.get_session()
        try:
            job_id, match_id = self._get_job(session, job_uuid)
            fields = {
                "match_hash": generate_match_hash(match_data, players_data),
                "map": match_data.get("map") or "Unknown",
                "winning_team": match_data.get("winning_team") or Team.A.value,
                "winning_team_score": match_data.get("winning_team_score") or 0,
                "losing_team_score": match_data.get("losing_team_score") or 0,
                "match_type": MatchType.from_parser(match_data.get("match_type")).value,
                "total_rounds": match_data.get("total_rounds") or 0,
                "playback_ticks": match_data.get("playback_ticks") or 0,
            }

            match = session.get(GameMatch, match_id) if match_id is not None else None
            if match is None:
                job = session.get(DemoProcessingJob, job_id)
                match = GameMatch(**fields)
                if job.user_id is not None:
                    match.uploaded_by = job.user_id
                session.add(match)
                session.flush()
                job.match_id = match.id
                logger.info(f"Created match {match.id} for job {job_uuid}")
            else:
                for name, value in fields.items():
                    setattr(match, name, value)
                logger.info(f"Updated match {match.id} for job {job_uuid}")

            for player_data in players_data or []:
                self._attach_player(session, match, player_data)

            session.commit()
            self._job_cache[job_uuid] = (job_id, match.id)
            self.cache.invalidate_all(match.id)
            return match.id
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to create match for job {job_uuid}: {e}")
            raise
        finally:
            session.close()

    def _attach_player(self, session: Session, match: GameMatch, player_data: dict[str, Any]) -> None:
        steam_id = str(player_data["steam_id"])
        now = _utc_now()
        player = session.execute(select(Player).where(Player.steam_id == steam_id)).scalar_one_or_none()
        if player is None:
            player = Player(
                steam_id=steam_id,
                name=player_data.get("name") or "Unknown",
                first_seen_at=now,
                total_matches=0,
            )
            session.add(player)
            session.flush()

        player.last_seen_at = now
        player.total_matches = (player.total_matches or 0) + 1

        existing = session.execute(
            select(MatchPlayer).where(MatchPlayer.match_id == match.id, MatchPlayer.player_id == player.id)
        ).scalar_one_or_none()
        team = map_team(player_data.get("team"))
        if existing is None:
            session.add(MatchPlayer(match_id=match.id, player_id=player.id, team=team))
        else:
            existing.team = team

    # =========================================================================
    # Events
    # =========================================================================

    def create_match_event(self, job_uuid: str, events: list[dict[str, Any]] | dict[str, Any], event_name: str) -> int:
        """
        Store one batch of parser events for the job's match.

        Args:
            job_uuid: Job the batch belongs to
            events: Event dicts (the ``match`` event may send a single dict)
            event_name: One of MatchEventType's values

        Returns:
            Number of rows inserted or updated

        Raises:
            JobNotFoundError: If no job has this uuid
            MatchNotFoundError: If the job has no match yet
        """
        session = self.db.get_session()
        try:
            _, match_id = self._get_job(session, job_uuid)
            if match_id is None:
                # The header may have arrived through another worker
                self.clear_job_cache(job_uuid)
                _, match_id = self._get_job(session, job_uuid)
            if match_id is None:
                raise MatchNotFoundError(job_uuid)

            match = session.get(GameMatch, match_id)
            if match is None:
                raise MatchNotFoundError(job_uuid)

            try:
                event_type = MatchEventType(event_name)
            except ValueError:
                logger.warning(f"Match event not found: {event_name}")
                return 0

            if event_type == MatchEventType.MATCH:
                payload = events[0] if isinstance(events, list) and events else events
                count = self._update_match_data(match, payload or {})
            else:
                count = self._insert_events(session, EVENT_MODELS[event_type], match, events)
                if event_type == MatchEventType.PLAYER_MATCH:
                    self._record_player_ranks(session, match, events)

            session.commit()
            self.cache.invalidate_all(match_id)
            logger.info(f"Stored {count} {event_name} events for match {match_id} (job {job_uuid})")
            return count
        except (JobNotFoundError, MatchNotFoundError):
            session.rollback()
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to store {event_name} events for job {job_uuid}: {e}")
            raise
        finally:
            session.close()

    def _insert_events(self, session: Session, model: type, match: GameMatch, events: list[dict]) -> int:
        if not events:
            return 0
        rows = build_rows(model, events, match.id)
        for start in range(0, len(rows), CHUNK_SIZE):
            session.bulk_insert_mappings(model, rows[start : start + CHUNK_SIZE])
        return len(rows)

    def _record_player_ranks(self, session: Session, match: GameMatch, events: list[dict]) -> None:
        """Record a PlayerRank, stamped with the match time, for every row carrying rank data."""
        logger.info(f"Recording player ranks for match {match.id} on {match.map} ({len(events)} events)")
        for event in events:
            rank_type = event.get("rank_type")
            rank = event.get("matchmaking_rank")
            if not rank_type or not rank:
                logger.debug(f"Skipping rank for {event.get('player_steam_id')}: missing rank data")
                continue

            player = session.execute(
                select(Player).where(Player.steam_id == str(event.get("player_steam_id")))
            ).scalar_one_or_none()
            if player is None:
                continue

            observed_at = match.created_at or _utc_now()
            player_rank = session.execute(
                select(PlayerRank).where(
                    PlayerRank.player_id == player.id,
                    PlayerRank.rank_type == rank_type,
                    PlayerRank.map == match.map,
                    PlayerRank.created_at == observed_at,
                )
            ).scalar_one_or_none()
            if player_rank is None:
                player_rank = PlayerRank(
                    player_id=player.id, rank_type=rank_type, map=match.map, created_at=observed_at
                )
                session.add(player_rank)
            player_rank.rank = rank
            player_rank.rank_value = event.get("rank_value") or 0
            player_rank.updated_at = observed_at

    def _update_match_data(self, match: GameMatch, data: dict[str, Any]) -> int:
        updated = []
        if data.get("match_type") is not None:
            match.match_type = MatchType.from_parser(data["match_type"]).value
            updated.append("match_type")
        game_mode = data.get("game_mode")
        if isinstance(game_mode, dict) and game_mode.get("mode") is not None:
            match.game_mode = game_mode["mode"]
            updated.append("game_mode")
        for name in ("total_rounds", "playback_ticks"):
            if data.get(name) is not None:
                setattr(match, name, data[name])
                updated.append(name)

        if updated:
            logger.info(f"Updated match {match.id} fields: {', '.join(updated)}")
        return 1 if updated else 0
