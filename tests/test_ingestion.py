"""Tests for the job store and parser ingestion (match headers, event batches, completion)."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from topfrag.core.enums import ProcessingStatus
from topfrag.infra.cache import MatchCacheManager
from topfrag.infra.database import (
    DamageEvent,
    GameMatch,
    GunfightEvent,
    MatchPlayer,
    Player,
    PlayerMatchEvent,
    PlayerRank,
)
from topfrag.infra.job_store import JobNotFoundError, JobStore
from topfrag.services.ingestion import (
    CHUNK_SIZE,
    DemoParserService,
    MatchNotFoundError,
    build_rows,
    generate_match_hash,
    map_team,
)

MATCH_HEADER = {
    "map": "de_inferno",
    "winning_team": "B",
    "winning_team_score": 13,
    "losing_team_score": 11,
    "match_type": "mm",
    "total_rounds": 24,
    "playback_ticks": 160000,
}
PLAYERS = [
    {"steam_id": "76561198000000001", "name": "alice", "team": "A"},
    {"steam_id": "76561198000000002", "name": "bob", "team": "b"},
]


@pytest.fixture
def jobs(db) -> JobStore:
    return JobStore(db)


@pytest.fixture
def parser(db, cache) -> DemoParserService:
    return DemoParserService(db, cache)


class TestJobStore:
    """Test job creation and progress callbacks."""

    def test_create_job_is_pending(self, jobs):
        job = jobs.create_job(user_id=None)
        assert job.processing_status == ProcessingStatus.PENDING.value
        assert job.progress_percentage == 0
        assert len(job.uuid) == 36

    def test_update_progress(self, jobs):
        job = jobs.create_job()
        updated = jobs.update_processing_job(
            job.uuid,
            {"status": "parsing", "progress": 40, "current_step": "Parsing demo", "total_steps": 5},
        )
        assert updated.processing_status == "parsing"
        assert updated.progress_percentage == 40
        assert updated.current_step == "Parsing demo"
        assert updated.total_steps == 5

    def test_optional_fields_left_alone_when_absent(self, jobs):
        job = jobs.create_job()
        jobs.update_processing_job(job.uuid, {"status": "parsing", "progress": 10, "error_code": "E1"})
        updated = jobs.update_processing_job(job.uuid, {"status": "parsing", "progress": 20})
        assert updated.error_code == "E1"

    def test_iso_timestamps_are_parsed(self, jobs):
        job = jobs.create_job()
        updated = jobs.update_processing_job(
            job.uuid, {"status": "parsing", "progress": 5, "start_time": "2026-01-01T10:00:00Z"}
        )
        assert updated.start_time.year == 2026

    def test_completion_forces_100(self, jobs):
        job = jobs.create_job()
        updated = jobs.update_processing_job(job.uuid, {"status": "parsing", "progress": 50}, is_completed=True)
        assert updated.processing_status == ProcessingStatus.COMPLETED.value
        assert updated.progress_percentage == 100
        assert updated.completed_at is not None
        assert updated.current_step == "Completed"

    def test_unknown_job_raises(self, jobs):
        with pytest.raises(JobNotFoundError):
            jobs.update_processing_job("00000000-0000-0000-0000-000000000000", {"status": "parsing"})

    def test_mark_failed_keeps_progress(self, jobs):
        job = jobs.create_job()
        jobs.update_processing_job(job.uuid, {"status": "parsing", "progress": 30})
        failed = jobs.mark_failed(job.uuid, "Parser crashed", error_code="parser_error")
        assert failed.processing_status == ProcessingStatus.FAILED.value
        assert failed.progress_percentage == 30
        assert failed.error_message == "Parser crashed"
        assert failed.is_final is True

    def test_mark_failed_deletes_stored_demo(self, jobs, tmp_path):
        demo = tmp_path / "upload.dem"
        demo.write_bytes(b"HL2DEMO\x00")
        job = jobs.create_job(demo_path=demo)
        assert job.demo_path == str(demo)

        jobs.mark_failed(job.uuid, "Parser crashed")
        assert not demo.exists()

    def test_discard_demo_tolerates_missing_file(self, jobs, tmp_path):
        job = jobs.create_job(demo_path=tmp_path / "gone.dem")
        jobs.discard_demo(job)
        jobs.discard_demo(jobs.create_job())

    def test_in_progress_jobs_excludes_completed(self, jobs, user):
        running = jobs.create_job(user_id=user.id)
        done = jobs.create_job(user_id=user.id)
        jobs.update_processing_job(done.uuid, {}, is_completed=True)
        jobs.create_job()

        uuids = [job.uuid for job in jobs.in_progress_jobs(user.id)]
        assert uuids == [running.uuid]


class TestHelpers:
    """Test the pure ingestion helpers."""

    def test_map_team(self):
        assert map_team("b") == "B"
        assert map_team("A") == "A"
        assert map_team(None) == "A"
        assert map_team("CT") == "A"

    def test_match_hash_ignores_roster_order(self):
        reversed_players = list(reversed(PLAYERS))
        assert generate_match_hash(MATCH_HEADER, PLAYERS) == generate_match_hash(MATCH_HEADER, reversed_players)

    def test_match_hash_changes_with_score(self):
        other = {**MATCH_HEADER, "losing_team_score": 12}
        assert generate_match_hash(MATCH_HEADER, PLAYERS) != generate_match_hash(other, PLAYERS)

    def test_build_rows_fills_defaults_and_drops_unknown(self):
        rows = build_rows(DamageEvent, [{"round_number": 3, "damage": 27, "bogus": 1, "weapon": None}], 9)
        row = rows[0]
        assert row["match_id"] == 9
        assert row["round_number"] == 3
        assert row["damage"] == 27
        assert row["armor_damage"] == 0
        assert row["headshot"] is False
        assert row["weapon"] is None
        assert "bogus" not in row


class TestMatchHeader:
    """Test create_match_with_players."""

    def test_creates_match_and_players(self, parser, jobs, session, user):
        job = jobs.create_job(user_id=user.id)
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)

        match = session.get(GameMatch, match_id)
        assert match.map == "de_inferno"
        assert match.match_type == "matchmaking"
        assert match.uploaded_by == user.id
        assert jobs.get_job(job.uuid).match_id == match_id

        teams = dict(
            session.execute(
                select(Player.steam_id, MatchPlayer.team).join(MatchPlayer, MatchPlayer.player_id == Player.id)
            ).all()
        )
        assert teams == {"76561198000000001": "A", "76561198000000002": "B"}

    def test_second_header_updates_existing_match(self, parser, jobs, session):
        job = jobs.create_job()
        first = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        second = parser.create_match_with_players(job.uuid, {**MATCH_HEADER, "winning_team_score": 16}, PLAYERS)

        assert first == second
        assert session.get(GameMatch, first).winning_team_score == 16
        assert session.query(MatchPlayer).count() == 2
        assert session.query(Player).filter_by(steam_id="76561198000000001").one().total_matches == 2

    def test_header_invalidates_cache(self, parser, jobs, cache):
        job = jobs.create_job()
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        cache.cache("match-details", match_id, "stale")

        parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        assert not cache.has("match-details", match_id)

    def test_unknown_job(self, parser):
        with pytest.raises(JobNotFoundError):
            parser.create_match_with_players("missing", MATCH_HEADER, PLAYERS)


class TestEvents:
    """Test create_match_event."""

    def test_events_before_header_raise(self, parser, jobs):
        job = jobs.create_job()
        with pytest.raises(MatchNotFoundError):
            parser.create_match_event(job.uuid, [{"round_number": 1}], "damage")

    def test_inserts_round_events(self, parser, jobs, session):
        job = jobs.create_job()
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        events = [
            {
                "round_number": 1,
                "tick_timestamp": 100,
                "player_1_steam_id": "76561198000000001",
                "player_2_steam_id": "76561198000000002",
                "victor_steam_id": "76561198000000001",
                "is_first_kill": True,
            },
            {"round_number": 2, "tick_timestamp": 900, "player_1_steam_id": "76561198000000002"},
        ]

        assert parser.create_match_event(job.uuid, events, "gunfight") == 2
        rows = session.execute(
            select(GunfightEvent).where(GunfightEvent.match_id == match_id).order_by(GunfightEvent.id)
        ).scalars().all()
        assert len(rows) == 2
        assert rows[0].is_first_kill is True
        assert rows[1].player_1_hp_start == 100

    def test_large_batch_spans_chunks(self, parser, jobs, session):
        job = jobs.create_job()
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        events = [
            {"round_number": index // 100 + 1, "tick_timestamp": index, "damage": 25, "weapon": "ak47"}
            for index in range(2500)
        ]

        assert 2500 > 2 * CHUNK_SIZE
        assert parser.create_match_event(job.uuid, events, "damage") == 2500
        rows = session.execute(
            select(DamageEvent.tick_timestamp).where(DamageEvent.match_id == match_id).order_by(DamageEvent.id)
        ).scalars().all()
        assert len(rows) == 2500
        assert rows[0] == 0
        assert rows[-1] == 2499

    def test_unknown_event_name_is_ignored(self, parser, jobs):
        job = jobs.create_job()
        parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        assert parser.create_match_event(job.uuid, [{"x": 1}], "not-an-event") == 0

    def test_match_event_updates_header_fields(self, parser, jobs, session):
        job = jobs.create_job()
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)

        count = parser.create_match_event(
            job.uuid, [{"match_type": "faceit", "game_mode": {"mode": "competitive"}, "total_rounds": 30}], "match"
        )
        match = session.get(GameMatch, match_id)
        assert count == 1
        assert match.match_type == "faceit"
        assert match.game_mode == "competitive"
        assert match.total_rounds == 30

    def test_player_match_events_record_ranks(self, parser, jobs, session):
        job = jobs.create_job()
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        parser.create_match_event(
            job.uuid,
            [
                {
                    "player_steam_id": "76561198000000001",
                    "kills": 20,
                    "matchmaking_rank": "Gold Nova",
                    "rank_type": "competitive",
                    "rank_value": 9,
                },
                {"player_steam_id": "76561198000000002", "kills": 12},
            ],
            "player-match",
        )

        assert session.query(PlayerMatchEvent).filter_by(match_id=match_id).count() == 2
        ranks = session.query(PlayerRank).all()
        assert len(ranks) == 1
        assert ranks[0].rank == "Gold Nova"
        assert ranks[0].map == "de_inferno"

    def test_events_invalidate_cache(self, parser, jobs, cache):
        job = jobs.create_job()
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        cache.cache("utility-analysis_player_1", match_id, "stale")

        parser.create_match_event(job.uuid, [{"round_number": 1, "damage": 10}], "damage")
        assert not cache.has("utility-analysis_player_1", match_id)


class TestCompletion:
    """Test complete_job."""

    def test_failed_status_stays_failed(self, parser, jobs):
        job = jobs.create_job()
        result = parser.complete_job(job.uuid, {"status": "failed", "error_message": "bad demo"})
        assert result.processing_status == ProcessingStatus.FAILED.value
        assert result.error_message == "bad demo"

    def test_completed_status_reaches_100(self, parser, jobs):
        job = jobs.create_job()
        parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        result = parser.complete_job(job.uuid, {"status": "completed"})
        assert result.processing_status == ProcessingStatus.COMPLETED.value
        assert result.progress_percentage == 100

    def test_completion_clears_cache(self, db, jobs):
        cache = MatchCacheManager()
        parser = DemoParserService(db, cache)
        job = jobs.create_job()
        match_id = parser.create_match_with_players(job.uuid, MATCH_HEADER, PLAYERS)
        cache.cache("head-to-head", match_id, "stale")

        parser.complete_job(job.uuid, {"status": "completed"})
        assert not cache.has("head-to-head", match_id)
