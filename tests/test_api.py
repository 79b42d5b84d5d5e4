"""Tests for the FastAPI app: health, uploads, the parser surface and match routes."""

import inspect
from pathlib import Path
from unittest.mock import patch

import pytest

from topfrag.core.enums import ProcessingStatus
from topfrag.infra.database import ClanMatch, DemoProcessingJob, GameMatch, GunfightEvent
from topfrag.infra.job_store import JobStore
from topfrag.integrations.exceptions import ParserServiceError
from topfrag.services.clans import ClanService

from conftest import API_KEY, TEAMMATE_STEAM_ID, USER_STEAM_ID

API_HEADERS = {"X-API-Key": API_KEY}

MATCH_HEADER = {
    "map": "de_ancient",
    "winning_team": "A",
    "winning_team_score": 13,
    "losing_team_score": 9,
    "match_type": "mm",
    "total_rounds": 22,
}
PLAYERS = [
    {"steam_id": USER_STEAM_ID, "name": "alice", "team": "A"},
    {"steam_id": TEAMMATE_STEAM_ID, "name": "bob", "team": "A"},
]


@pytest.fixture
def jobs(db) -> JobStore:
    return JobStore(db)


def progress(client, job_uuid: str, **fields):
    body = {"job_id": job_uuid, "status": "parsing", "progress": 40, "current_step": "Parsing demo"}
    body.update(fields)
    return client.post("/api/job/callback/progress", json=body, headers=API_HEADERS)


class TestHealthEndpoint:
    def test_healthy(self, client):
        with (
            patch("topfrag.api.routes_health.ParserServiceConnector") as parser,
            patch("topfrag.api.routes_health.SteamAPIConnector") as steam,
        ):
            parser.return_value.check_health.return_value = None
            steam.return_value.check_health.return_value = True
            response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["services"]) == {"database", "parser_service", "steam_api"}

    def test_degraded_when_parser_down(self, client):
        with (
            patch("topfrag.api.routes_health.ParserServiceConnector") as parser,
            patch("topfrag.api.routes_health.SteamAPIConnector") as steam,
        ):
            parser.return_value.check_health.side_effect = ParserServiceError.service_unavailable()
            steam.return_value.check_health.return_value = True
            response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["services"]["parser_service"]["status"] == "unhealthy"
        assert data["services"]["database"]["status"] == "healthy"


class TestSecurityHeaders:
    def test_headers_present(self, client):
        response = client.get("/api/matches")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate"


class TestUpload:
    """Test the demo upload endpoints with the parser connector mocked."""

    def upload(self, client, headers, filename="match.dem", content=b"HL2DEMO\x00data", path="/api/user/upload/demo"):
        return client.post(path, files={"demo": (filename, content, "application/octet-stream")}, headers=headers)

    def test_requires_auth(self, client):
        assert self.upload(client, {}).status_code == 401

    def test_user_upload(self, client, auth_headers, user, session, config):
        with patch("topfrag.api.routes_upload.ParserServiceConnector") as connector:
            response = self.upload(client, auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        connector.return_value.upload_demo.assert_called_once()
        stored_path, job_uuid = connector.return_value.upload_demo.call_args.args
        assert job_uuid == data["job_id"]
        assert stored_path.read_bytes() == b"HL2DEMO\x00data"

        job = session.query(DemoProcessingJob).filter_by(uuid=data["job_id"]).one()
        assert job.user_id == user.id
        assert session.get(GameMatch, job.match_id).uploaded_by == user.id

    def test_rejects_non_demo(self, client, auth_headers):
        with patch("topfrag.api.routes_upload.ParserServiceConnector") as connector:
            response = self.upload(client, auth_headers, filename="match.zip")
        assert response.status_code == 422
        connector.return_value.upload_demo.assert_not_called()

    def test_rejects_empty_file(self, client, auth_headers):
        with patch("topfrag.api.routes_upload.ParserServiceConnector"):
            response = self.upload(client, auth_headers, content=b"")
        assert response.status_code == 400

    def test_rejects_oversize(self, client, auth_headers, config):
        config.upload.max_file_size = 4
        with patch("topfrag.api.routes_upload.ParserServiceConnector"):
            response = self.upload(client, auth_headers)
        assert response.status_code == 413

    def test_parser_down_fails_job(self, client, auth_headers, session):
        with patch("topfrag.api.routes_upload.ParserServiceConnector") as connector:
            connector.return_value.upload_demo.side_effect = ParserServiceError.service_unavailable()
            response = self.upload(client, auth_headers)

        assert response.status_code == 503
        job = session.query(DemoProcessingJob).one()
        assert job.processing_status == ProcessingStatus.FAILED.value
        assert job.error_code == "parser_unavailable"
        assert not Path(job.demo_path).exists()

    def test_job_remembers_stored_demo(self, client, auth_headers, session):
        with patch("topfrag.api.routes_upload.ParserServiceConnector") as connector:
            job_id = self.upload(client, auth_headers).json()["job_id"]
        stored_path = connector.return_value.upload_demo.call_args.args[0]

        job = session.query(DemoProcessingJob).filter_by(uuid=job_id).one()
        assert job.demo_path == str(stored_path)
        assert stored_path.exists()

    def test_upload_routes_run_in_threadpool(self):
        from topfrag.api import app

        upload_paths = {"/api/user/upload/demo", "/api/upload/demo", "/api/user/upload/in-progress-jobs"}
        endpoints = [route.endpoint for route in app.routes if getattr(route, "path", None) in upload_paths]
        assert len(endpoints) == 3
        assert not any(inspect.iscoroutinefunction(endpoint) for endpoint in endpoints)

    def test_in_progress_jobs(self, client, auth_headers):
        with patch("topfrag.api.routes_upload.ParserServiceConnector"):
            job_id = self.upload(client, auth_headers).json()["job_id"]
        jobs = client.get("/api/user/upload/in-progress-jobs", headers=auth_headers).json()["jobs"]
        assert [job["uuid"] for job in jobs] == [job_id]

    def test_service_upload_needs_api_key(self, client, session):
        assert self.upload(client, {}, path="/api/upload/demo").status_code == 401
        with patch("topfrag.api.routes_upload.ParserServiceConnector"):
            response = self.upload(client, API_HEADERS, path="/api/upload/demo")
        assert response.status_code == 200
        assert session.query(DemoProcessingJob).one().user_id is None


class TestParserSurface:
    """Test event batches and job callbacks from the parser service."""

    def test_requires_api_key(self, client, jobs):
        job = jobs.create_job()
        response = client.post("/api/job/callback/progress", json={"job_id": job.uuid, "status": "parsing", "progress": 1})
        assert response.status_code == 401

    def test_progress_unknown_job(self, client):
        response = progress(client, "missing")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_progress_creates_match(self, client, jobs, session):
        job = jobs.create_job()
        response = progress(client, job.uuid, match=MATCH_HEADER, players=PLAYERS)
        assert response.status_code == 200
        assert response.json()["message"] == "Job progress updated"

        stored = session.query(DemoProcessingJob).filter_by(uuid=job.uuid).one()
        assert stored.processing_status == "parsing"
        assert stored.progress_percentage == 40
        assert session.get(GameMatch, stored.match_id).map == "de_ancient"

    def test_progress_rejects_bad_percentage(self, client, jobs):
        job = jobs.create_job()
        assert progress(client, job.uuid, progress=101).status_code == 422

    def test_event_batch(self, client, jobs, session):
        job = jobs.create_job()
        progress(client, job.uuid, match=MATCH_HEADER, players=PLAYERS)
        events = [{"round_number": 1, "tick_timestamp": 64, "player_1_steam_id": USER_STEAM_ID}]

        response = client.post(f"/api/job/{job.uuid}/event/gunfight", json={"data": events}, headers=API_HEADERS)
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Event processed successfully",
            "job_id": job.uuid,
            "event_name": "gunfight",
        }
        assert session.query(GunfightEvent).count() == 1

    def test_event_batch_validates_rounds(self, client, jobs):
        job = jobs.create_job()
        response = client.post(
            f"/api/job/{job.uuid}/event/gunfight",
            json={"data": [{"round_number": 0, "tick_timestamp": 64}]},
            headers=API_HEADERS,
        )
        assert response.status_code == 422
        assert response.json()["message"] == "data.0.round_number must be an integer of at least 1"

    def test_event_batch_must_not_be_empty(self, client, jobs):
        job = jobs.create_job()
        response = client.post(f"/api/job/{job.uuid}/event/gunfight", json={"data": []}, headers=API_HEADERS)
        assert response.status_code == 422

    def test_event_before_match_is_404(self, client, jobs):
        job = jobs.create_job()
        response = client.post(
            f"/api/job/{job.uuid}/event/gunfight",
            json={"data": [{"round_number": 1, "tick_timestamp": 64}]},
            headers=API_HEADERS,
        )
        assert response.status_code == 404

    def test_completion_adds_clan_match(self, client, jobs, session, user, make_user):
        bob = make_user("bob", steam_id=TEAMMATE_STEAM_ID)
        clans = ClanService(session)
        clan = clans.create(user, "Night Owls", "OWL")
        clans.join(bob, clan.invite_link)

        job = jobs.create_job()
        progress(client, job.uuid, match=MATCH_HEADER, players=PLAYERS)
        response = client.post(
            "/api/job/callback/completion",
            json={"job_id": job.uuid, "status": "completed"},
            headers=API_HEADERS,
        )

        assert response.status_code == 200
        session.expire_all()
        stored = session.query(DemoProcessingJob).filter_by(uuid=job.uuid).one()
        assert stored.processing_status == "completed"
        assert stored.progress_percentage == 100
        assert [row.match_id for row in session.query(ClanMatch).filter_by(clan_id=clan.id)] == [stored.match_id]

    def test_failed_completion(self, client, jobs, session):
        job = jobs.create_job()
        response = client.post(
            "/api/job/callback/completion",
            json={"job_id": job.uuid, "status": "failed", "error_message": "corrupt demo", "error_code": "parse_error"},
            headers=API_HEADERS,
        )
        assert response.status_code == 200
        stored = session.query(DemoProcessingJob).filter_by(uuid=job.uuid).one()
        assert stored.processing_status == "failed"
        assert stored.error_message == "corrupt demo"
        assert session.query(ClanMatch).count() == 0

    def test_completion_deletes_stored_demo(self, client, jobs, session, tmp_path):
        demo = tmp_path / "stored.dem"
        demo.write_bytes(b"HL2DEMO\x00")
        job = jobs.create_job(demo_path=demo)
        progress(client, job.uuid, match=MATCH_HEADER, players=PLAYERS)

        response = client.post(
            "/api/job/callback/completion",
            json={"job_id": job.uuid, "status": "completed"},
            headers=API_HEADERS,
        )
        assert response.status_code == 200
        assert not demo.exists()

    def test_failed_completion_deletes_stored_demo(self, client, jobs, tmp_path):
        demo = tmp_path / "stored.dem"
        demo.write_bytes(b"HL2DEMO\x00")
        job = jobs.create_job(demo_path=demo)

        client.post(
            "/api/job/callback/completion",
            json={"job_id": job.uuid, "status": "failed", "error_message": "corrupt demo"},
            headers=API_HEADERS,
        )
        assert not demo.exists()


class TestMatchRoutes:
    def test_requires_auth(self, client):
        assert client.get("/api/matches/1/match-details").status_code == 401

    def test_unknown_match_is_404(self, client, auth_headers):
        response = client.get("/api/matches/999/match-details", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Match not found or access denied"

    def test_match_details(self, client, auth_headers, make_match):
        match = make_match()
        response = client.get(f"/api/matches/{match.id}/match-details", headers=auth_headers)
        assert response.status_code == 200

    def test_history(self, client, auth_headers, make_match):
        make_match()
        make_match(map="de_nuke")
        data = client.get("/api/matches", params={"map": "de_nuke"}, headers=auth_headers).json()
        assert len(data["data"]) == 1

    def test_per_page_bounds(self, client, auth_headers):
        assert client.get("/api/matches", params={"per_page": 51}, headers=auth_headers).status_code == 422

    def test_unhandled_errors_are_500(self, auth_headers, make_match):
        from fastapi.testclient import TestClient

        from topfrag.api import app

        match = make_match()
        with patch("topfrag.api.routes_matches.MatchDetailsService") as service:
            service.return_value.get_details.side_effect = RuntimeError("boom")
            response = TestClient(app, raise_server_exceptions=False).get(
                f"/api/matches/{match.id}/match-details", headers=auth_headers
            )
        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"
