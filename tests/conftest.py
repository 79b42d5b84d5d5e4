"""Shared fixtures: an in-memory database, a fresh cache and test configuration per test."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

from topfrag.auth.jwt import clear_revocations, create_access_token
from topfrag.core.config import TopFragConfig, reset_config, set_config
from topfrag.infra.cache import CacheStore, MatchCacheManager, set_cache_manager
from topfrag.infra.database import (
    DatabaseManager,
    GameMatch,
    MatchPlayer,
    Player,
    PlayerMatchEvent,
    User,
    set_db,
)

API_KEY = "test-api-key"
JWT_SECRET = "test-secret-key-for-unit-tests"

USER_STEAM_ID = "76561198000000001"
TEAMMATE_STEAM_ID = "76561198000000002"
ENEMY_STEAM_ID = "76561198000000003"


@pytest.fixture(scope="session")
def discord_signing_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture(autouse=True)
def config(tmp_path, discord_signing_key):
    """Test configuration with auth secrets, a Discord key and a temp upload dir."""
    cfg = TopFragConfig()
    cfg.auth.jwt_secret = JWT_SECRET
    cfg.auth.api_key = API_KEY
    cfg.discord.public_key = discord_signing_key.verify_key.encode().hex()
    cfg.parser_service.base_url = "http://parser.test"
    cfg.upload.storage_dir = str(tmp_path / "demos")
    set_config(cfg)
    clear_revocations()
    yield cfg
    reset_config()
    clear_revocations()


@pytest.fixture(autouse=True)
def cache() -> MatchCacheManager:
    manager = MatchCacheManager(CacheStore())
    set_cache_manager(manager)
    yield manager
    set_cache_manager(None)


@pytest.fixture(autouse=True)
def db(config) -> DatabaseManager:
    manager = DatabaseManager(":memory:")
    set_db(manager)
    yield manager
    set_db(None)
    manager.dispose()


@pytest.fixture
def session(db):
    session = db.get_session()
    yield session
    session.close()


@pytest.fixture
def client() -> TestClient:
    from topfrag.api import app

    return TestClient(app)


@pytest.fixture
def make_user(session):
    """Create and commit a user; username and email are derived from name."""

    def _make(name: str = "alice", steam_id: str | None = None, **fields: Any) -> User:
        user = User(username=name, email=f"{name}@example.com", steam_id=steam_id, **fields)
        session.add(user)
        session.commit()
        return user

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user("alice", steam_id=USER_STEAM_ID)


@pytest.fixture
def auth_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.steam_id)}"}


@pytest.fixture
def headers_for():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.steam_id)}"}

    return _headers


@pytest.fixture
def make_match(session):
    """
    Create a match with players and optional PlayerMatchEvent lines.

    roster is a list of (steam_id, name, team); stats maps steam_id to
    PlayerMatchEvent column values.
    """

    def _make(
        roster: list[tuple[str, str, str]] | None = None,
        stats: dict[str, dict[str, Any]] | None = None,
        **match_fields: Any,
    ) -> GameMatch:
        if roster is None:
            roster = [
                (USER_STEAM_ID, "alice", "A"),
                (TEAMMATE_STEAM_ID, "bob", "A"),
                (ENEMY_STEAM_ID, "carol", "B"),
            ]
        fields = {
            "map": "de_mirage",
            "winning_team": "A",
            "winning_team_score": 13,
            "losing_team_score": 7,
            "total_rounds": 20,
            "match_type": "matchmaking",
        }
        fields.update(match_fields)
        match = GameMatch(**fields)
        session.add(match)
        session.flush()

        for steam_id, name, team in roster:
            player = session.query(Player).filter_by(steam_id=steam_id).one_or_none()
            if player is None:
                player = Player(steam_id=steam_id, name=name)
                session.add(player)
                session.flush()
            session.add(MatchPlayer(match_id=match.id, player_id=player.id, team=team))

        for steam_id, values in (stats or {}).items():
            session.add(PlayerMatchEvent(match_id=match.id, player_steam_id=steam_id, **values))

        session.commit()
        return match

    return _make
