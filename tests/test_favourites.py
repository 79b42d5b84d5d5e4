"""Tests for grenade favourites: the service rules and the HTTP endpoints."""

from __future__ import annotations

import pytest

from topfrag.services.grenade_favourites import FavouriteError, GrenadeFavouriteService

from conftest import ENEMY_STEAM_ID, USER_STEAM_ID


def throw(match_id: int, **overrides) -> dict:
    data = {
        "match_id": match_id,
        "round_number": 3,
        "round_time": 12.5,
        "tick_timestamp": 4200,
        "player_steam_id": USER_STEAM_ID,
        "player_side": "T",
        "grenade_type": "Smoke Grenade",
        "player_x": 100.0,
        "player_y": 200.0,
        "player_z": 0.0,
        "player_aim_x": 0.5,
        "player_aim_y": 0.5,
        "player_aim_z": 0.0,
        "grenade_final_x": 800.0,
        "grenade_final_y": 900.0,
        "grenade_final_z": 10.0,
    }
    data.update(overrides)
    return data


class TestGrenadeFavouriteService:
    """Test saving, checking and removing favourites."""

    def test_create(self, session, user, make_match):
        match = make_match()
        favourite = GrenadeFavouriteService(session).create(user, throw(match.id))
        assert favourite["user_id"] == user.id
        assert favourite["grenade_type"] == "Smoke Grenade"
        assert favourite["match"]["map"] == "de_mirage"

    def test_unknown_match_is_422(self, session, user):
        with pytest.raises(FavouriteError) as exc_info:
            GrenadeFavouriteService(session).create(user, throw(999))
        assert exc_info.value.status_code == 422

    def test_duplicate_is_409(self, session, user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        service.create(user, throw(match.id))
        with pytest.raises(FavouriteError) as exc_info:
            service.create(user, throw(match.id, round_time=99.0))
        assert exc_info.value.status_code == 409

    def test_same_throw_for_two_users(self, session, user, make_user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        service.create(user, throw(match.id))
        service.create(make_user("bob"), throw(match.id))

    def test_check(self, session, user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        identity = {"match_id": match.id, "round_number": 3, "tick_timestamp": 4200, "player_steam_id": USER_STEAM_ID}

        assert service.check(user, identity) == {"is_favourited": False, "favourite_id": None}
        created = service.create(user, throw(match.id))
        assert service.check(user, identity) == {"is_favourited": True, "favourite_id": created["id"]}

    def test_delete(self, session, user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        created = service.create(user, throw(match.id))
        service.delete(user, created["id"])
        assert service.match_favourites(user, match.id) == []

    def test_delete_someone_elses_favourite_is_404(self, session, user, make_user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        created = service.create(user, throw(match.id))
        with pytest.raises(FavouriteError) as exc_info:
            service.delete(make_user("bob"), created["id"])
        assert exc_info.value.status_code == 404

    def test_index_filters(self, session, user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        service.create(user, throw(match.id))
        service.create(user, throw(match.id, round_number=5, grenade_type="Molotov"))
        service.create(user, throw(match.id, tick_timestamp=9000, player_steam_id=ENEMY_STEAM_ID, player_side="CT"))

        assert len(service.index(user, {})["grenades"]) == 3
        fire = service.index(user, {"grenade_type": "fire_grenades"})["grenades"]
        assert [g["round_number"] for g in fire] == [5]
        sides = service.index(user, {"player_side": "CT"})["grenades"]
        assert [g["player_name"] for g in sides] == ["carol"]
        assert service.index(user, {"map": "de_nuke"})["grenades"] == []

    def test_match_favourites_sorted_by_round(self, session, user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        service.create(user, throw(match.id, round_number=7))
        service.create(user, throw(match.id, round_number=2))
        assert [g["round_number"] for g in service.match_favourites(user, match.id)] == [2, 7]

    def test_filter_options(self, session, user, make_match):
        match = make_match()
        service = GrenadeFavouriteService(session)
        service.create(user, throw(match.id))
        service.create(user, throw(match.id, round_number=5))

        options = service.filter_options(user, {"map": "de_mirage", "match_id": str(match.id)})
        assert options["matches"][0]["id"] == "all"
        assert options["rounds"] == [{"number": 3}, {"number": 5}]
        assert options["players"] == [{"steam_id": USER_STEAM_ID, "name": "alice"}]


class TestFavouriteEndpoints:
    """Test the grenade favourite routes."""

    def test_requires_auth(self, client):
        assert client.get("/api/grenade-favourites").status_code == 401

    def test_create_and_list(self, client, auth_headers, make_match):
        match = make_match()
        response = client.post("/api/grenade-favourites", json=throw(match.id), headers=auth_headers)
        assert response.status_code == 201
        assert response.json()["message"] == "Grenade added to favourites"

        listed = client.get("/api/grenade-favourites", headers=auth_headers).json()
        assert len(listed["grenades"]) == 1
        assert listed["filters"]["map"] is None

    def test_invalid_side_is_422(self, client, auth_headers, make_match):
        match = make_match()
        response = client.post(
            "/api/grenade-favourites", json=throw(match.id, player_side="spectator"), headers=auth_headers
        )
        assert response.status_code == 422

    def test_duplicate_is_409(self, client, auth_headers, make_match):
        match = make_match()
        client.post("/api/grenade-favourites", json=throw(match.id), headers=auth_headers)
        response = client.post("/api/grenade-favourites", json=throw(match.id), headers=auth_headers)
        assert response.status_code == 409

    def test_check(self, client, auth_headers, make_match):
        match = make_match()
        client.post("/api/grenade-favourites", json=throw(match.id), headers=auth_headers)
        response = client.get(
            "/api/grenade-favourites/check",
            params={"match_id": match.id, "round_number": 3, "tick_timestamp": 4200, "player_steam_id": USER_STEAM_ID},
            headers=auth_headers,
        )
        assert response.json()["is_favourited"] is True

    def test_match_favourites_need_access(self, client, make_user, headers_for, make_match):
        match = make_match()
        outsider = make_user("mallory", steam_id="76561198000000099")
        response = client.get(f"/api/matches/{match.id}/grenade-favourites", headers=headers_for(outsider))
        assert response.status_code == 404

    def test_delete(self, client, auth_headers, make_match):
        match = make_match()
        created = client.post("/api/grenade-favourites", json=throw(match.id), headers=auth_headers).json()
        favourite_id = created["favourite"]["id"]

        assert client.delete(f"/api/grenade-favourites/{favourite_id}", headers=auth_headers).status_code == 200
        assert client.delete(f"/api/grenade-favourites/{favourite_id}", headers=auth_headers).status_code == 404
