"""Grenade favourite route handlers. Every favourite is scoped to the signed-in user."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from topfrag.api.shared import require_match_access
from topfrag.auth.middleware import get_current_user
from topfrag.core.enums import GrenadeType, PlayerSide
from topfrag.infra.database import User, get_session
from topfrag.services.grenade_favourites import FavouriteError, GrenadeFavouriteService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["grenade-favourites"])

INDEX_FILTERS = ("map", "match_id", "round_number", "grenade_type", "player_steam_id", "player_side")


class CreateFavouriteRequest(BaseModel):
    match_id: int
    round_number: int = Field(..., ge=1)
    round_time: float = Field(..., ge=0)
    tick_timestamp: int = Field(..., ge=0)
    player_steam_id: str = Field(..., max_length=255)
    player_side: PlayerSide
    grenade_type: GrenadeType
    player_x: float
    player_y: float
    player_z: float
    player_aim_x: float
    player_aim_y: float
    player_aim_z: float
    grenade_final_x: float
    grenade_final_y: float
    grenade_final_z: float
    damage_dealt: float = Field(0, ge=0)
    flash_duration: float | None = Field(None, ge=0)
    friendly_flash_duration: float | None = Field(None, ge=0)
    enemy_flash_duration: float | None = Field(None, ge=0)
    friendly_players_affected: int = Field(0, ge=0)
    enemy_players_affected: int = Field(0, ge=0)
    throw_type: str = Field("utility", max_length=255)
    effectiveness_rating: float | None = Field(None, ge=0, le=100)


@router.get("/grenade-favourites")
async def index(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    filters = {name: request.query_params.get(name) for name in INDEX_FILTERS}
    if filters["match_id"] == "all":
        filters["match_id"] = None
    return GrenadeFavouriteService(db).index(user, filters)


@router.get("/grenade-favourites/filter-options")
async def filter_options(
    map: str | None = None,
    match_id: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    if match_id == "all":
        match_id = None
    return GrenadeFavouriteService(db).filter_options(user, {"map": map, "match_id": match_id})


@router.post("/grenade-favourites", status_code=status.HTTP_201_CREATED)
async def create(
    body: CreateFavouriteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    data = body.model_dump()
    data["player_side"] = body.player_side.value
    data["grenade_type"] = body.grenade_type.value
    try:
        favourite = GrenadeFavouriteService(db).create(user, data)
    except FavouriteError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return {"message": "Grenade added to favourites", "favourite": favourite}


@router.get("/grenade-favourites/check")
async def check(
    match_id: int = Query(...),
    round_number: int = Query(..., ge=1),
    tick_timestamp: int = Query(..., ge=0),
    player_steam_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    identity = {
        "match_id": match_id,
        "round_number": round_number,
        "tick_timestamp": tick_timestamp,
        "player_steam_id": player_steam_id,
    }
    return GrenadeFavouriteService(db).check(user, identity)


@router.get("/matches/{match_id}/grenade-favourites")
async def match_favourites(
    match_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    require_match_access(db, user, match_id)
    return {"favourites": GrenadeFavouriteService(db).match_favourites(user, match_id)}


@router.delete("/grenade-favourites/{favourite_id}")
async def delete(
    favourite_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    try:
        GrenadeFavouriteService(db).delete(user, favourite_id)
    except FavouriteError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return {"message": "Grenade removed from favourites"}
