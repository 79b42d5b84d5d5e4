"""
Steam sharecode route handlers.

The stored sharecode and game authentication code let the match history
be followed through the Steam Web API.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from topfrag.auth.middleware import get_current_user
from topfrag.infra.database import User, _iso, _utc_now, get_session
from topfrag.sharecode import decode_sharecode, is_valid_game_auth_code, validate_sharecode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sharecode"])


class StoreSharecodeRequest(BaseModel):
    steam_sharecode: str = Field(..., max_length=255)
    steam_game_auth_code: str = Field(..., max_length=255)

    @field_validator("steam_sharecode")
    @classmethod
    def check_sharecode(cls, value: str) -> str:
        if not validate_sharecode(value):
            raise ValueError("The sharecode must be in the format CSGO-XXXXX-XXXXX-XXXXX-XXXXX-XXXXX")
        return value

    @field_validator("steam_game_auth_code")
    @classmethod
    def check_game_auth_code(cls, value: str) -> str:
        if not is_valid_game_auth_code(value):
            raise ValueError("The game authentication code must be in the format XXXX-XXXXX-XXXX")
        return value


class ShareCodeRequest(BaseModel):
    code: str


@router.post("/steam-sharecode")
async def store_sharecode(
    body: StoreSharecodeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    user.steam_sharecode = body.steam_sharecode
    user.steam_game_auth_code = body.steam_game_auth_code
    user.steam_sharecode_added_at = _utc_now()
    db.commit()
    logger.info(f"User {user.id} stored a Steam sharecode")
    return {"message": "Steam sharecode saved successfully", "user": user.to_dict()}


@router.get("/steam-sharecode/has-sharecode")
async def has_sharecode(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {
        "has_sharecode": user.has_steam_sharecode(),
        "has_complete_setup": user.has_complete_steam_setup(),
        "steam_sharecode_added_at": _iso(user.steam_sharecode_added_at),
    }


@router.delete("/steam-sharecode")
async def destroy_sharecode(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    if not user.has_steam_sharecode():
        raise HTTPException(status_code=400, detail="No Steam sharecode configured")

    user.steam_sharecode = None
    user.steam_game_auth_code = None
    user.steam_sharecode_added_at = None
    user.steam_match_processing_enabled = False
    db.commit()
    logger.info(f"User {user.id} removed their Steam sharecode")
    return {"message": "Steam sharecode removed successfully", "user": user.to_dict()}


@router.post("/steam-sharecode/toggle-processing")
async def toggle_processing(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    if not user.has_complete_steam_setup():
        raise HTTPException(
            status_code=400,
            detail=(
                "Both Steam sharecode and game authentication code must be configured "
                "before enabling match processing"
            ),
        )

    user.steam_match_processing_enabled = not user.steam_match_processing_enabled
    db.commit()
    enabled = bool(user.steam_match_processing_enabled)
    return {
        "message": "Steam match processing enabled" if enabled else "Steam match processing disabled",
        "steam_match_processing_enabled": enabled,
        "user": user.to_dict(),
    }


@router.post("/steam-sharecode/decode")
async def decode(body: ShareCodeRequest) -> dict[str, int]:
    """Decode a share code into match id, outcome id and token."""
    try:
        return decode_sharecode(body.code).to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
