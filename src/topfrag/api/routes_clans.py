"""
Clan route handlers.

Owner-only actions answer 403 for other members; clan rule violations
raised by ClanService answer 400 (or 404 for unknown invites).
"""

import logging
from datetime import UTC, date, datetime, time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from topfrag.api.shared import pagination
from topfrag.auth.middleware import get_current_user
from topfrag.core.enums import LeaderboardType
from topfrag.infra.cache import get_cache_manager
from topfrag.infra.database import Clan, User, get_session, get_user_by_id
from topfrag.services.clan_leaderboards import ClanLeaderboardService, period_window
from topfrag.services.clans import ClanError, ClanService
from topfrag.services.match_details import MatchDetailsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clans", tags=["clans"])


class ClanRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    tag: str | None = Field(None, min_length=1, max_length=4)


class UpdateClanRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    tag: str | None = Field(None, min_length=1, max_length=4)


class JoinClanRequest(BaseModel):
    invite_link: str = Field(..., min_length=1, max_length=36)


def _clan_error(error: ClanError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


def _load_clan(db: Session, clan_id: int) -> Clan:
    try:
        return ClanService(db).get(clan_id)
    except ClanError as e:
        raise _clan_error(e) from e


def _member_clan(db: Session, clan_id: int, user: User) -> Clan:
    clan = _load_clan(db, clan_id)
    if not clan.is_member(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return clan


def _owned_clan(db: Session, clan_id: int, user: User) -> Clan:
    clan = _load_clan(db, clan_id)
    if not clan.is_owner(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return clan


def _window(period: str, start_date: date | None, end_date: date | None) -> tuple[datetime, datetime]:
    if start_date and end_date:
        return datetime.combine(start_date, time.min, tzinfo=UTC), datetime.combine(end_date, time.max, tzinfo=UTC)
    return period_window(period)


# =============================================================================
# Clans
# =============================================================================


@router.get("")
async def index(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return {"data": [clan.to_dict(include_members=True) for clan in ClanService(db).for_user(user)]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def store(
    body: ClanRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    try:
        clan = ClanService(db).create(user, body.name, body.tag)
    except ClanError as e:
        raise _clan_error(e) from e
    return {"message": "Clan created successfully", "data": clan.to_dict(include_members=True)}


@router.post("/join")
async def join(
    body: JoinClanRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    try:
        clan = ClanService(db).join(user, body.invite_link)
    except ClanError as e:
        raise _clan_error(e) from e
    return {"message": "Joined clan successfully", "data": clan.to_dict(include_members=True)}


@router.get("/{clan_id}")
async def show(
    clan_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    clan = _member_clan(db, clan_id, user)
    data = clan.to_dict(include_members=True)
    data["matches"] = [match.to_dict() for match in ClanService(db).matches(clan)]
    return {"data": data}


@router.put("/{clan_id}")
async def update(
    clan_id: int,
    body: UpdateClanRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    clan = _owned_clan(db, clan_id, user)
    try:
        clan = ClanService(db).update(clan, body.name, body.tag)
    except ClanError as e:
        raise _clan_error(e) from e
    return {"message": "Clan updated successfully", "data": clan.to_dict(include_members=True)}


@router.delete("/{clan_id}")
async def destroy(
    clan_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    clan = _owned_clan(db, clan_id, user)
    ClanService(db).delete(clan)
    return {"message": "Clan deleted successfully"}


@router.post("/{clan_id}/regenerate-invite-link")
async def regenerate_invite_link(
    clan_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    clan = _owned_clan(db, clan_id, user)
    invite_link = ClanService(db).update_invite_link(clan)
    return {"message": "Invite link regenerated successfully", "invite_link": invite_link}


@router.post("/{clan_id}/leave")
async def leave(
    clan_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    clan = _load_clan(db, clan_id)
    try:
        ClanService(db).leave(user, clan)
    except ClanError as e:
        raise _clan_error(e) from e
    return {"message": "Left clan successfully"}


@router.post("/{clan_id}/transfer-ownership/{new_owner_id}")
async def transfer_ownership(
    clan_id: int,
    new_owner_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    clan = _owned_clan(db, clan_id, user)
    new_owner = get_user_by_id(db, new_owner_id)
    if new_owner is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    try:
        clan = ClanService(db).transfer_ownership(clan, new_owner)
    except ClanError as e:
        raise _clan_error(e) from e
    return {"message": "Ownership transferred successfully", "data": clan.to_dict(include_members=True)}


# =============================================================================
# Members and matches
# =============================================================================


@router.get("/{clan_id}/members")
async def members(
    clan_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    clan = _member_clan(db, clan_id, user)
    return {"data": [member.to_dict() for member in clan.members]}


@router.delete("/{clan_id}/members/{member_user_id}")
async def remove_member(
    clan_id: int,
    member_user_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    clan = _owned_clan(db, clan_id, user)
    try:
        ClanService(db).remove_member(clan, member_user_id)
    except ClanError as e:
        raise _clan_error(e) from e
    return {"message": "Member removed successfully"}


@router.get("/{clan_id}/matches")
async def matches(
    clan_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    clan = _member_clan(db, clan_id, user)
    clan_matches = ClanService(db).matches(clan)
    window = clan_matches[(page - 1) * per_page : page * per_page]

    details = MatchDetailsService(db, get_cache_manager())
    data = [details.get_details(user, match.id) or match.to_dict() for match in window]
    return {"data": data, "pagination": pagination(page, per_page, len(clan_matches))}


# =============================================================================
# Leaderboards
# =============================================================================


@router.get("/{clan_id}/leaderboards")
async def leaderboards(
    clan_id: int,
    type: LeaderboardType | None = None,
    period: str = Query("week", pattern="^(week|month)$"),
    start_date: date | None = None,
    end_date: date | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    """One leaderboard when type is given, otherwise every type keyed by name."""
    clan = _member_clan(db, clan_id, user)
    start, end = _window(period, start_date, end_date)
    service = ClanLeaderboardService(db, get_cache_manager())
    if type is not None:
        return service.get_leaderboard(clan, type, start=start, end=end)

    return {
        "data": {
            leaderboard_type.value: service.get_leaderboard(clan, leaderboard_type, start=start, end=end)["data"]
            for leaderboard_type in LeaderboardType
        },
        "start_date": start.date().isoformat(),
        "end_date": end.date().isoformat(),
    }


@router.get("/{clan_id}/leaderboards/{leaderboard_type}")
async def leaderboard(
    clan_id: int,
    leaderboard_type: LeaderboardType,
    period: str = Query("week", pattern="^(week|month)$"),
    start_date: date | None = None,
    end_date: date | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    clan = _member_clan(db, clan_id, user)
    start, end = _window(period, start_date, end_date)
    return ClanLeaderboardService(db, get_cache_manager()).get_leaderboard(clan, leaderboard_type, start=start, end=end)
