"""
Match route handlers.

Every view of a match requires the caller's linked Steam account to have
played in it; otherwise the match is reported as not found.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from topfrag.api.shared import or_not_found, require_match_access
from topfrag.auth.middleware import get_current_user
from topfrag.core.config import get_config
from topfrag.infra.cache import get_cache_manager
from topfrag.infra.database import User, get_session
from topfrag.integrations.steam_api import SteamAPIConnector
from topfrag.services.aim_tracking import AimTrackingService
from topfrag.services.grenade_explorer import GrenadeExplorerService
from topfrag.services.head_to_head import HeadToHeadService
from topfrag.services.match_details import MatchDetailsService, MatchHistoryService
from topfrag.services.top_roles import TopRolePlayerService
from topfrag.services.utility_analysis import UtilityAnalysisService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["matches"])

AIM_FILTERS = ("player_steam_id", "weapon_name")
GRENADE_FILTERS = ("map", "round_number", "grenade_type", "player_steam_id", "player_side")


def _filters(request: Request, names: tuple[str, ...]) -> dict[str, Any]:
    return {name: request.query_params[name] for name in names if request.query_params.get(name)}


def _head_to_head(db: Session) -> HeadToHeadService:
    steam_api = SteamAPIConnector() if get_config().steam.api_key else None
    return HeadToHeadService(db, get_cache_manager(), steam_api=steam_api)


# =============================================================================
# History and details
# =============================================================================


@router.get("/matches")
async def list_matches(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=50),
    map: str | None = None,
    match_type: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    filters = {"map": map, "match_type": match_type}
    return MatchHistoryService(db, get_cache_manager()).list(user, page, per_page, filters)


@router.get("/matches/{match_id}/match-details")
async def match_details(
    match_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return or_not_found(MatchDetailsService(db, get_cache_manager()).get_details(user, match_id))


@router.get("/matches/{match_id}/top-role-players")
async def top_role_players(
    match_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return or_not_found(TopRolePlayerService(db, get_cache_manager()).get(user, match_id))


@router.get("/matches/{match_id}/player-stats")
async def player_stats(
    match_id: int,
    player_steam_id: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    """Stats of one player in the match; the caller's own by default."""
    require_match_access(db, user, match_id)
    steam_id = player_steam_id or user.steam_id
    service = HeadToHeadService(db, get_cache_manager())
    return or_not_found(service.get_player_stats(user, match_id, steam_id), "Player stats not found")


# =============================================================================
# Head to head
# =============================================================================


@router.get("/matches/{match_id}/head-to-head")
async def head_to_head(
    match_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return or_not_found(_head_to_head(db).get_head_to_head(user, match_id))


@router.get("/matches/{match_id}/head-to-head/player")
async def head_to_head_player(
    match_id: int,
    player_steam_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    require_match_access(db, user, match_id)
    service = HeadToHeadService(db, get_cache_manager())
    return or_not_found(service.get_player_stats(user, match_id, player_steam_id), "Player stats not found")


# =============================================================================
# Utility and grenades
# =============================================================================


@router.get("/matches/{match_id}/utility-analysis")
async def utility_analysis(
    match_id: int,
    player_steam_id: str | None = None,
    round_number: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    round_filter = int(round_number) if round_number and round_number.isdigit() else None
    service = UtilityAnalysisService(db, get_cache_manager())
    return or_not_found(service.get_analysis(user, match_id, player_steam_id, round_filter))


@router.get("/matches/{match_id}/grenade-explorer")
async def grenade_explorer(
    match_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    require_match_access(db, user, match_id)
    filters = _filters(request, GRENADE_FILTERS)
    return GrenadeExplorerService(db, get_cache_manager()).get_explorer(filters, match_id)


@router.get("/matches/{match_id}/grenade-explorer/filter-options")
async def grenade_explorer_filter_options(
    match_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    require_match_access(db, user, match_id)
    filters = _filters(request, ("map",))
    return GrenadeExplorerService(db, get_cache_manager()).get_filter_options(filters, match_id)


# =============================================================================
# Aim tracking
# =============================================================================


@router.get("/matches/{match_id}/aim-tracking")
async def aim_tracking(
    match_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    require_match_access(db, user, match_id)
    return AimTrackingService(db, get_cache_manager()).get(user, _filters(request, AIM_FILTERS), match_id)


@router.get("/matches/{match_id}/aim-tracking/weapon")
async def aim_tracking_weapon(
    match_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    require_match_access(db, user, match_id)
    service = AimTrackingService(db, get_cache_manager())
    return service.get_weapon_stats(user, _filters(request, AIM_FILTERS), match_id)


@router.get("/matches/{match_id}/aim-tracking/filter-options")
async def aim_tracking_filter_options(
    match_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    require_match_access(db, user, match_id)
    service = AimTrackingService(db, get_cache_manager())
    return service.get_filter_options(user, _filters(request, AIM_FILTERS), match_id)
