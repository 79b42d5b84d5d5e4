"""
Dashboard and player card routes.

Endpoints:
    GET /api/dashboard/player-stats  - Opening, trading and clutch stats with trends
    GET /api/dashboard/aim-stats     - Aim averages with trends
    GET /api/dashboard/utility-stats - Utility averages with trends
    GET /api/dashboard/summary       - Biggest movers, gauges and the player card
    GET /api/dashboard/map-stats     - Per-map breakdown
    GET /api/dashboard/rank-stats    - Rank history per ladder
    GET /api/ranks                   - Same rank history, for the ranks page
    GET /api/player-card/{steam_id}  - Any player's card over their last 20 matches

Dashboard routes describe the signed-in user's linked Steam account and
accept date_from/date_to (both or neither), game_type, map and
past_match_count filters.
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from topfrag.api.shared import validate_steam_id
from topfrag.auth.middleware import get_current_user
from topfrag.infra.cache import get_cache_manager
from topfrag.infra.database import User, get_session
from topfrag.services.dashboard import DEFAULT_MATCH_COUNT, DashboardFilters, DashboardService
from topfrag.services.player_card import PlayerCardService
from topfrag.services.ranks import RanksService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])


def dashboard_filters(
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    game_type: str | None = None,
    map: str | None = None,
    past_match_count: int = Query(DEFAULT_MATCH_COUNT, ge=1, le=100),
) -> DashboardFilters:
    return DashboardFilters(
        date_from=date_from,
        date_to=date_to,
        game_type=game_type or None,
        map=map or None,
        past_match_count=past_match_count,
    )


def _dashboard(db: Session) -> DashboardService:
    return DashboardService(db, get_cache_manager())


@router.get("/dashboard/player-stats")
def player_stats(
    filters: DashboardFilters = Depends(dashboard_filters),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return _dashboard(db).get_player_stats(user, filters)


@router.get("/dashboard/aim-stats")
def aim_stats(
    filters: DashboardFilters = Depends(dashboard_filters),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return _dashboard(db).get_aim_stats(user, filters)


@router.get("/dashboard/utility-stats")
def utility_stats(
    filters: DashboardFilters = Depends(dashboard_filters),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return _dashboard(db).get_utility_stats(user, filters)


@router.get("/dashboard/summary")
def summary(
    filters: DashboardFilters = Depends(dashboard_filters),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return _dashboard(db).get_summary(user, filters)


@router.get("/dashboard/map-stats")
def map_stats(
    filters: DashboardFilters = Depends(dashboard_filters),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return _dashboard(db).get_map_stats(user, filters)


@router.get("/dashboard/rank-stats")
@router.get("/ranks")
def rank_stats(
    filters: DashboardFilters = Depends(dashboard_filters),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    return RanksService(db, get_cache_manager()).get_rank_stats(user, filters)


@router.get("/player-card/{steam_id}")
def get_player_card(
    steam_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    validate_steam_id(steam_id)
    return PlayerCardService(db, get_cache_manager()).get_player_card(steam_id)
