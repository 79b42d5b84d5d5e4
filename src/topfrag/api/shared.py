"""
Shared utilities for the TopFrag API.

Contains input validation, rate limiting and the small helpers every route
module leans on: match access checks and pagination.
"""

import logging
import os
import re
from typing import Any

from fastapi import HTTPException, Request, status
from slowapi import Limiter
from sqlalchemy.orm import Session

from topfrag import __version__  # noqa: F401
from topfrag.infra.database import User, user_has_match_access

logger = logging.getLogger(__name__)

# =============================================================================
# Input Validation Patterns
# =============================================================================

STEAM_ID_PATTERN = re.compile(r"^\d{17}$")
JOB_ID_PATTERN = re.compile(
    r"^[a-fA-F0-9]{8}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{12}$"
)


def validate_steam_id(steam_id: str) -> str:
    """Validate steam_id format. Raises HTTPException if invalid."""
    if not steam_id or not STEAM_ID_PATTERN.match(steam_id):
        raise HTTPException(status_code=400, detail="Invalid steam_id: must be exactly 17 digits")
    return steam_id


def validate_job_id(job_id: str) -> str:
    """Validate job_id UUID format. Raises HTTPException if invalid."""
    if not job_id or not JOB_ID_PATTERN.match(job_id):
        raise HTTPException(status_code=400, detail="Invalid job_id: must be a valid UUID")
    return job_id


# =============================================================================
# Match access
# =============================================================================


def require_match_access(db: Session, user: User, match_id: int) -> None:
    """404 unless the user's Steam account played in the match."""
    if not user_has_match_access(db, user, match_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Match not found or access denied",
        )


def or_not_found(result: dict[str, Any], detail: str = "Match not found or access denied") -> dict[str, Any]:
    """Services answer {} for unknown or inaccessible matches."""
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return result


def pagination(page: int, per_page: int, total: int) -> dict[str, int]:
    offset = (page - 1) * per_page
    return {
        "current_page": page,
        "per_page": per_page,
        "total": total,
        "last_page": max(1, -(-total // per_page)),
        "from": offset + 1 if total else 0,
        "to": min(offset + per_page, total),
    }


# =============================================================================
# Rate Limiting
# =============================================================================

IS_PRODUCTION = os.getenv("PRODUCTION") == "true"

RATE_LIMIT_UPLOAD = os.getenv("RATE_LIMIT_UPLOAD", "30/minute")
RATE_LIMIT_AUTH = os.getenv("RATE_LIMIT_AUTH", "20/minute")

FORCE_ENABLE = os.getenv("ENABLE_RATE_LIMITING", "").lower() == "true"
FORCE_DISABLE = os.getenv("DISABLE_RATE_LIMITING", "").lower() == "true"

SHOULD_ENABLE_RATE_LIMITING = (IS_PRODUCTION or FORCE_ENABLE) and not FORCE_DISABLE


def get_real_client_ip(request: Request) -> str:
    """
    Get real client IP from X-Forwarded-For header (for reverse proxies).
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_real_client_ip, enabled=SHOULD_ENABLE_RATE_LIMITING)
