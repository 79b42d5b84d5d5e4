"""
Steam OpenID authentication routes.

Endpoints:
    GET  /api/auth/steam/redirect      - Redirect user to Steam login page
    GET  /api/auth/steam/callback      - Handle Steam's redirect, find/create user, return JWT
    POST /api/auth/steam/link          - Start linking Steam to the signed-in account
    GET  /api/auth/steam/link-callback - Handle Steam's redirect for a link request
    POST /api/auth/steam/unlink        - Remove the linked Steam account

Logins and links also refresh the user's FACEIT profile when FACEIT is configured.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from topfrag.auth.jwt import create_access_token, create_link_token, decode_link_token
from topfrag.auth.middleware import get_current_user
from topfrag.auth.steam import build_auth_url, validate_response
from topfrag.core.config import get_config
from topfrag.infra.database import (
    User,
    create_user,
    get_session,
    get_user_by_id,
    get_user_by_steam_id,
    update_user_last_login,
    user_exists,
)
from topfrag.services.faceit_profile import FaceITProfileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/steam", tags=["auth-steam"])


def _get_callback_url(request: Request, path: str) -> str:
    """Build the URL Steam redirects back to.

    Uses X-Forwarded-Proto and X-Forwarded-Host headers if behind a proxy.
    """
    proto = request.headers.get("x-forwarded-proto", request.url.scheme)
    host = request.headers.get("x-forwarded-host", request.url.netloc)
    return f"{proto}://{host}/api/auth/steam/{path}"


def _frontend_redirect(**params: Any) -> RedirectResponse:
    frontend = get_config().steam.frontend_url.rstrip("/")
    query = urlencode({key: value for key, value in params.items() if value is not None})
    return RedirectResponse(url=f"{frontend}/steam-callback?{query}", status_code=status.HTTP_302_FOUND)


async def _refresh_faceit_profile(db: Session, user: User) -> None:
    await run_in_threadpool(FaceITProfileService(db).fetch_and_store, user)


def _new_username(db: Session, steam_id: str) -> str:
    username = f"Player_{steam_id[-4:]}"
    if user_exists(db, username=username):
        username = f"Player_{steam_id}"
    return username


@router.get("/redirect")
async def steam_redirect(request: Request):
    """Redirect user to Steam's OpenID login page."""
    callback_url = _get_callback_url(request, "callback")
    auth_url = build_auth_url(callback_url, get_config().steam.realm)
    logger.info(f"Redirecting to Steam login, callback: {callback_url}")
    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@router.get("/callback")
async def steam_callback(request: Request, db: Session = Depends(get_session)):
    """Handle Steam's OpenID callback after the user authenticates.

    Flow:
    1. Validate the OpenID response with check_authentication
    2. Find the user by Steam64 ID, or create one
    3. Issue a JWT and redirect to the frontend with it
    """
    steam_id = await validate_response(dict(request.query_params))
    if not steam_id:
        logger.warning("Steam OpenID validation failed")
        return _frontend_redirect(error="authentication_failed", message="Steam authentication failed")

    user = get_user_by_steam_id(db, steam_id)
    if user is None:
        user = create_user(db, username=_new_username(db, steam_id), steam_id=steam_id)
        message = "Steam account created successfully"
        logger.info(f"Created new user {user.id} for Steam ID {steam_id}")
    else:
        update_user_last_login(db, user)
        message = "Steam login successful"
        logger.info(f"Existing user {user.id} logged in via Steam")

    await _refresh_faceit_profile(db, user)
    token = create_access_token(user.id, user.email, steam_id)
    return _frontend_redirect(token=token, success="true", message=message)


@router.post("/link")
async def link_steam(request: Request, user: User = Depends(get_current_user)) -> dict[str, Any]:
    """Steam login URL whose callback links the Steam account to this user."""
    if user.steam_id:
        raise HTTPException(status_code=409, detail="User already has a Steam account linked")

    callback_url = f"{_get_callback_url(request, 'link-callback')}?{urlencode({'link': create_link_token(user.id)})}"
    return {
        "message": "Redirect to Steam for account linking",
        "steam_redirect_url": build_auth_url(callback_url, get_config().steam.realm),
    }


@router.get("/link-callback")
async def steam_link_callback(request: Request, db: Session = Depends(get_session)):
    params = dict(request.query_params)
    try:
        user_id = decode_link_token(params.pop("link", ""))
    except ValueError:
        return _frontend_redirect(error="user_not_found", message="User not found")

    user = get_user_by_id(db, user_id)
    if user is None:
        return _frontend_redirect(error="user_not_found", message="User not found")

    steam_id = await validate_response(params)
    if not steam_id:
        return _frontend_redirect(error="authentication_failed", message="Steam authentication failed")

    owner = get_user_by_steam_id(db, steam_id)
    if owner is not None and owner.id != user.id:
        return _frontend_redirect(
            error="steam_already_linked",
            message="This Steam account is already linked to another user",
        )

    user.steam_id = steam_id
    db.commit()
    logger.info(f"Linked Steam ID {steam_id} to user {user.id}")
    await _refresh_faceit_profile(db, user)
    return _frontend_redirect(success="true", message="Steam account linked successfully")


@router.post("/unlink")
async def unlink_steam(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    if not user.steam_id:
        raise HTTPException(status_code=400, detail="No Steam account linked to this user")

    user.steam_id = None
    db.commit()
    logger.info(f"User {user.id} unlinked their Steam account")
    return {"message": "Steam account unlinked successfully"}
