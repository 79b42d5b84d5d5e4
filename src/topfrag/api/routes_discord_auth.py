"""
Discord OAuth2 login and account linking routes.

Endpoints:
    GET  /api/auth/discord/redirect - Redirect user to Discord's consent screen
    GET  /api/auth/discord/callback - Log in, create or link the account, then redirect to the frontend
    POST /api/auth/discord/link     - Start linking Discord to the signed-in account
    POST /api/auth/discord/unlink   - Remove the linked Discord account
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from topfrag.auth.discord_oauth import DiscordIdentity, build_authorize_url, fetch_identity, is_configured
from topfrag.auth.jwt import create_access_token, create_link_token, decode_link_token
from topfrag.auth.middleware import get_current_user
from topfrag.core.config import get_config
from topfrag.infra.database import (
    User,
    create_user,
    get_session,
    get_user_by_discord_id,
    get_user_by_id,
    update_user_last_login,
    user_exists,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/discord", tags=["auth-discord"])

LINK_PURPOSE = "discord_link"


def _redirect_uri(request: Request) -> str:
    configured = get_config().discord.redirect_uri
    if configured:
        return configured
    proto = request.headers.get("x-forwarded-proto", request.url.scheme)
    host = request.headers.get("x-forwarded-host", request.url.netloc)
    return f"{proto}://{host}/api/auth/discord/callback"


def _frontend_redirect(**params: Any) -> RedirectResponse:
    frontend = get_config().steam.frontend_url.rstrip("/")
    query = urlencode({key: value for key, value in params.items() if value is not None})
    return RedirectResponse(url=f"{frontend}/discord-callback?{query}", status_code=status.HTTP_302_FOUND)


def _new_username(db: Session, identity: DiscordIdentity) -> str:
    username = identity.display_name
    if user_exists(db, username=username):
        username = f"{username}_{identity.id[-4:]}"
    if user_exists(db, username=username):
        username = f"{identity.display_name}_{identity.id}"
    return username


@router.get("/redirect")
async def discord_redirect(request: Request):
    config = get_config().discord
    if not is_configured(config):
        logger.error("Discord OAuth requested but client id/secret are not configured")
        return _frontend_redirect(
            error="discord_not_configured",
            message="Discord authentication is not configured. Please contact the administrator.",
        )
    return RedirectResponse(url=build_authorize_url(config, _redirect_uri(request)), status_code=status.HTTP_302_FOUND)


@router.get("/callback")
async def discord_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_session),
):
    """Handle Discord's redirect.

    A ``state`` holding a link token links Discord to that user. Otherwise
    the Discord id logs in its user, or a new account is created for it.
    """
    if error or not code:
        logger.warning(f"Discord OAuth callback without a code: {error}")
        return _frontend_redirect(error="authentication_failed", message="Discord authentication failed")

    identity = await fetch_identity(code, _redirect_uri(request), get_config().discord)
    if identity is None:
        return _frontend_redirect(error="authentication_failed", message="Discord authentication failed")

    if state:
        return _link_account(db, state, identity)

    try:
        user = get_user_by_discord_id(db, identity.id)
        if user is not None:
            update_user_last_login(db, user)
            message = "Discord login successful"
            logger.info(f"Existing user {user.id} logged in via Discord")
        else:
            email = identity.email if identity.email and not user_exists(db, email=identity.email) else None
            user = create_user(db, username=_new_username(db, identity), email=email, discord_id=identity.id)
            message = "Discord account created successfully"
            logger.info(f"Created new user {user.id} for Discord ID {identity.id}")
    except SQLAlchemyError as e:
        logger.error(f"Discord login failed for Discord ID {identity.id}: {e}")
        return _frontend_redirect(error="authentication_failed", message="Discord authentication failed")

    token = create_access_token(user.id, user.email, user.steam_id)
    return _frontend_redirect(token=token, success="true", message=message)


def _link_account(db: Session, state: str, identity: DiscordIdentity) -> RedirectResponse:
    try:
        user_id = decode_link_token(state, purpose=LINK_PURPOSE)
    except ValueError:
        return _frontend_redirect(error="user_not_found", message="User not found")

    user = get_user_by_id(db, user_id)
    if user is None:
        return _frontend_redirect(error="user_not_found", message="User not found")

    owner = get_user_by_discord_id(db, identity.id)
    if owner is not None and owner.id != user.id:
        return _frontend_redirect(
            error="discord_already_linked",
            message="This Discord account is already linked to another user",
        )

    user.discord_id = identity.id
    db.commit()
    logger.info(f"Linked Discord ID {identity.id} to user {user.id}")
    return _frontend_redirect(success="true", message="Discord account linked successfully")


@router.post("/link")
async def link_discord(request: Request, user: User = Depends(get_current_user)) -> dict[str, Any]:
    """Discord consent URL whose callback links the Discord account to this user."""
    if user.discord_id:
        raise HTTPException(status_code=409, detail="User already has a Discord account linked")

    config = get_config().discord
    if not is_configured(config):
        raise HTTPException(status_code=500, detail="Discord authentication is not configured")

    state = create_link_token(user.id, purpose=LINK_PURPOSE)
    return {
        "message": "Redirect to Discord for account linking",
        "discord_redirect_url": build_authorize_url(config, _redirect_uri(request), state=state),
    }


@router.post("/unlink")
async def unlink_discord(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    if not user.discord_id:
        raise HTTPException(status_code=400, detail="No Discord account linked to this user")

    user.discord_id = None
    db.commit()
    logger.info(f"User {user.id} unlinked their Discord account")
    return {"message": "Discord account unlinked successfully"}
