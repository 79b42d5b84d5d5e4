"""
Authentication route handlers.

Endpoints:
- POST /api/auth/register - register a new user, returns JWT
- POST /api/auth/login - login with email/password, returns JWT
- GET  /api/auth/user - return current user from token
- POST /api/auth/logout - revoke the presented token
- POST /api/auth/change-password
- POST /api/auth/change-username
- POST /api/auth/change-email
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from topfrag.api.shared import RATE_LIMIT_AUTH, limiter
from topfrag.auth.jwt import create_access_token, revoke_token
from topfrag.auth.middleware import get_current_user, get_token_claims
from topfrag.auth.passwords import hash_password, verify_password
from topfrag.infra.database import (
    User,
    create_user,
    get_session,
    get_user_by_email,
    update_user_last_login,
    user_exists,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN, description="Email address")
    username: str = Field(..., min_length=3, max_length=100, description="Username")
    password: str = Field(..., min_length=8, description="Password (min 8 chars)")


class LoginRequest(BaseModel):
    email: str = Field(..., description="Email address")
    password: str = Field(..., description="Password")


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)


class ChangeUsernameRequest(BaseModel):
    new_username: str = Field(..., min_length=3, max_length=100)


class ChangeEmailRequest(BaseModel):
    new_email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)


def _issue_token(user: User) -> str:
    try:
        return create_access_token(user.id, user.email, user.steam_id)
    except RuntimeError as e:
        logger.warning(f"Auth not configured: {e}")
        raise HTTPException(status_code=503, detail="Auth not configured") from e


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMIT_AUTH)
async def register(
    request: Request,
    body: RegisterRequest,
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    """Register a new user account."""
    if user_exists(db, email=body.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    if user_exists(db, username=body.username):
        raise HTTPException(status_code=409, detail="Username already taken")

    user = create_user(
        db=db,
        username=body.username,
        email=body.email,
        password_hash=hash_password(body.password),
    )
    token = _issue_token(user)

    logger.info(f"User registered: {user.email} (id={user.id})")
    return {"message": "User registered successfully", "user": user.to_dict(), "token": token}


@router.post("/auth/login")
@limiter.limit(RATE_LIMIT_AUTH)
async def login(
    request: Request,
    body: LoginRequest,
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    """Authenticate with email/password and return a JWT."""
    user = get_user_by_email(db, body.email)
    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    update_user_last_login(db, user)
    token = _issue_token(user)

    logger.info(f"User logged in: {user.email} (id={user.id})")
    return {"message": "User login successfully", "user": user.to_dict(), "token": token}


@router.get("/auth/user")
async def current_user(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"user": user.to_dict()}


@router.post("/auth/logout")
async def logout(
    claims: dict = Depends(get_token_claims),
    user: User = Depends(get_current_user),
) -> dict[str, str]:
    """Revoke the presented token; other sessions stay valid."""
    revoke_token(claims)
    logger.info(f"User {user.id} logged out")
    return {"message": "User logout successfully"}


@router.post("/auth/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, str]:
    if not verify_password(body.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    user.password_hash = hash_password(body.new_password)
    db.commit()
    logger.info(f"User {user.id} changed password")
    return {"message": "Password changed successfully"}


@router.post("/auth/change-username")
async def change_username(
    body: ChangeUsernameRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    if user.username == body.new_username:
        raise HTTPException(status_code=400, detail="New username must be different from current username")
    if user_exists(db, username=body.new_username, exclude_user_id=user.id):
        raise HTTPException(status_code=409, detail="Username already taken")

    user.username = body.new_username
    db.commit()
    return {"message": "Username changed successfully", "user": user.to_dict()}


@router.post("/auth/change-email")
async def change_email(
    body: ChangeEmailRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    if user.email == body.new_email:
        raise HTTPException(status_code=400, detail="New email must be different from current email")
    if user_exists(db, email=body.new_email, exclude_user_id=user.id):
        raise HTTPException(status_code=409, detail="Email already registered")

    user.email = body.new_email
    db.commit()
    return {"message": "Email changed successfully", "user": user.to_dict()}
