"""FastAPI authentication dependencies: extract and verify the JWT, load the user."""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from topfrag.auth.jwt import decode_token
from topfrag.infra.database import User, get_session, get_user_by_id


def _bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.removeprefix("Bearer ").strip() or None


def get_token_claims(request: Request) -> dict:
    """Claims of the request's Bearer token. Raises 401 if missing or invalid."""
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_token(token)
    except (ValueError, RuntimeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_user(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_session),
) -> User:
    """Resolve the authenticated user. Raises 401 if the token names no user."""
    user_id = claims.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    user = get_user_by_id(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_current_user_optional(
    request: Request,
    db: Session = Depends(get_session),
) -> User | None:
    """Like get_current_user, but None instead of 401."""
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        claims = decode_token(token)
    except (ValueError, RuntimeError):
        return None
    user_id = claims.get("user_id")
    return get_user_by_id(db, user_id) if user_id else None
