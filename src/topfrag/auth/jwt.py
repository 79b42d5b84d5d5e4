"""JWT token creation, verification and revocation using python-jose."""

import threading
import uuid
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from topfrag.core.config import get_config

# jti values of tokens revoked by logout, with their expiry
_revoked: dict[str, datetime] = {}
_revoked_lock = threading.Lock()


def _settings() -> tuple[str, str, int]:
    auth = get_config().auth
    if not auth.jwt_secret:
        raise RuntimeError("JWT_SECRET environment variable not set")
    return auth.jwt_secret, auth.jwt_algorithm, auth.jwt_expiry_hours


def create_access_token(user_id: int, email: str | None = None, steam_id: str | None = None) -> str:
    """Create a signed JWT access token."""
    secret, algorithm, expiry_hours = _settings()
    payload = {
        "user_id": user_id,
        "email": email,
        "steam_id": steam_id,
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(UTC) + timedelta(hours=expiry_hours),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises ValueError on failure or revocation."""
    secret, algorithm, _ = _settings()
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as e:
        raise ValueError(f"Invalid token: {e}") from e
    if is_revoked(claims.get("jti")):
        raise ValueError("Invalid token: revoked")
    return claims


def revoke_token(claims: dict) -> None:
    """Revoke a token by its jti until it would have expired anyway."""
    jti = claims.get("jti")
    if not jti:
        return
    expires = datetime.fromtimestamp(claims.get("exp", 0), UTC)
    now = datetime.now(UTC)
    with _revoked_lock:
        for stale in [key for key, exp in _revoked.items() if exp <= now]:
            del _revoked[stale]
        _revoked[jti] = expires


def is_revoked(jti: str | None) -> bool:
    if not jti:
        return False
    with _revoked_lock:
        return jti in _revoked


def clear_revocations() -> None:
    with _revoked_lock:
        _revoked.clear()


def create_link_token(user_id: int, expiry_minutes: int = 15, purpose: str = "steam_link") -> str:
    """Short-lived token naming the user an account-link callback belongs to."""
    secret, algorithm, _ = _settings()
    payload = {
        "user_id": user_id,
        "purpose": purpose,
        "exp": datetime.now(UTC) + timedelta(minutes=expiry_minutes),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_link_token(token: str, purpose: str = "steam_link") -> int:
    """User id of a link token. Raises ValueError when invalid, expired or not a link token."""
    secret, algorithm, _ = _settings()
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as e:
        raise ValueError(f"Invalid link token: {e}") from e
    if claims.get("purpose") != purpose or not claims.get("user_id"):
        raise ValueError("Invalid link token")
    return int(claims["user_id"])
