"""Password hashing and verification using bcrypt."""

import bcrypt


def hash_password(plain: str) -> str:
    """Hash a plaintext password with bcrypt."""
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str | None) -> bool:
    """Verify a plaintext password against a bcrypt hash. Steam-only accounts have none."""
    if not hashed:
        return False
    return bcrypt.checkpw(plain.encode(), hashed.encode())
