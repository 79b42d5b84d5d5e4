"""ed25519 verification of Discord interaction webhooks (PyNaCl)."""

import logging

from fastapi import Request
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from topfrag.auth.errors import AuthRejected
from topfrag.core.config import get_config

logger = logging.getLogger(__name__)

PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64


def verify_ed25519(public_key_hex: str, signature_hex: str, message: bytes) -> bool:
    """True when signature_hex is a valid signature of message under public_key_hex."""
    try:
        public_key = bytes.fromhex(public_key_hex.strip())
        signature = bytes.fromhex(signature_hex.strip())
    except ValueError:
        logger.warning("Discord signature or public key is not valid hex")
        return False

    if len(public_key) != PUBLIC_KEY_BYTES or len(signature) != SIGNATURE_BYTES:
        logger.warning(
            f"Discord key/signature length mismatch: key={len(public_key)} sig={len(signature)}"
        )
        return False

    try:
        VerifyKey(public_key).verify(message, signature)
    except BadSignatureError:
        return False
    return True


async def verify_discord_signature(request: Request) -> bytes:
    """FastAPI dependency: verify X-Signature-Ed25519 over timestamp + raw body.

    Returns the raw body so the route can parse exactly what was signed.
    """
    public_key = get_config().discord.public_key
    if not public_key:
        raise AuthRejected(500, {"error": "Discord configuration missing"})

    signature = request.headers.get("X-Signature-Ed25519")
    timestamp = request.headers.get("X-Signature-Timestamp")
    if not signature or not timestamp:
        logger.warning("Discord webhook without signature headers")
        raise AuthRejected(401, {"error": "Missing signature headers"})

    body = await request.body()
    if not verify_ed25519(public_key, signature, timestamp.encode() + body):
        # Discord deliberately sends bad signatures to check endpoints reject them
        logger.info("Rejected Discord webhook with invalid signature")
        raise AuthRejected(401, {"error": "Invalid signature"})
    return body
