"""Discord interactions webhook. Every request is signature-checked before it is parsed."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from topfrag.auth.discord_signature import verify_discord_signature
from topfrag.infra.cache import get_cache_manager
from topfrag.infra.database import get_session
from topfrag.services.discord import HANDLED_TYPES, PING, PONG, DiscordService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/discord", tags=["discord"])


@router.post("/webhook")
def webhook(
    body: bytes = Depends(verify_discord_signature),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    interaction_type = payload.get("type") if isinstance(payload, dict) else None
    if interaction_type == PING:
        return {"type": PONG}
    if interaction_type in HANDLED_TYPES:
        return DiscordService(db, cache=get_cache_manager()).handle_interaction(payload)

    logger.warning(f"Unsupported Discord interaction type: {interaction_type}")
    raise HTTPException(status_code=400, detail="Unsupported interaction type")
