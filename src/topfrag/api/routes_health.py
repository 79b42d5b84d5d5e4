"""Health check: the database plus the outside services the API depends on."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from topfrag.infra.database import get_db
from topfrag.integrations.exceptions import ParserServiceError
from topfrag.integrations.parser_service import ParserServiceConnector
from topfrag.integrations.steam_api import SteamAPIConnector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


def check_database() -> dict[str, Any]:
    try:
        get_db().check_connection()
        return {"status": "healthy", "message": "Database is reachable"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "message": "Database is not reachable", "error": str(e)}


def check_parser_service() -> dict[str, Any]:
    try:
        ParserServiceConnector().check_health()
        return {"status": "healthy", "message": "Parser service is responding"}
    except ParserServiceError as e:
        return {"status": "unhealthy", "message": "Parser service is not responding", "error": str(e)}


def check_steam_api() -> dict[str, Any]:
    if SteamAPIConnector().check_health():
        return {"status": "healthy", "message": "Steam API is responding"}
    return {"status": "unhealthy", "message": "Steam API is not responding"}


@router.get("/health")
def health() -> dict[str, Any]:
    """Always 200; status is degraded when any service is unhealthy."""
    services = {
        "database": check_database(),
        "parser_service": check_parser_service(),
        "steam_api": check_steam_api(),
    }
    healthy = all(service["status"] == "healthy" for service in services.values())
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": services,
    }
