"""
Parser service surface: event batches and job callbacks.

All endpoints require the shared API key. Responses carry ``success`` and
``message`` so the parser can log what happened to each batch.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from topfrag.auth.api_key import require_api_key
from topfrag.core.enums import MatchEventType, ProcessingStatus
from topfrag.infra.cache import get_cache_manager
from topfrag.infra.database import get_db, get_session
from topfrag.infra.job_store import JobNotFoundError, JobStore
from topfrag.services.clans import ClanService
from topfrag.services.dashboard import DashboardService
from topfrag.services.discord import DiscordService
from topfrag.services.ingestion import DemoParserService, MatchNotFoundError
from topfrag.services.player_card import PlayerCardService
from topfrag.services.ranks import RanksService
from topfrag.services.utility_analysis import match_players

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/job", tags=["parser"], dependencies=[Depends(require_api_key)])


class EventBatch(BaseModel):
    data: list[dict[str, Any]] = Field(..., min_length=1)


class ProgressCallback(BaseModel):
    job_id: str
    status: ProcessingStatus
    progress: int = Field(..., ge=0, le=100)
    current_step: str | None = None
    error_message: str | None = None
    step_progress: int | None = Field(None, ge=0, le=100)
    total_steps: int | None = Field(None, ge=1)
    current_step_num: int | None = Field(None, ge=1)
    start_time: str | None = None
    last_update_time: str | None = None
    error_code: str | None = None
    context: dict[str, Any] | None = None
    is_final: bool | None = None
    match: dict[str, Any] | None = None
    players: list[dict[str, Any]] | None = None


class CompletionCallback(BaseModel):
    job_id: str
    status: ProcessingStatus
    error_message: str | None = None
    error_code: str | None = None


def _validate_round_events(event_name: str, events: list[dict[str, Any]]) -> str | None:
    try:
        if not MatchEventType(event_name).is_round_event:
            return None
    except ValueError:
        return None
    for index, event in enumerate(events):
        round_number = event.get("round_number")
        if not isinstance(round_number, int) or round_number < 1:
            return f"data.{index}.round_number must be an integer of at least 1"
        tick = event.get("tick_timestamp")
        if not isinstance(tick, int) or tick < 0:
            return f"data.{index}.tick_timestamp must be a non-negative integer"
    return None


def _service() -> DemoParserService:
    return DemoParserService(get_db(), get_cache_manager())


@router.post("/{job_id}/event/{event_name}")
def handle_event(job_id: str, event_name: str, body: EventBatch) -> JSONResponse:
    base = {"job_id": job_id, "event_name": event_name}
    invalid = _validate_round_events(event_name, body.data)
    if invalid:
        return JSONResponse(status_code=422, content={"success": False, "message": invalid, **base})

    try:
        _service().create_match_event(job_id, body.data, event_name)
    except (JobNotFoundError, MatchNotFoundError) as e:
        logger.warning(str(e))
        return JSONResponse(status_code=404, content={"success": False, "message": str(e), **base})
    except Exception as e:
        logger.error(f"Failed to process {event_name} event for job {job_id}: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Failed to process event", "error": str(e), **base},
        )

    return JSONResponse(content={"success": True, "message": "Event processed successfully", **base})


@router.post("/callback/progress")
def progress_callback(body: ProgressCallback) -> JSONResponse:
    data = body.model_dump(exclude={"match", "players"})
    data["status"] = body.status.value
    service = _service()
    try:
        service.update_processing_job(body.job_id, data)
        if body.match is not None:
            service.create_match_with_players(body.job_id, body.match, body.players)
    except JobNotFoundError as e:
        logger.warning(str(e))
        return JSONResponse(status_code=404, content={"success": False, "message": str(e), "job_id": body.job_id})
    except Exception as e:
        logger.error(f"Failed to apply progress for job {body.job_id}: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Failed to update job progress", "job_id": body.job_id},
        )

    return JSONResponse(content={"success": True, "message": "Job progress updated", "job_id": body.job_id})


def _invalidate_player_views(db: Session, match_id: int) -> None:
    """A finished match changes its players' dashboards, ranks and cards."""
    cache = get_cache_manager()
    for player in match_players(db, match_id):
        steam_id = player["steam_id"]
        DashboardService(db, cache).invalidate(steam_id)
        RanksService(db, cache).invalidate(steam_id)
        PlayerCardService(db, cache).invalidate(steam_id)


@router.post("/callback/completion")
def completion_callback(body: CompletionCallback, db: Session = Depends(get_session)) -> JSONResponse:
    data = body.model_dump()
    data["status"] = body.status.value
    try:
        job = _service().complete_job(body.job_id, data)
    except JobNotFoundError as e:
        logger.warning(str(e))
        return JSONResponse(status_code=404, content={"success": False, "message": str(e), "job_id": body.job_id})

    if job.processing_status == ProcessingStatus.COMPLETED.value and job.match_id is not None:
        discord = DiscordService(db)
        ClanService(db).process_match(job.match_id, notify=discord.send_match_report)
        _invalidate_player_views(db, job.match_id)

    JobStore(get_db()).discard_demo(job)

    return JSONResponse(content={"success": True, "message": "Job completed", "job_id": body.job_id})
