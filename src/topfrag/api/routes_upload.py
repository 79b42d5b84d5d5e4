"""
Demo upload route handlers.

A stored demo is handed to the parser service together with a job uuid;
the parser then reports progress and events back against that job.
Routes are sync and run in the FastAPI threadpool.
"""

import logging
import secrets
import time
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from topfrag.api.shared import RATE_LIMIT_UPLOAD, limiter
from topfrag.auth.api_key import require_api_key
from topfrag.auth.middleware import get_current_user
from topfrag.core.config import get_config
from topfrag.infra.database import GameMatch, User, get_db, get_session
from topfrag.infra.job_store import JobStore
from topfrag.integrations.exceptions import ParserServiceError
from topfrag.integrations.parser_service import ParserServiceConnector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])

CHUNK_SIZE = 1024 * 1024  # 1MB chunks
DEFAULT_STORAGE_DIR = Path.home() / ".topfrag" / "demos"


def storage_dir() -> Path:
    configured = get_config().upload.storage_dir
    directory = Path(configured) if configured else DEFAULT_STORAGE_DIR
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def store_demo(file: UploadFile) -> Path:
    """Write the upload to the storage directory in chunks, enforcing extension and size."""
    upload_config = get_config().upload
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    suffix = Path(file.filename).suffix.lower()
    if suffix not in upload_config.allowed_extensions:
        raise HTTPException(status_code=422, detail=f"The demo must be a .dem file. Got: {file.filename}")

    demo_path = storage_dir() / f"{int(time.time())}_{secrets.token_hex(5)}{suffix}"
    size = 0
    try:
        with demo_path.open("wb") as out:
            while chunk := file.file.read(CHUNK_SIZE):
                size += len(chunk)
                if size > upload_config.max_file_size:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large: {size / (1024 * 1024):.1f}MB",
                    )
                out.write(chunk)
    except HTTPException:
        demo_path.unlink(missing_ok=True)
        raise

    if size == 0:
        demo_path.unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail="Empty file uploaded")
    return demo_path


def hand_to_parser(demo_path: Path, job_uuid: str, jobs: JobStore) -> None:
    """Upload to the parser; on failure the job is marked failed and the request answers 503/502."""
    try:
        ParserServiceConnector().upload_demo(demo_path, job_uuid)
    except ParserServiceError as e:
        logger.error(f"Parser upload failed for job {job_uuid}: {e}")
        jobs.mark_failed(job_uuid, str(e), error_code="parser_unavailable" if e.status_code == 503 else "upload_failed")
        status_code = 503 if e.status_code == 503 else 502
        raise HTTPException(status_code=status_code, detail="Demo parser service is unavailable") from e


@router.post("/user/upload/demo")
@limiter.limit(RATE_LIMIT_UPLOAD)
def user_demo(
    request: Request,
    demo: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    demo_path = store_demo(demo)

    match = GameMatch(uploaded_by=user.id)
    db.add(match)
    db.commit()

    jobs = JobStore(get_db())
    job = jobs.create_job(user_id=user.id, match_id=match.id, demo_path=demo_path)
    logger.info(f"User {user.id} uploaded {demo.filename} as job {job.uuid}")

    hand_to_parser(demo_path, job.uuid, jobs)
    return {"success": True, "message": "Demo process received", "job_id": job.uuid}


@router.get("/user/upload/in-progress-jobs")
def in_progress_jobs(user: User = Depends(get_current_user)) -> dict[str, Any]:
    jobs = JobStore(get_db()).in_progress_jobs(user.id)
    return {"success": True, "jobs": [job.to_dict() for job in jobs]}


@router.post("/upload/demo", dependencies=[Depends(require_api_key)])
@limiter.limit(RATE_LIMIT_UPLOAD)
def service_demo(request: Request, demo: UploadFile = File(...)) -> dict[str, Any]:
    """Upload from a trusted service: the job has no owning user."""
    demo_path = store_demo(demo)

    jobs = JobStore(get_db())
    job = jobs.create_job(demo_path=demo_path)
    logger.info(f"Service upload of {demo.filename} as job {job.uuid}")

    hand_to_parser(demo_path, job.uuid, jobs)
    return {"success": True, "message": "Demo process received", "job_id": job.uuid}
