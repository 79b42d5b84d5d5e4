"""
Demo processing job store.

Tracks each demo handed to the external parser: status, progress
percentage, current step and error details. The parser reports progress
through authenticated callbacks, which land in update_processing_job().
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import select

from topfrag.core.enums import ProcessingStatus
from topfrag.infra.database import DatabaseManager, DemoProcessingJob, _utc_now

logger = logging.getLogger(__name__)

# Callback fields copied onto the job only when the parser sends them
OPTIONAL_JOB_FIELDS = (
    "error_message",
    "step_progress",
    "total_steps",
    "current_step_num",
    "start_time",
    "last_update_time",
    "error_code",
    "context",
    "is_final",
)

DATETIME_FIELDS = ("start_time", "last_update_time")


class JobNotFoundError(Exception):
    """No DemoProcessingJob exists with the given uuid."""

    def __init__(self, job_uuid: str):
        self.job_uuid = job_uuid
        super().__init__(f"Job not found: {job_uuid}")


def _parse_datetime(value: Any) -> Any:
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


class JobStore:
    """
    Persistent job tracking on top of the DatabaseManager.

    Each call opens and closes its own session; returned jobs are detached
    but fully loaded.
    """

    def __init__(self, db_manager: DatabaseManager | None = None):
        """
        Initialize job store.

        Args:
            db_manager: Optional DatabaseManager instance. If None, uses global instance.
        """
        if db_manager is None:
            from topfrag.infra.database import get_db

            db_manager = get_db()
        self.db = db_manager

    def create_job(
        self,
        user_id: int | None = None,
        match_id: int | None = None,
        demo_path: Path | str | None = None,
    ) -> DemoProcessingJob:
        """Create a pending job with 0% progress, remembering where its demo is stored."""
        session = self.db.get_session()
        try:
            job = DemoProcessingJob(
                uuid=str(uuid.uuid4()),
                user_id=user_id,
                match_id=match_id,
                demo_path=str(demo_path) if demo_path else None,
                processing_status=ProcessingStatus.PENDING.value,
                progress_percentage=0,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            logger.info(f"Created job {job.uuid} (user={user_id}, match={match_id})")
            return job
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to create job: {e}")
            raise
        finally:
            session.close()

    def get_job(self, job_uuid: str) -> DemoProcessingJob | None:
        session = self.db.get_session()
        try:
            return session.execute(
                select(DemoProcessingJob).where(DemoProcessingJob.uuid == job_uuid)
            ).scalar_one_or_none()
        finally:
            session.close()

    def update_processing_job(
        self, job_uuid: str, data: dict[str, Any], is_completed: bool = False
    ) -> DemoProcessingJob:
        """
        Apply a progress or completion callback to a job.

        Args:
            job_uuid: Job UUID
            data: Callback payload (status, progress, current_step and optional fields)
            is_completed: Force the job to completed / 100%

        Returns:
            The updated job

        Raises:
            JobNotFoundError: If no job has this uuid
        """
        session = self.db.get_session()
        try:
            job = session.execute(
                select(DemoProcessingJob).where(DemoProcessingJob.uuid == job_uuid)
            ).scalar_one_or_none()
            if job is None:
                raise JobNotFoundError(job_uuid)

            if is_completed:
                job.processing_status = ProcessingStatus.COMPLETED.value
                job.progress_percentage = 100
                job.completed_at = _utc_now()
                job.current_step = data.get("current_step") or "Completed"
            else:
                if data.get("status") is not None:
                    job.processing_status = str(data["status"])
                if data.get("progress") is not None:
                    job.progress_percentage = int(data["progress"])
                if data.get("current_step") is not None:
                    job.current_step = data["current_step"]

            for field_name in OPTIONAL_JOB_FIELDS:
                if data.get(field_name) is None:
                    continue
                value = data[field_name]
                if field_name in DATETIME_FIELDS:
                    value = _parse_datetime(value)
                setattr(job, field_name, value)

            session.commit()
            session.refresh(job)
            logger.info(
                f"Job {job_uuid} -> {job.processing_status} ({job.progress_percentage}%)"
                f"{': ' + job.current_step if job.current_step else ''}"
            )
            return job
        except JobNotFoundError:
            session.rollback()
            logger.warning(f"Progress update for unknown job {job_uuid}")
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to update job {job_uuid}: {e}")
            raise
        finally:
            session.close()

    def mark_failed(self, job_uuid: str, error_message: str, error_code: str | None = None) -> DemoProcessingJob:
        """Record a failure without touching progress and drop the stored demo."""
        job = self.update_processing_job(
            job_uuid,
            {
                "status": ProcessingStatus.FAILED.value,
                "error_message": error_message,
                "error_code": error_code,
                "is_final": True,
            },
        )
        self.discard_demo(job)
        return job

    def discard_demo(self, job: DemoProcessingJob) -> None:
        """Delete the job's stored demo file, if it still has one on disk."""
        if not job.demo_path:
            return
        try:
            Path(job.demo_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete demo {job.demo_path} for job {job.uuid}: {e}")
            return
        logger.info(f"Deleted demo {job.demo_path} for job {job.uuid}")

    def attach_match(self, job_uuid: str, match_id: int) -> None:
        session = self.db.get_session()
        try:
            job = session.execute(
                select(DemoProcessingJob).where(DemoProcessingJob.uuid == job_uuid)
            ).scalar_one_or_none()
            if job is None:
                raise JobNotFoundError(job_uuid)
            job.match_id = match_id
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def in_progress_jobs(self, user_id: int) -> list[DemoProcessingJob]:
        """The user's jobs that have not reached 100% / completed, newest first."""
        session = self.db.get_session()
        try:
            query = (
                select(DemoProcessingJob)
                .where(
                    DemoProcessingJob.user_id == user_id,
                    DemoProcessingJob.progress_percentage != 100,
                    DemoProcessingJob.processing_status != ProcessingStatus.COMPLETED.value,
                )
                .order_by(DemoProcessingJob.created_at.desc(), DemoProcessingJob.id.desc())
            )
            return list(session.execute(query).scalars())
        finally:
            session.close()
