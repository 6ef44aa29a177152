from __future__ import annotations

from datetime import UTC, datetime
import logging
from uuid import UUID

from rq.job import Job as RQJob

from clips.config import LifecycleConfig
from clips.sweep import expire_clips
from db.models import Job
from db.session import SessionLocal
from storage.s3 import get_object_store

logger = logging.getLogger(__name__)

CLEANUP_JOB_TYPE = "clip_expiry_sweep"


def _update_job(
    session,
    job_id: UUID,
    status: str,
    result: dict | None = None,
    error: str | None = None,
) -> None:
    job = session.get(Job, job_id)
    if job is None:
        raise RuntimeError(f"Job not found: {job_id}")
    now = datetime.now(UTC)
    job.status = status
    if status == "running":
        job.started_at = now
    elif status in {"succeeded", "failed"}:
        job.finished_at = now
    if result is not None:
        job.result = result
    if error is not None:
        job.error_payload = {"message": error}
    job.updated_at = now
    session.add(job)


def rq_on_failure(job: RQJob, connection, exc_type, exc_value, traceback) -> None:  # type: ignore[no-untyped-def]
    session = SessionLocal()
    try:
        job_id = job.args[0] if job.args else None
        if job_id is None:
            return
        _update_job(session, job_id, "failed", error=str(exc_value))
        session.commit()
    finally:
        session.close()


def rq_on_success(job: RQJob, connection, result, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
    session = SessionLocal()
    try:
        job_id = job.args[0] if job.args else None
        if job_id is None:
            return
        _update_job(session, job_id, "succeeded")
        session.commit()
    finally:
        session.close()


def expire_clips_job(job_id: UUID, batch_size: int | None = None, reschedule: bool = True) -> dict:
    config = LifecycleConfig.from_env()
    session = SessionLocal()
    try:
        _update_job(session, job_id, "running")
        session.commit()
    finally:
        session.close()

    try:
        report = expire_clips(
            SessionLocal,
            get_object_store(),
            batch_size=batch_size or config.sweep_batch_size,
        )
        result = report.as_dict()
        session = SessionLocal()
        try:
            _update_job(session, job_id, "succeeded", result=result)
            session.commit()
        finally:
            session.close()
        return result
    finally:
        # Reschedule even when this run failed.
        if reschedule:
            from pipeline.queue import enqueue_cleanup

            scheduled = enqueue_cleanup(batch_size, delay_s=config.cleanup_interval_s)
            logger.info("next expiry sweep scheduled: %s", scheduled["rq_id"])
