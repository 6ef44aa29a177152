import os
from datetime import UTC, datetime, timedelta

from redis import Redis
from rq import Queue

from db.models import Job
from db.session import SessionLocal
from pipeline.jobs import (
    CLEANUP_JOB_TYPE,
    expire_clips_job,
    rq_on_failure,
    rq_on_success,
)


def _redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def _cleanup_queue_name() -> str:
    return os.getenv("CLIP_CLEANUP_QUEUE", "default")


def _timeout_seconds() -> int:
    return int(os.getenv("RQ_CLEANUP_TIMEOUT", "900"))


def get_redis() -> Redis:
    return Redis.from_url(_redis_url())


def get_queue(name: str = "default") -> Queue:
    return Queue(name, connection=get_redis())


def enqueue_cleanup(batch_size: int | None = None, delay_s: int | None = None) -> dict:
    """Queue one expiry sweep run, optionally ``delay_s`` seconds from now.

    Delayed runs need a worker started with the RQ scheduler enabled.
    """
    session = SessionLocal()
    try:
        db_job = Job(
            job_type=CLEANUP_JOB_TYPE,
            status="queued",
            payload={"batch_size": batch_size, "delay_s": delay_s or 0},
            queued_at=datetime.now(UTC),
        )
        session.add(db_job)
        session.commit()
        session.refresh(db_job)

        queue = get_queue(_cleanup_queue_name())
        options = {
            "job_timeout": _timeout_seconds(),
            "on_failure": rq_on_failure,
            "on_success": rq_on_success,
        }
        if delay_s:
            rq_job = queue.enqueue_in(
                timedelta(seconds=delay_s),
                expire_clips_job,
                db_job.id,
                batch_size,
                **options,
            )
        else:
            rq_job = queue.enqueue(expire_clips_job, db_job.id, batch_size, **options)

        payload = dict(db_job.payload or {})
        payload["rq_id"] = rq_job.id
        db_job.payload = payload
        session.commit()

        return {
            "job_id": db_job.id,
            "rq_id": rq_job.id,
            "delay_s": delay_s or 0,
        }
    finally:
        session.close()
