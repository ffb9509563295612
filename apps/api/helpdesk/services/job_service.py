"""Job service - business logic for background job scheduling and processing."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.db.enums import JobStatus, JobType
from helpdesk.db.models import Job


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def schedule_job(
    db: Session,
    org_id: UUID,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided, duplicate jobs with same key will fail
    with IntegrityError (caller should catch and handle).
    """
    job = Job(
        organization_id=org_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or _utcnow(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Get pending jobs that are due to run.

    Returns jobs where status='pending' and run_at <= now, ordered by run_at.
    """
    now = _utcnow()
    return (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .all()
    )


def has_active_job(db: Session, job_type: JobType, payload_key: str, payload_value: str) -> bool:
    """True when a pending or running job of this type targets the same entity."""
    jobs = (
        db.query(Job)
        .filter(
            Job.job_type == job_type.value,
            Job.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]),
        )
        .all()
    )
    return any(str((job.payload or {}).get(payload_key)) == payload_value for job in jobs)


def mark_job_running(db: Session, job: Job) -> Job:
    """Mark a job as running (increment attempts)."""
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(db: Session, job: Job) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = _utcnow()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str, *, retryable: bool = True) -> Job:
    """
    Mark a job as failed.

    Retryable failures go back to pending with linear backoff while
    attempts < max_attempts; everything else fails permanently.
    """
    job.last_error = error
    if retryable and job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = _utcnow() + timedelta(
            seconds=settings.JOB_RETRY_BACKOFF_SECONDS * max(job.attempts, 1)
        )
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job
