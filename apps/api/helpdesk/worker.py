"""
Background worker for channel sync and webhook ingestion jobs.

Usage:
    python -m helpdesk.worker

The worker polls for pending jobs and processes them. It also enqueues
email channel syncs whose interval has elapsed, at most once per
SYNC_SWEEP_INTERVAL_SECONDS. Run it as a separate process.
"""

import asyncio
import logging
import time

from helpdesk.core.config import settings
from helpdesk.core.structured_logging import build_log_context
from helpdesk.db.session import SessionLocal
from helpdesk.jobs.registry import resolve_job_handler
from helpdesk.services import channel_sync_service, job_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def process_job(db, job) -> None:
    """Process a single job based on its type."""
    logger.info(
        "Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts
    )
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


async def run_pending_jobs(db, limit: int | None = None) -> int:
    """Run one batch of due jobs. Returns how many were picked up."""
    jobs = job_service.get_pending_jobs(db, limit=limit or settings.WORKER_BATCH_SIZE)
    if jobs:
        logger.info("Found %s pending jobs", len(jobs))

    for job in jobs:
        try:
            job_service.mark_job_running(db, job)
            await process_job(db, job)
            job_service.mark_job_completed(db, job)
            logger.info("Job %s completed successfully", job.id)
        except Exception as e:
            db.rollback()
            retryable = getattr(e, "retryable", True)
            job_service.mark_job_failed(
                db, job, f"{type(e).__name__}: {e}", retryable=retryable
            )
            logger.error(
                "Job %s failed: %s",
                job.id,
                type(e).__name__,
                extra=build_log_context(
                    org_id=str(job.organization_id),
                    job_id=str(job.id),
                    route="worker",
                    method="background",
                ),
            )
    return len(jobs)


def sweep_due_channels(db) -> int:
    created = channel_sync_service.schedule_due_channel_syncs(db)
    if created:
        logger.info("Scheduled %s email channel syncs", created)
    return created


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
    )

    last_sweep = 0.0
    while True:
        with SessionLocal() as db:
            try:
                if time.monotonic() - last_sweep >= settings.SYNC_SWEEP_INTERVAL_SECONDS:
                    sweep_due_channels(db)
                    last_sweep = time.monotonic()
                await run_pending_jobs(db)
            except Exception as e:
                db.rollback()
                logger.error("Error in worker loop: %s", e)

        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
