"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from helpdesk.db.enums import JobType
from helpdesk.jobs.handlers import channels

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.EMAIL_CHANNEL_SYNC.value: channels.process_email_channel_sync,
    JobType.MESSAGING_WEBHOOK.value: channels.process_messaging_webhook,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if handler is None:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
