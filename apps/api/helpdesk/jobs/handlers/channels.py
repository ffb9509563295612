"""Channel sync job handlers."""

from __future__ import annotations

import logging

from helpdesk.jobs.utils import uuid_from_payload
from helpdesk.services import channel_sync_service

logger = logging.getLogger(__name__)


async def process_email_channel_sync(db, job) -> None:
    """Poll one email channel. A busy channel is skipped inside the service."""
    payload = job.payload or {}
    channel_id = uuid_from_payload(payload, "channel_id")
    result = channel_sync_service.sync_email_channel(db, channel_id=channel_id)
    logger.info("Email channel %s sync job done: %s", channel_id, result.as_dict())


async def process_messaging_webhook(db, job) -> None:
    """Ingest one stored webhook payload for one messaging channel.

    A busy channel raises ChannelBusyError, which the worker retries with
    backoff so the payload is not dropped.
    """
    payload = job.payload or {}
    channel_id = uuid_from_payload(payload, "channel_id")
    webhook_payload = payload.get("webhook")
    if not isinstance(webhook_payload, dict):
        raise ValueError("Missing webhook in job payload")
    result = channel_sync_service.process_messaging_webhook(
        db, channel_id=channel_id, payload=webhook_payload
    )
    logger.info("Messaging channel %s webhook job done: %s", channel_id, result.as_dict())
