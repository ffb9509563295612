"""Meta messaging webhook handler (Instagram, Messenger, WhatsApp)."""

from __future__ import annotations

import hashlib
import json
import logging

from fastapi import HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.db.enums import JobType, MessagingProvider
from helpdesk.db.models import MessagingChannel
from helpdesk.services import job_service, meta_api
from helpdesk.services.adapters.meta import WEBHOOK_OBJECTS, entry_ids

logger = logging.getLogger(__name__)

# Which channel providers a webhook object can address
_OBJECT_PROVIDERS = {
    "instagram": (MessagingProvider.INSTAGRAM,),
    "page": (MessagingProvider.FACEBOOK_MESSENGER,),
    "whatsapp_business_account": (MessagingProvider.WHATSAPP,),
}


def find_channels_for_payload(db: Session, data: dict) -> list[MessagingChannel]:
    """Active messaging channels a webhook payload is addressed to."""
    ids = entry_ids(data)
    if not ids:
        return []
    return list(
        db.scalars(
            select(MessagingChannel).where(
                MessagingChannel.is_active.is_(True),
                MessagingChannel.external_id.in_(ids),
                MessagingChannel.provider.in_(_OBJECT_PROVIDERS[data["object"]]),
            )
        ).all()
    )


class MetaMessagingWebhookHandler:
    def verify(self, mode: str | None, token: str | None, challenge: str | None):
        """
        Meta webhook verification endpoint.

        When you configure the webhook in Meta, it sends a GET request
        with a challenge that must be echoed back as PLAIN TEXT (not JSON).
        """
        if mode == "subscribe" and settings.META_VERIFY_TOKEN and token == settings.META_VERIFY_TOKEN:
            return PlainTextResponse(challenge or "")

        logger.warning("Meta webhook verification failed: mode=%s", mode)
        raise HTTPException(status_code=403, detail="Verification failed")

    async def handle(self, request: Request, db: Session, **kwargs) -> dict:
        """
        Receive a Meta messaging webhook.

        Security:
        - Validates payload size
        - Validates X-Hub-Signature-256 HMAC (except in test mode)
        - Validates the webhook object type

        Processing:
        - Enqueues one job per addressed channel (idempotent on body hash)
        - Returns 200 fast; ingestion happens in the worker
        """
        # 1. Check payload size
        content_length = request.headers.get("content-length", "0")
        try:
            if int(content_length) > settings.META_WEBHOOK_MAX_PAYLOAD_BYTES:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

        # 2. Get raw body for signature verification
        body = await request.body()
        # Fallback size check in case Content-Length is missing/incorrect
        if len(body) > settings.META_WEBHOOK_MAX_PAYLOAD_BYTES:
            raise HTTPException(413, "Payload too large")
        signature = request.headers.get("X-Hub-Signature-256", "")

        # 3. Validate signature (skip in test mode)
        if not settings.META_TEST_MODE:
            if not signature:
                logger.warning("Meta webhook missing signature")
                raise HTTPException(403, "Missing signature")
            if not meta_api.verify_signature(body, signature):
                logger.warning("Meta webhook invalid signature")
                raise HTTPException(403, "Invalid signature")

        # 4. Parse payload
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise HTTPException(400, "Invalid JSON")
        if not isinstance(data, dict):
            raise HTTPException(400, "Invalid JSON")

        # 5. Validate object type
        if data.get("object") not in WEBHOOK_OBJECTS:
            logger.warning("Meta webhook invalid object: %s", data.get("object"))
            raise HTTPException(400, f"Invalid object: {data.get('object')}")

        # 6. Enqueue one job per addressed channel
        body_hash = hashlib.sha256(body).hexdigest()
        jobs_created = 0
        jobs_skipped = 0

        channels = find_channels_for_payload(db, data)
        if not channels:
            logger.info("Meta webhook: no active channel for object=%s", data.get("object"))

        for channel in channels:
            job_key = f"messaging_webhook:{channel.id}:{body_hash}"
            try:
                job_service.schedule_job(
                    db=db,
                    org_id=channel.organization_id,
                    job_type=JobType.MESSAGING_WEBHOOK,
                    payload={
                        "organization_id": str(channel.organization_id),
                        "channel_id": str(channel.id),
                        "webhook": data,
                    },
                    idempotency_key=job_key,
                )
                jobs_created += 1
                logger.info("Meta webhook: enqueued job for channel=%s", channel.id)
            except IntegrityError:
                db.rollback()
                jobs_skipped += 1
                logger.info("Meta webhook: duplicate job skipped for channel=%s", channel.id)

        return {
            "status": "ok",
            "jobs_enqueued": jobs_created,
            "jobs_skipped": jobs_skipped,
        }
