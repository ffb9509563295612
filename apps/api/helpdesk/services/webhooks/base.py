"""Inbound messaging webhook handler contract."""

from __future__ import annotations

from typing import Protocol

from fastapi import Request, Response
from sqlalchemy.orm import Session

# {"status", "jobs_enqueued", "jobs_skipped"} or a raw response (verification echo)
WebhookResult = dict | Response


class MessagingWebhookHandler(Protocol):
    """A provider whose webhooks deliver messages for messaging channels."""

    def verify(self, mode: str | None, token: str | None, challenge: str | None) -> Response:
        """Answer the provider's subscription handshake."""

    async def handle(self, request: Request, db: Session, **kwargs) -> WebhookResult:
        """Validate a delivery and enqueue ingestion jobs for the addressed channels."""
