"""Webhooks router - inbound messaging providers."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.deps import get_db
from helpdesk.core.rate_limit import limiter
from helpdesk.services.webhooks.registry import get_handler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/meta")
async def verify_meta_webhook(
    mode: str = Query(None, alias="hub.mode"),
    token: str = Query(None, alias="hub.verify_token"),
    challenge: str = Query(None, alias="hub.challenge"),
):
    """Echo the Meta subscription challenge."""
    return get_handler("meta").verify(mode, token, challenge)


@router.post("/meta")
@limiter.limit(f"{settings.RATE_LIMIT_WEBHOOK}/minute")
async def receive_meta_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """Receive Instagram, Messenger and WhatsApp message webhooks."""
    return await get_handler("meta").handle(request, db)
