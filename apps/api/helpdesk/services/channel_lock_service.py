"""Per-channel lease so two sync cycles for one channel never overlap.

The lease lives on the channel row (sync_lock_owner / sync_locked_until)
and is taken with a conditional UPDATE, so it works across worker
processes without advisory locks. An expired lease can be stolen; a
crashed worker therefore blocks its channel for at most the TTL.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.db.models import EmailChannel, MessagingChannel

logger = logging.getLogger(__name__)


class ChannelBusyError(Exception):
    """Another worker holds the channel's lease."""


def new_owner_token() -> str:
    return uuid.uuid4().hex


def acquire(
    db: Session,
    channel: EmailChannel | MessagingChannel,
    owner: str,
    *,
    ttl_seconds: int | None = None,
) -> bool:
    """Take the lease if it is free or expired. Commits; True on success."""
    model = type(channel)
    now = datetime.now(timezone.utc)
    ttl = ttl_seconds if ttl_seconds is not None else settings.CHANNEL_LOCK_TTL_SECONDS
    result = db.execute(
        update(model)
        .where(
            model.id == channel.id,
            or_(model.sync_locked_until.is_(None), model.sync_locked_until < now),
        )
        .values(sync_lock_owner=owner, sync_locked_until=now + timedelta(seconds=ttl))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    acquired = result.rowcount == 1
    if acquired:
        db.refresh(channel)
    return acquired


def release(db: Session, channel: EmailChannel | MessagingChannel, owner: str) -> None:
    """Drop the lease, but only if ``owner`` still holds it."""
    model = type(channel)
    db.execute(
        update(model)
        .where(model.id == channel.id, model.sync_lock_owner == owner)
        .values(sync_lock_owner=None, sync_locked_until=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()


@contextmanager
def channel_lock(
    db: Session,
    channel: EmailChannel | MessagingChannel,
    *,
    owner: str | None = None,
) -> Iterator[str]:
    """Hold the channel lease for the duration of the block."""
    owner = owner or new_owner_token()
    if not acquire(db, channel, owner):
        raise ChannelBusyError(f"Channel {channel.id} is already being processed")
    try:
        yield owner
    finally:
        try:
            release(db, channel, owner)
        except Exception:
            db.rollback()
            logger.exception("Failed to release lease on channel %s", channel.id)
