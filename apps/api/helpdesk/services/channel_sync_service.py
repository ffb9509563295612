"""Channel sync: email mailbox polling and messaging webhook batches.

One unit of work (a poll cycle or a webhook payload) runs under the
channel's lease. Items inside a unit are processed in order; a bad item is
logged, rolled back and counted, and the batch carries on. Channel-level
failures (auth, provider outage) are recorded on the channel and re-raised
for the job queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.structured_logging import build_log_context
from helpdesk.db.enums import (
    ChannelKind,
    EmailProvider,
    JobType,
    MessagingProvider,
    PostImportAction,
    SyncLogStatus,
)
from helpdesk.db.models import ChannelSyncLog, EmailChannel, Message, MessagingChannel
from helpdesk.jobs.utils import mask_email
from helpdesk.schemas.channel_config import EmailChannelConfig, MessagingChannelConfig
from helpdesk.schemas.inbound import CanonicalInboundMessage
from helpdesk.services import contact_service, ingestion_service, job_service
from helpdesk.services.adapters import (
    AdapterError,
    ProviderAuthError,
    build_mailbox_client,
    get_adapter,
    supports_polling,
)
from helpdesk.services.channel_lock_service import ChannelBusyError, channel_lock
from helpdesk.services.meta_api import MetaGraphClient

logger = logging.getLogger(__name__)

_PROFILE_PROVIDERS = {MessagingProvider.INSTAGRAM, MessagingProvider.FACEBOOK_MESSENGER}


@dataclass
class SyncResult:
    processed: int = 0
    tickets_created: int = 0
    messages_added: int = 0
    skipped: int = 0
    failed: int = 0
    channel_skipped: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> SyncLogStatus:
        if self.channel_skipped:
            return SyncLogStatus.SKIPPED
        if self.failed and not (self.messages_added or self.skipped):
            return SyncLogStatus.FAILED
        if self.failed:
            return SyncLogStatus.PARTIAL
        return SyncLogStatus.SUCCESS

    def record(self, outcome: ingestion_service.IngestResult) -> None:
        if outcome.duplicate:
            self.skipped += 1
            return
        self.messages_added += 1
        if outcome.ticket_created:
            self.tickets_created += 1

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "processed": self.processed,
            "tickets_created": self.tickets_created,
            "messages_added": self.messages_added,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _write_sync_log(
    db: Session,
    channel: EmailChannel | MessagingChannel,
    kind: ChannelKind,
    result: SyncResult,
    *,
    status: SyncLogStatus | None = None,
    error: str | None = None,
) -> ChannelSyncLog:
    log = ChannelSyncLog(
        organization_id=channel.organization_id,
        channel_kind=kind,
        channel_id=channel.id,
        status=(status or result.status).value,
        items_processed=result.processed,
        tickets_created=result.tickets_created,
        messages_added=result.messages_added,
        items_skipped=result.skipped,
        items_failed=result.failed,
        error=error or ("; ".join(result.errors)[:2000] or None),
    )
    db.add(log)
    return log


def _record_channel_failure(
    db: Session,
    channel: EmailChannel | MessagingChannel,
    kind: ChannelKind,
    result: SyncResult,
    exc: Exception,
) -> None:
    db.rollback()
    channel.last_sync_error = str(exc)[:2000]
    if isinstance(exc, ProviderAuthError):
        channel.is_active = False
        logger.warning(
            "Channel deactivated after auth failure",
            extra=build_log_context(org_id=channel.organization_id, channel_id=channel.id),
        )
    _write_sync_log(db, channel, kind, result, status=SyncLogStatus.FAILED, error=str(exc)[:2000])
    db.commit()


# =============================================================================
# Email polling
# =============================================================================

def compute_since(channel: EmailChannel, now: datetime | None = None) -> datetime:
    """Lower bound for the next poll: cursor minus buffer, never before import_emails_since."""
    now = now or _utcnow()
    buffer = timedelta(minutes=settings.SYNC_CURSOR_BUFFER_MINUTES)
    if channel.last_sync_at is not None:
        since = channel.last_sync_at - buffer
    elif channel.import_emails_since is None:
        since = now - timedelta(hours=settings.SYNC_DEFAULT_LOOKBACK_HOURS)
    else:
        since = channel.import_emails_since
    if channel.import_emails_since is not None:
        since = max(since, channel.import_emails_since)
    return since


def _apply_post_import_action(db: Session, client, channel: EmailChannel, message: Message) -> None:
    item_id = message.email_provider_id
    if channel.post_import_action == PostImportAction.NOTHING or not item_id:
        return
    context = build_log_context(
        org_id=channel.organization_id,
        channel_id=channel.id,
        provider_message_id=message.email_message_id,
    )
    try:
        new_id = None
        if channel.post_import_action == PostImportAction.ARCHIVE:
            new_id = client.archive(item_id)
        elif channel.post_import_action == PostImportAction.MOVE_TO_FOLDER:
            if not channel.post_import_folder:
                logger.warning("Move action configured without a folder", extra=context)
                return
            new_id = client.move(item_id, channel.post_import_folder)
        elif channel.post_import_action == PostImportAction.DELETE:
            client.delete(item_id)
    except AdapterError as exc:
        logger.warning("Post-import action %s failed: %s", channel.post_import_action.value, exc, extra=context)
        return

    if new_id and new_id != item_id:
        message.email_provider_id = new_id
        ticket = message.ticket
        if ticket.email_original_message_id == item_id:
            ticket.email_original_message_id = new_id
        db.commit()


def sync_email_channel(
    db: Session,
    *,
    channel_id: UUID,
    client=None,
) -> SyncResult:
    """Run one poll cycle for an email channel."""
    channel = db.get(EmailChannel, channel_id)
    if channel is None:
        raise ValueError(f"Email channel {channel_id} not found")

    context = build_log_context(org_id=channel.organization_id, channel_id=channel.id)
    result = SyncResult()
    if not channel.is_active or not channel.access_token or not supports_polling(channel.provider):
        logger.info("Skipping email channel sync (inactive, no token or not polled)", extra=context)
        result.channel_skipped = True
        return result

    try:
        with channel_lock(db, channel):
            owns_client = client is None
            try:
                config = EmailChannelConfig.from_channel(channel)
                if owns_client:
                    client = build_mailbox_client(channel.provider, config.access_token)
                started_at = _utcnow()
                message_ids = client.list_message_ids(
                    folder=config.fetch_folder, since=compute_since(channel, started_at)
                )
                for item_id in message_ids:
                    result.processed += 1
                    _sync_one_email(db, client, channel, config, item_id, result)

                channel.last_sync_at = started_at
                channel.last_sync_error = None
                _write_sync_log(db, channel, ChannelKind.EMAIL, result)
                db.commit()
            except Exception as exc:
                _record_channel_failure(db, channel, ChannelKind.EMAIL, result, exc)
                raise
            finally:
                if owns_client and client is not None:
                    client.close()
    except ChannelBusyError:
        logger.info("Email channel already syncing, skipped", extra=context)
        result.channel_skipped = True
        return result

    logger.info("Email channel sync finished: %s", result.as_dict(), extra=context)
    return result


def _sync_one_email(
    db: Session,
    client,
    channel: EmailChannel,
    config: EmailChannelConfig,
    item_id: str,
    result: SyncResult,
) -> None:
    context = build_log_context(org_id=channel.organization_id, channel_id=channel.id)
    try:
        message = client.fetch_message(item_id)
    except ProviderAuthError:
        raise
    except AdapterError as exc:
        result.failed += 1
        result.errors.append(f"{item_id}: {exc}")
        logger.error("Failed to fetch message %s: %s", item_id, exc, extra=context)
        return

    if message.sender.email == config.email_address:
        logger.debug("Skipping mail sent by the channel itself (%s)", mask_email(message.sender.email))
        result.skipped += 1
        return

    context = {**context, **build_log_context(provider_message_id=message.provider_message_id)}
    try:
        outcome = ingestion_service.ingest_message(db, message, channel)
        db.commit()
    except Exception as exc:
        db.rollback()
        result.failed += 1
        result.errors.append(f"{message.provider_message_id or item_id}: {exc}")
        logger.exception("Failed to ingest email", extra=context)
        return

    result.record(outcome)
    if not outcome.duplicate and outcome.message is not None:
        _apply_post_import_action(db, client, channel, outcome.message)


def ingest_raw_email(db: Session, *, channel_id: UUID, raw: bytes) -> ingestion_service.IngestResult:
    """Ingest one raw RFC 822 message (piped mail, IMAP relay) on an email channel."""
    channel = db.get(EmailChannel, channel_id)
    if channel is None:
        raise ValueError(f"Email channel {channel_id} not found")
    message = get_adapter(EmailProvider.MIME).normalize(raw, EmailChannelConfig.from_channel(channel))
    outcome = ingestion_service.ingest_message(db, message, channel)
    db.commit()
    return outcome


# =============================================================================
# Scheduling
# =============================================================================

def channels_due_for_sync(db: Session, now: datetime | None = None) -> list[EmailChannel]:
    """Active, credentialed, polled channels whose interval has elapsed."""
    now = now or _utcnow()
    channels = db.scalars(
        select(EmailChannel).where(
            EmailChannel.is_active.is_(True),
            EmailChannel.access_token.is_not(None),
        )
    ).all()
    due = []
    for channel in channels:
        if not supports_polling(channel.provider):
            continue
        if channel.last_sync_at is None or (
            channel.last_sync_at + timedelta(minutes=channel.sync_interval_minutes) <= now
        ):
            due.append(channel)
    return due


def schedule_due_channel_syncs(db: Session, now: datetime | None = None) -> int:
    """Enqueue one EMAIL_CHANNEL_SYNC job per due channel. Returns jobs created."""
    now = now or _utcnow()
    created = 0
    for channel in channels_due_for_sync(db, now):
        channel_id = str(channel.id)
        if job_service.has_active_job(db, JobType.EMAIL_CHANNEL_SYNC, "channel_id", channel_id):
            continue
        try:
            job_service.schedule_job(
                db=db,
                org_id=channel.organization_id,
                job_type=JobType.EMAIL_CHANNEL_SYNC,
                payload={"organization_id": str(channel.organization_id), "channel_id": channel_id},
                idempotency_key=f"email_channel_sync:{channel_id}:{int(now.timestamp()) // 60}",
            )
            created += 1
        except IntegrityError:
            db.rollback()
            logger.info("Duplicate channel sync job skipped for channel %s", channel_id)
    return created


# =============================================================================
# Messaging webhooks
# =============================================================================

def _enrich_sender(
    db: Session,
    graph: MetaGraphClient | None,
    channel: MessagingChannel,
    message: CanonicalInboundMessage,
) -> CanonicalInboundMessage:
    """Fill sender profile and media URLs from the Graph API where it helps."""
    if graph is None:
        return message
    updates: dict = {}

    sender = message.sender
    if (
        channel.provider in _PROFILE_PROVIDERS
        and not sender.name
        and contact_service.find_contact(db, channel.organization_id, sender, channel.provider) is None
    ):
        try:
            profile = graph.get_user_profile(sender.platform_id)
            updates["sender"] = sender.model_copy(
                update={"name": profile.get("name"), "username": profile.get("username")}
            )
        except AdapterError as exc:
            logger.warning("Profile lookup failed for messaging sender: %s", exc)

    if any(a.fetch_handle and not a.remote_url for a in message.attachments):
        attachments = []
        for attachment in message.attachments:
            if attachment.fetch_handle and not attachment.remote_url:
                try:
                    url = graph.get_media_url(attachment.fetch_handle)
                    attachment = attachment.model_copy(update={"remote_url": url})
                except AdapterError as exc:
                    logger.warning("Media lookup failed for %s: %s", attachment.fetch_handle, exc)
            attachments.append(attachment)
        updates["attachments"] = attachments

    return message.model_copy(update=updates) if updates else message


def process_messaging_webhook(
    db: Session,
    *,
    channel_id: UUID,
    payload: dict,
    graph_client: MetaGraphClient | None = None,
) -> SyncResult:
    """Ingest every inbound message event in one stored webhook payload."""
    channel = db.get(MessagingChannel, channel_id)
    if channel is None:
        raise ValueError(f"Messaging channel {channel_id} not found")

    context = build_log_context(org_id=channel.organization_id, channel_id=channel.id)
    result = SyncResult()
    if not channel.is_active:
        logger.info("Skipping webhook for inactive messaging channel", extra=context)
        result.channel_skipped = True
        return result

    with channel_lock(db, channel):
        graph = graph_client
        owns_graph = graph is None and bool(channel.access_token)
        try:
            config = MessagingChannelConfig.from_channel(channel)
            adapter = get_adapter(channel.provider)
            events = adapter.extract_events(payload, config)
            if owns_graph:
                graph = MetaGraphClient(channel.access_token)

            for event in events:
                result.processed += 1
                try:
                    message = adapter.normalize(event, config)
                    message = _enrich_sender(db, graph, channel, message)
                    outcome = ingestion_service.ingest_message(db, message, channel)
                    db.commit()
                except Exception as exc:
                    db.rollback()
                    result.failed += 1
                    result.errors.append(str(exc))
                    logger.exception("Failed to ingest messaging event", extra=context)
                    continue
                result.record(outcome)

            channel.last_sync_at = _utcnow()
            channel.last_sync_error = None
            _write_sync_log(db, channel, ChannelKind.MESSAGING, result)
            db.commit()
        except Exception as exc:
            _record_channel_failure(db, channel, ChannelKind.MESSAGING, result, exc)
            raise
        finally:
            if owns_graph and graph is not None:
                graph.close()

    logger.info("Messaging webhook processed: %s", result.as_dict(), extra=context)
    return result
