"""Inbound ingestion pipeline.

Takes one canonical inbound message plus the channel it arrived on and
lands it on a ticket exactly once:

    duplicate check -> contact -> thread -> (new ticket) -> message row
    -> attachments -> body html -> urgency -> lifecycle/activity

The pre-insert duplicate check is an optimisation; the unique constraints
on ``messages`` decide. A losing concurrent insert rolls back to its
savepoint (taking any ticket it created with it) and the winner's ticket
is returned. Nothing here commits; callers own the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk.core.structured_logging import build_log_context
from helpdesk.db.enums import ChannelKind, ImportanceHint, MessageKind, MessageType
from helpdesk.db.models import EmailChannel, Message, MessagingChannel, Ticket
from helpdesk.schemas.inbound import CanonicalInboundMessage
from helpdesk.services import (
    activity_service,
    attachment_service,
    contact_service,
    threading_service,
    ticket_service,
)
from helpdesk.services.sanitizer import sanitize, text_to_html
from helpdesk.utils.normalization import (
    clean_message_id,
    clean_subject,
    html_to_text,
    strip_quoted_html,
)

logger = logging.getLogger(__name__)

MESSAGING_SUBJECT_LENGTH = 50


class IngestionError(Exception):
    """Base error for ingestion failures."""


class MissingSenderIdentityError(IngestionError):
    """Canonical message carries no usable sender identity. Not retried."""


class MissingProviderIdError(IngestionError):
    """Canonical message carries no provider message id to deduplicate on."""


@dataclass
class IngestResult:
    ticket: Ticket
    message: Message | None
    ticket_created: bool = False
    duplicate: bool = False
    reopened: bool = False


# =============================================================================
# Field derivation
# =============================================================================

def messaging_subject(label: str, text: str | None, sender_name: str | None) -> str:
    """'Instagram DM: hello' / 'Instagram DM: <47 chars>...' / 'Instagram DM message from X'."""
    text = " ".join((text or "").split())
    if not text:
        return f"{label} message from {sender_name or 'unknown sender'}"[:255]
    if len(text) > MESSAGING_SUBJECT_LENGTH:
        text = text[: MESSAGING_SUBJECT_LENGTH - 3] + "..."
    return f"{label}: {text}"


def messaging_body(text: str | None, attachment_count: int) -> str:
    if text and text.strip():
        return text
    return f"[{attachment_count} attachment(s)]"


def is_urgent(message: CanonicalInboundMessage, subject: str, keywords: list[str]) -> bool:
    """Importance hint, X-Priority/Importance headers, or an urgent keyword in the subject."""
    if message.importance == ImportanceHint.HIGH:
        return True
    x_priority = (message.header("X-Priority") or "").strip()
    if x_priority[:1] in ("1", "2"):
        return True
    if (message.header("Importance") or "").strip().lower() == "high":
        return True
    lowered = subject.lower()
    return any(keyword.lower() in lowered for keyword in keywords if keyword)


def _provider_id(message: CanonicalInboundMessage) -> str:
    if message.channel_kind == ChannelKind.EMAIL:
        provider_id = clean_message_id(message.provider_message_id) or clean_message_id(
            message.provider_item_id
        )
    else:
        provider_id = clean_message_id(message.provider_message_id)
    if not provider_id:
        raise MissingProviderIdError("Inbound message has no provider message id")
    return provider_id


def _require_sender(message: CanonicalInboundMessage) -> None:
    if message.sender.is_empty:
        raise MissingSenderIdentityError("Inbound message has no sender identity")
    if message.channel_kind == ChannelKind.EMAIL and not message.sender.email:
        raise MissingSenderIdentityError("Email message has no sender address")
    if message.channel_kind == ChannelKind.MESSAGING and not message.sender.platform_id:
        raise MissingSenderIdentityError("Messaging event has no sender id")


def find_existing_message(
    db: Session, organization_id, channel_kind: ChannelKind, provider_id: str
) -> Message | None:
    column = (
        Message.email_message_id
        if channel_kind == ChannelKind.EMAIL
        else Message.messaging_provider_id
    )
    return db.scalars(
        select(Message).where(Message.organization_id == organization_id, column == provider_id)
    ).first()


# =============================================================================
# Pipeline
# =============================================================================

def ingest_message(
    db: Session,
    message: CanonicalInboundMessage,
    channel: EmailChannel | MessagingChannel,
) -> IngestResult:
    """Ingest one inbound message. Idempotent per provider message id."""
    organization_id = channel.organization_id
    is_email = message.channel_kind == ChannelKind.EMAIL
    if is_email != isinstance(channel, EmailChannel):
        raise IngestionError("Message kind does not match channel kind")

    _require_sender(message)
    provider_id = _provider_id(message)
    log_context = build_log_context(
        org_id=organization_id, channel_id=channel.id, provider_message_id=provider_id
    )

    existing = find_existing_message(db, organization_id, message.channel_kind, provider_id)
    if existing is not None:
        logger.info("Duplicate inbound message ignored", extra=log_context)
        return IngestResult(ticket=existing.ticket, message=None, duplicate=True)

    provider = None if is_email else channel.provider
    contact, _ = contact_service.resolve_contact(
        db,
        organization_id=organization_id,
        identity=message.sender,
        provider=provider,
    )
    org_settings = ticket_service.get_org_settings(db, organization_id)
    ticket = threading_service.resolve_ticket(
        db,
        organization_id=organization_id,
        channel=channel,
        message=message,
        ticket_prefix=org_settings.ticket_prefix,
    )

    attachments = attachment_service.prepare_attachments(message.attachments)
    if is_email:
        subject = clean_subject(message.subject)
        html = strip_quoted_html(message.html_body) if message.html_body else None
        body = message.text_body if message.text_body is not None else (html_to_text(html) if html else "")
    else:
        subject = messaging_subject(provider.label, message.text_body, contact.name)
        html = None
        body = messaging_body(message.text_body, len(attachments))

    ticket_created = False
    try:
        with db.begin_nested():
            if ticket is None:
                ticket = ticket_service.create_ticket(
                    db,
                    organization_id=organization_id,
                    contact=contact,
                    subject=subject,
                    source=channel.provider.value,
                    email_channel_id=channel.id if is_email else None,
                    messaging_channel_id=None if is_email else channel.id,
                    department_id=channel.department_id,
                    email_thread_id=message.conversation_id if is_email else None,
                    email_thread_index=message.thread_index if is_email else None,
                    email_original_message_id=message.provider_item_id if is_email else None,
                    messaging_conversation_id=None if is_email else message.conversation_id,
                    messaging_participant_id=None if is_email else message.sender.platform_id,
                )
                ticket_created = True

            row = Message(
                organization_id=organization_id,
                ticket_id=ticket.id,
                type=MessageType.REPLY,
                is_from_contact=True,
                contact_id=contact.id,
                body=body or "",
                recipients=message.recipients_payload(),
            )
            if is_email:
                row.email_message_id = provider_id
                row.email_provider_id = message.provider_item_id
                row.email_in_reply_to = clean_message_id(message.in_reply_to)
                row.email_references = " ".join(message.references) or None
            else:
                row.messaging_provider_id = provider_id
            db.add(row)
            db.flush()
    except IntegrityError:
        existing = find_existing_message(db, organization_id, message.channel_kind, provider_id)
        if existing is None:
            raise
        logger.info("Concurrent duplicate inbound message ignored", extra=log_context)
        return IngestResult(ticket=existing.ticket, message=None, duplicate=True)

    stored = attachment_service.create_message_attachments(
        db, message=row, descriptors=attachments
    )
    if is_email:
        row.body_html = sanitize(attachment_service.replace_inline_references(html, stored))
    else:
        row.body_html = text_to_html(body)

    reopened = False
    if ticket_created:
        if is_urgent(message, subject, org_settings.urgent_keyword_list):
            urgent = ticket_service.find_urgent_priority(db, organization_id)
            if urgent is not None and ticket.priority_id != urgent.id:
                ticket.priority_id = urgent.id
                activity_service.log_priority_raised(
                    db, ticket.id, organization_id, urgent.id, reason="urgent_inbound"
                )
        activity_service.log_message_added(
            db, ticket.id, organization_id, row.id, MessageKind.CUSTOMER_REPLY
        )
    else:
        if is_email:
            if not ticket.email_thread_id and message.conversation_id:
                ticket.email_thread_id = message.conversation_id
            if not ticket.email_thread_index and message.thread_index:
                ticket.email_thread_index = message.thread_index
        reopened = ticket_service.apply_reply_lifecycle(
            db, ticket, message_id=row.id, kind=MessageKind.CUSTOMER_REPLY
        )

    db.flush()
    logger.info(
        "Ingested inbound message (ticket_created=%s, reopened=%s)",
        ticket_created,
        reopened,
        extra={**log_context, **build_log_context(ticket_id=ticket.id)},
    )
    return IngestResult(
        ticket=ticket,
        message=row,
        ticket_created=ticket_created,
        reopened=reopened,
    )


def ingest(
    db: Session,
    message: CanonicalInboundMessage,
    channel: EmailChannel | MessagingChannel,
) -> Ticket:
    """Ingest one inbound message and return the ticket it landed on."""
    return ingest_message(db, message, channel).ticket
