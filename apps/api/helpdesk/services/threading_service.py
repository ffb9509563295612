"""Conversation threading: inbound ticket resolution and outbound reply headers.

Inbound resolution order (first match wins):
1. X-Ticket-ID / X-Ticket-Reference header written by our own outbound mail
2. Provider conversation id (Gmail threadId, Graph conversationId, Meta
   conversation + participant)
3. In-Reply-To / References against stored provider message ids
4. Ticket-number token in the subject line

No match means the caller starts a new ticket.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import re
import time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.db.enums import ChannelKind
from helpdesk.db.models import (
    EmailChannel,
    Message,
    MessagingChannel,
    Status,
    Ticket,
)
from helpdesk.schemas.inbound import CanonicalInboundMessage
from helpdesk.utils.normalization import clean_message_id, clean_subject

logger = logging.getLogger(__name__)

TICKET_HEADERS = ("X-Ticket-ID", "X-Ticket-Reference")
TOKEN_PATTERN = r"[A-Z]{2,10}[-_][A-Z0-9]{4,12}"

_GENERIC_TOKEN_RE = re.compile(r"\[?\b(" + TOKEN_PATTERN + r")\b\]?", re.IGNORECASE)
_REPLY_PREFIX_RE = re.compile(r"^Re:\s*", re.IGNORECASE)

# FILETIME epoch offset (100ns intervals between 1601-01-01 and 1970-01-01)
_FILETIME_EPOCH_OFFSET = 116444736000000000


# =============================================================================
# Subject tokens
# =============================================================================

def extract_ticket_token(subject: str | None, prefix: str | None = None) -> str | None:
    """
    Pull a ticket-number token such as ``[TKT-00042]`` out of a subject.

    With a configured prefix only tokens starting with it are accepted.
    Best effort: fully custom number formats may not be recognizable.
    """
    if not subject:
        return None
    if prefix:
        pattern = re.compile(
            r"\[?\b(" + re.escape(prefix) + r"[-_][A-Z0-9]{4,12})\b\]?", re.IGNORECASE
        )
    else:
        pattern = _GENERIC_TOKEN_RE
    match = pattern.search(subject)
    return match.group(1).upper() if match else None


# =============================================================================
# Inbound resolution
# =============================================================================

def _ticket_by_number(db: Session, organization_id: UUID, ticket_number: str) -> Ticket | None:
    return db.scalars(
        select(Ticket).where(
            Ticket.organization_id == organization_id,
            Ticket.ticket_number == ticket_number,
        )
    ).first()


def _prefer_open(db: Session, tickets: list[Ticket]) -> Ticket | None:
    """First open ticket, else the most recent one (input is newest first)."""
    if not tickets:
        return None
    status_ids = {t.status_id for t in tickets if t.status_id}
    closed = set()
    if status_ids:
        closed = set(
            db.scalars(
                select(Status.id).where(Status.id.in_(status_ids), Status.is_closed.is_(True))
            ).all()
        )
    for ticket in tickets:
        if ticket.status_id not in closed:
            return ticket
    return tickets[0]


def _by_conversation(
    db: Session,
    organization_id: UUID,
    channel: EmailChannel | MessagingChannel,
    message: CanonicalInboundMessage,
) -> Ticket | None:
    if message.channel_kind == ChannelKind.EMAIL:
        if not message.conversation_id:
            return None
        tickets = db.scalars(
            select(Ticket)
            .where(
                Ticket.organization_id == organization_id,
                Ticket.email_channel_id == channel.id,
                Ticket.email_thread_id == message.conversation_id,
            )
            .order_by(Ticket.created_at.desc())
        ).all()
        return _prefer_open(db, list(tickets))

    participant = message.sender.platform_id
    base = select(Ticket).where(
        Ticket.organization_id == organization_id,
        Ticket.messaging_channel_id == channel.id,
    )
    if message.conversation_id:
        stmt = base.where(Ticket.messaging_conversation_id == message.conversation_id)
        if participant:
            stmt = stmt.where(Ticket.messaging_participant_id == participant)
        ticket = _prefer_open(db, list(db.scalars(stmt.order_by(Ticket.created_at.desc())).all()))
        if ticket is not None:
            return ticket
    if participant:
        stmt = base.where(Ticket.messaging_participant_id == participant)
        return _prefer_open(db, list(db.scalars(stmt.order_by(Ticket.created_at.desc())).all()))
    return None


def reference_candidates(message: CanonicalInboundMessage) -> list[str]:
    """In-Reply-To first, then References newest to oldest; brackets stripped."""
    candidates: list[str] = []
    for value in [message.in_reply_to, *reversed(message.references)]:
        cleaned = clean_message_id(value)
        if cleaned and cleaned not in candidates:
            candidates.append(cleaned)
    return candidates


def find_ticket_by_message_ids(
    db: Session, organization_id: UUID, message_ids: list[str]
) -> Ticket | None:
    """Ticket owning any of the given provider message ids, bracketed or not."""
    if not message_ids:
        return None
    lookup = set(message_ids) | {f"<{mid}>" for mid in message_ids}
    rows = db.execute(
        select(Message.email_message_id, Message.ticket_id).where(
            Message.organization_id == organization_id,
            Message.email_message_id.in_(lookup),
        )
    ).all()
    by_id = {clean_message_id(stored): ticket_id for stored, ticket_id in rows}
    for mid in message_ids:
        ticket_id = by_id.get(mid)
        if ticket_id is not None:
            return db.get(Ticket, ticket_id)

    originals = db.scalars(
        select(Ticket).where(
            Ticket.organization_id == organization_id,
            Ticket.email_original_message_id.in_(lookup),
        )
    ).all()
    return originals[0] if originals else None


def resolve_ticket(
    db: Session,
    *,
    organization_id: UUID,
    channel: EmailChannel | MessagingChannel,
    message: CanonicalInboundMessage,
    ticket_prefix: str | None = None,
) -> Ticket | None:
    """Existing ticket for an inbound message, or None to start a new one."""
    if message.channel_kind == ChannelKind.EMAIL:
        for header in TICKET_HEADERS:
            value = (message.header(header) or "").strip()
            if value:
                ticket = _ticket_by_number(db, organization_id, value)
                if ticket is not None:
                    logger.debug("Thread match: %s header -> %s", header, ticket.id)
                    return ticket

    ticket = _by_conversation(db, organization_id, channel, message)
    if ticket is not None:
        logger.debug("Thread match: conversation id -> %s", ticket.id)
        return ticket

    if message.channel_kind == ChannelKind.EMAIL:
        ticket = find_ticket_by_message_ids(db, organization_id, reference_candidates(message))
        if ticket is not None:
            logger.debug("Thread match: reference chain -> %s", ticket.id)
            return ticket

        token = extract_ticket_token(message.subject, ticket_prefix)
        if token:
            ticket = _ticket_by_number(db, organization_id, token)
            if ticket is not None:
                logger.debug("Thread match: subject token %s -> %s", token, ticket.id)
                return ticket

    return None


# =============================================================================
# Outbound reply headers
# =============================================================================

def format_message_id(message_id: str) -> str:
    return f"<{clean_message_id(message_id)}>"


def build_reference_chain(db: Session, ticket: Ticket) -> str:
    """Space-joined ``<id>`` list of the ticket's email messages, oldest first."""
    stored = db.scalars(
        select(Message.email_message_id)
        .where(Message.ticket_id == ticket.id, Message.email_message_id.is_not(None))
        .order_by(Message.created_at.asc(), Message.id.asc())
    ).all()
    chain: list[str] = []
    for value in stored:
        if not clean_message_id(value):
            continue
        formatted = format_message_id(value)
        if formatted not in chain:
            chain.append(formatted)
    return " ".join(chain)


def latest_email_message(db: Session, ticket: Ticket) -> Message | None:
    return db.scalars(
        select(Message)
        .where(Message.ticket_id == ticket.id, Message.email_message_id.is_not(None))
        .order_by(Message.created_at.desc())
    ).first()


def generate_message_id(ticket: Ticket, message: Message, channel: EmailChannel) -> str:
    """Message-ID for an outbound reply: ticket-<ticket>-msg-<message>@<domain>."""
    return f"ticket-{ticket.id}-msg-{message.id}@{channel.domain}"


def generate_reply_subject(ticket: Ticket) -> str:
    """``Re: [NUMBER] subject`` with the ticket number kept for subject fallback."""
    subject = clean_subject(ticket.subject)
    if ticket.ticket_number not in subject:
        subject = f"[{ticket.ticket_number}] {subject}"
    if not _REPLY_PREFIX_RE.match(subject):
        subject = f"Re: {subject}"
    return subject


def generate_thread_index(ticket: Ticket) -> str:
    """
    Outlook Thread-Index: 6 bytes of FILETIME plus a 16-byte GUID.

    The GUID is derived from the ticket id so every mail for a ticket lands
    in the same Outlook conversation.
    """
    filetime = int(time.time()) * 10_000_000 + _FILETIME_EPOCH_OFFSET
    head = filetime.to_bytes(8, "big")[:6]
    guid = hashlib.md5(f"ticket-thread-{ticket.id}".encode()).digest()
    return base64.b64encode(head + guid).decode("ascii")


def thread_index_for(ticket: Ticket) -> str:
    """Reuse the customer's own Thread-Index when known; Outlook threads on its header."""
    return ticket.email_thread_index or generate_thread_index(ticket)


def generate_reply_headers(db: Session, ticket: Ticket, channel: EmailChannel, message: Message) -> dict:
    """Threading headers for an outbound reply on ``ticket``."""
    latest = latest_email_message(db, ticket)
    in_reply_to = format_message_id(latest.email_message_id) if latest else None
    return {
        "Message-ID": format_message_id(generate_message_id(ticket, message, channel)),
        "In-Reply-To": in_reply_to,
        "References": build_reference_chain(db, ticket),
        "Subject": generate_reply_subject(ticket),
        "Thread-Topic": clean_subject(ticket.subject),
        "Thread-Index": thread_index_for(ticket),
        "X-Ticket-ID": ticket.ticket_number,
    }
