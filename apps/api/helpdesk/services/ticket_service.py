"""Ticket creation, numbering and reply lifecycle."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.db.enums import MessageKind
from helpdesk.db.models import (
    Contact,
    OrganizationSettings,
    Priority,
    Sla,
    Status,
    Ticket,
    TicketFolder,
)
from helpdesk.services import activity_service

logger = logging.getLogger(__name__)

URGENT_PRIORITY_SLUGS = ("urgent", "high", "hoog", "kritiek")
RANDOM_ALPHABET = string.ascii_uppercase + string.digits
MAX_NUMBER_ATTEMPTS = 10

_REPLY_KINDS = {MessageKind.CUSTOMER_REPLY, MessageKind.AGENT_REPLY}


# =============================================================================
# Settings collaborator
# =============================================================================

def get_org_settings(
    db: Session, organization_id: UUID, *, for_update: bool = False
) -> OrganizationSettings:
    """Settings row for the organization, created with defaults when missing."""
    stmt = select(OrganizationSettings).where(
        OrganizationSettings.organization_id == organization_id
    )
    if for_update:
        # Refresh a row already in the identity map with the locked values.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    row = db.scalars(stmt).first()
    if row is None:
        row = OrganizationSettings(organization_id=organization_id)
        db.add(row)
        db.flush()
    return row


def default_open_status(db: Session, organization_id: UUID) -> Status | None:
    """The status reopened tickets return to."""
    org_settings = get_org_settings(db, organization_id)
    if org_settings.default_status_id:
        status = db.get(Status, org_settings.default_status_id)
        if status is not None and not status.is_closed:
            return status
    return db.scalars(
        select(Status)
        .where(Status.organization_id == organization_id, Status.is_closed.is_(False))
        .order_by(Status.is_default.desc(), Status.sort_order)
    ).first()


def _default_priority_id(db: Session, organization_id: UUID, org_settings) -> UUID | None:
    if org_settings.default_priority_id:
        return org_settings.default_priority_id
    return db.scalars(
        select(Priority.id).where(
            Priority.organization_id == organization_id, Priority.is_default.is_(True)
        )
    ).first()


def _default_sla(db: Session, organization_id: UUID, org_settings, contact: Contact) -> Sla | None:
    for sla_id in (contact.sla_id, org_settings.default_sla_id):
        if sla_id:
            sla = db.get(Sla, sla_id)
            if sla is not None:
                return sla
    return db.scalars(
        select(Sla).where(Sla.organization_id == organization_id, Sla.is_default.is_(True))
    ).first()


def find_urgent_priority(db: Session, organization_id: UUID) -> Priority | None:
    """Highest-ranked priority whose slug marks it as urgent."""
    candidates = db.scalars(
        select(Priority).where(
            Priority.organization_id == organization_id,
            Priority.slug.in_(URGENT_PRIORITY_SLUGS),
        )
    ).all()
    ranked = sorted(candidates, key=lambda p: URGENT_PRIORITY_SLUGS.index(p.slug))
    return ranked[0] if ranked else None


# =============================================================================
# Ticket numbers
# =============================================================================

def format_ticket_number(
    template: str,
    *,
    prefix: str,
    number: int,
    padding: int,
    now: datetime,
) -> str:
    """
    Render a ticket number template.

    Placeholders: {prefix}, {number} (zero-padded), {random} (6 uppercase
    alphanumerics), {yyyy} {yy} {y}, {mm} {m}, {dd} {d}.
    """
    replacements = {
        "{prefix}": prefix,
        "{number}": str(number).zfill(max(padding, 1)),
        "{random}": "".join(secrets.choice(RANDOM_ALPHABET) for _ in range(6)),
        "{yyyy}": f"{now.year:04d}",
        "{yy}": f"{now.year % 100:02d}",
        "{y}": str(now.year),
        "{mm}": f"{now.month:02d}",
        "{m}": str(now.month),
        "{dd}": f"{now.day:02d}",
        "{d}": str(now.day),
    }
    rendered = template or "{prefix}-{number}"
    for placeholder, value in replacements.items():
        rendered = rendered.replace(placeholder, value)
    return rendered


def _number_taken(db: Session, organization_id: UUID, ticket_number: str) -> bool:
    return (
        db.scalars(
            select(Ticket.id).where(
                Ticket.organization_id == organization_id,
                Ticket.ticket_number == ticket_number,
            )
        ).first()
        is not None
    )


def generate_ticket_number(db: Session, organization_id: UUID) -> str:
    """
    Allocate the next ticket number for the organization.

    The settings row is locked (SELECT ... FOR UPDATE) so concurrent
    allocations serialize on it; the counter advances past numbers that
    are already in use.
    """
    org_settings = get_org_settings(db, organization_id, for_update=True)
    now = datetime.now(timezone.utc)

    for _ in range(MAX_NUMBER_ATTEMPTS):
        number = org_settings.next_ticket_number or 1
        org_settings.next_ticket_number = number + 1
        ticket_number = format_ticket_number(
            org_settings.ticket_number_format,
            prefix=org_settings.ticket_prefix,
            number=number,
            padding=org_settings.ticket_number_padding,
            now=now,
        )
        if not _number_taken(db, organization_id, ticket_number):
            db.flush()
            return ticket_number

    raise RuntimeError(f"Could not allocate a unique ticket number for org {organization_id}")


# =============================================================================
# Creation and lifecycle
# =============================================================================

def create_ticket(
    db: Session,
    *,
    organization_id: UUID,
    contact: Contact,
    subject: str,
    source: str,
    email_channel_id: UUID | None = None,
    messaging_channel_id: UUID | None = None,
    department_id: UUID | None = None,
    email_thread_id: str | None = None,
    email_thread_index: str | None = None,
    email_original_message_id: str | None = None,
    messaging_conversation_id: str | None = None,
    messaging_participant_id: str | None = None,
) -> Ticket:
    """Create a ticket with the organization's default status, priority and SLA."""
    org_settings = get_org_settings(db, organization_id)
    status = None
    if org_settings.default_status_id:
        status = db.get(Status, org_settings.default_status_id)
    if status is None:
        status = default_open_status(db, organization_id)
    sla = _default_sla(db, organization_id, org_settings, contact)
    now = datetime.now(timezone.utc)

    ticket = Ticket(
        organization_id=organization_id,
        ticket_number=generate_ticket_number(db, organization_id),
        subject=subject,
        contact_id=contact.id,
        status_id=status.id if status else None,
        priority_id=_default_priority_id(db, organization_id, org_settings),
        sla_id=sla.id if sla else None,
        email_channel_id=email_channel_id,
        messaging_channel_id=messaging_channel_id,
        department_id=department_id,
        email_thread_id=email_thread_id,
        email_thread_index=email_thread_index,
        email_original_message_id=email_original_message_id,
        messaging_conversation_id=messaging_conversation_id,
        messaging_participant_id=messaging_participant_id,
        created_at=now,
        updated_at=now,
    )
    if sla is not None:
        if sla.first_response_hours:
            ticket.sla_first_response_due_at = now + timedelta(hours=sla.first_response_hours)
        if sla.resolution_hours:
            ticket.sla_resolution_due_at = now + timedelta(hours=sla.resolution_hours)

    db.add(ticket)
    db.flush()
    activity_service.log_ticket_created(db, ticket.id, organization_id, source)
    logger.info("Created ticket %s (%s)", ticket.ticket_number, ticket.id)
    return ticket


def apply_reply_lifecycle(
    db: Session,
    ticket: Ticket,
    *,
    message_id: UUID,
    kind: MessageKind,
) -> bool:
    """
    Ticket side effects of a message landing on an existing ticket.

    - Agent replies set first_response_at once.
    - Any reply moves the ticket out of a non-default folder and reopens a
      closed status (resolved_at/closed_at cleared).
    - Notes and system messages only get the activity entry.

    Returns True when the ticket was reopened.
    """
    reopened = False
    now = datetime.now(timezone.utc)

    if kind == MessageKind.AGENT_REPLY and ticket.first_response_at is None:
        ticket.first_response_at = now

    if kind in _REPLY_KINDS:
        if ticket.folder_id is not None:
            folder = db.get(TicketFolder, ticket.folder_id)
            if folder is None or not folder.is_default:
                ticket.folder_id = None

        status = db.get(Status, ticket.status_id) if ticket.status_id else None
        if status is not None and status.is_closed:
            open_status = default_open_status(db, ticket.organization_id)
            ticket.status_id = open_status.id if open_status else None
            ticket.resolved_at = None
            ticket.closed_at = None
            activity_service.log_ticket_reopened(
                db,
                ticket.id,
                ticket.organization_id,
                from_status_id=status.id,
                to_status_id=ticket.status_id,
            )
            reopened = True

        ticket.updated_at = now

    activity_service.log_message_added(db, ticket.id, ticket.organization_id, message_id, kind)
    db.flush()
    return reopened
