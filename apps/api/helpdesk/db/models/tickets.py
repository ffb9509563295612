"""Ticket, message, attachment and activity models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.db.base import Base
from helpdesk.db.enums import MessageType
from helpdesk.db.models.columns import _enum_type, _now_utc
from helpdesk.db.types import JSONDocument

if TYPE_CHECKING:
    from helpdesk.db.models import Contact, Priority, Status, TicketFolder


class Ticket(Base):
    """
    One conversation with one contact.

    Linked to at most one originating channel (email or messaging). The
    ticket_number is unique per organization and immutable once assigned.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("organization_id", "ticket_number", name="uq_ticket_org_number"),
        CheckConstraint(
            "email_channel_id IS NULL OR messaging_channel_id IS NULL",
            name="ck_ticket_single_channel",
        ),
        Index("idx_tickets_org_thread", "organization_id", "email_thread_id"),
        Index(
            "idx_tickets_messaging_conversation",
            "messaging_channel_id",
            "messaging_conversation_id",
        ),
        Index("idx_tickets_org_contact", "organization_id", "contact_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    ticket_number: Mapped[str] = mapped_column(String(50), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)

    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="RESTRICT"), nullable=False
    )
    status_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("statuses.id", ondelete="SET NULL"), nullable=True
    )
    priority_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("priorities.id", ondelete="SET NULL"), nullable=True
    )
    sla_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("slas.id", ondelete="SET NULL"), nullable=True
    )
    folder_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ticket_folders.id", ondelete="SET NULL"), nullable=True
    )
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    department_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    email_channel_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("email_channels.id", ondelete="RESTRICT"), nullable=True
    )
    messaging_channel_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("messaging_channels.id", ondelete="RESTRICT"), nullable=True
    )

    # Provider thread identity
    email_thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_thread_index: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_original_message_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    messaging_conversation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    messaging_participant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    first_response_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sla_first_response_due_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sla_resolution_due_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, onupdate=_now_utc, server_default=func.now(), nullable=False
    )

    contact: Mapped["Contact"] = relationship()
    status: Mapped["Status | None"] = relationship()
    priority: Mapped["Priority | None"] = relationship()
    folder: Mapped["TicketFolder | None"] = relationship()
    messages: Mapped[list["Message"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Message(Base):
    """
    One unit of conversation content on a ticket.

    The provider message ids are the idempotency key: a given non-null id
    appears once per ticket (and once per organization).
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("ticket_id", "email_message_id", name="uq_message_ticket_email_id"),
        UniqueConstraint(
            "ticket_id", "messaging_provider_id", name="uq_message_ticket_messaging_id"
        ),
        UniqueConstraint(
            "organization_id", "email_message_id", name="uq_message_org_email_id"
        ),
        UniqueConstraint(
            "organization_id", "messaging_provider_id", name="uq_message_org_messaging_id"
        ),
        Index("idx_messages_ticket_created", "ticket_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[MessageType] = mapped_column(
        _enum_type(MessageType, name="message_type"),
        default=MessageType.REPLY,
        nullable=False,
    )
    is_from_contact: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    body: Mapped[str] = mapped_column(Text, default="", nullable=False)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    recipients: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)

    email_message_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    email_provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_in_reply_to: Mapped[str | None] = mapped_column(String(512), nullable=True)
    email_references: Mapped[str | None] = mapped_column(Text, nullable=True)
    messaging_provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    ticket: Mapped[Ticket] = relationship(back_populates="messages")
    attachments: Mapped[list["Attachment"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Attachment(Base):
    """A file owned by exactly one message; inline when referenced by content_id."""

    __tablename__ = "attachments"
    __table_args__ = (Index("idx_attachments_message", "message_id", "is_inline"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(
        String(255), default="application/octet-stream", nullable=False
    )
    size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    # Storage key for stored bytes; remote_url for provider-hosted media.
    path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    remote_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    content_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_inline: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    message: Mapped[Message] = relationship(back_populates="attachments")


class TicketActivity(Base):
    """Append-only activity history for a ticket."""

    __tablename__ = "ticket_activities"
    __table_args__ = (Index("idx_ticket_activities_ticket", "ticket_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    properties: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
