"""Tenant and per-organization ticket settings models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.db.base import Base
from helpdesk.db.models.columns import _now_utc
from helpdesk.db.types import JSONDocument

DEFAULT_URGENT_KEYWORDS = ["URGENT", "DRINGEND", "ASAP", "CRITICAL", "EMERGENCY", "SPOED"]


class Organization(Base):
    """
    A tenant in the multi-tenant helpdesk.

    Every entity below belongs to exactly one organization and every
    query against it is filtered by organization_id.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    settings: Mapped["OrganizationSettings | None"] = relationship(
        back_populates="organization", uselist=False
    )


class Status(Base):
    """Ticket status. Exactly one per org is the default open status."""

    __tablename__ = "statuses"
    __table_args__ = (UniqueConstraint("organization_id", "slug", name="uq_status_org_slug"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    is_default: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    is_closed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Priority(Base):
    __tablename__ = "priorities"
    __table_args__ = (UniqueConstraint("organization_id", "slug", name="uq_priority_org_slug"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    is_default: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Sla(Base):
    """Service level agreement: hours until first response and resolution."""

    __tablename__ = "slas"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_response_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolution_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_default: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )


class TicketFolder(Base):
    """User-visible ticket bucket. The default folder is the inbox."""

    __tablename__ = "ticket_folders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_system: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    is_default: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class OrganizationSettings(Base):
    """
    Per-organization defaults consumed by ticket creation.

    Holds the ticket-number sequence and format, the default
    status/priority/SLA, and the urgent keyword list.
    """

    __tablename__ = "organization_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    ticket_prefix: Mapped[str] = mapped_column(String(20), default="TKT", nullable=False)
    ticket_number_format: Mapped[str] = mapped_column(
        String(100), default="{prefix}-{number}", nullable=False
    )
    ticket_number_padding: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    next_ticket_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    urgent_keywords: Mapped[list[str] | None] = mapped_column(JSONDocument, nullable=True)

    default_status_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("statuses.id", ondelete="SET NULL"), nullable=True
    )
    default_priority_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("priorities.id", ondelete="SET NULL"), nullable=True
    )
    default_sla_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("slas.id", ondelete="SET NULL"), nullable=True
    )

    organization: Mapped[Organization] = relationship(back_populates="settings")

    @property
    def urgent_keyword_list(self) -> list[str]:
        if self.urgent_keywords is None:
            return list(DEFAULT_URGENT_KEYWORDS)
        return [str(keyword) for keyword in self.urgent_keywords if str(keyword).strip()]
