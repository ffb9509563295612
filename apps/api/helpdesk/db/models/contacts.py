"""Contact model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, validates

from helpdesk.db.base import Base
from helpdesk.db.models.columns import _now_utc


class Contact(Base):
    """
    A person outside the organization.

    Identified by email and/or a platform user id; each identity field is
    unique per organization. Created lazily on first inbound message and
    never merged automatically.
    """

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("organization_id", "instagram_id", name="uq_contact_org_instagram"),
        UniqueConstraint("organization_id", "facebook_id", name="uq_contact_org_facebook"),
        UniqueConstraint("organization_id", "whatsapp_phone", name="uq_contact_org_whatsapp"),
        UniqueConstraint("organization_id", "wechat_id", name="uq_contact_org_wechat"),
        Index("idx_contacts_org_name", "organization_id", "name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    # Lowercased on write; unique per org on lower(email) (see below).
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    instagram_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    facebook_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    whatsapp_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    wechat_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    sla_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("slas.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, onupdate=_now_utc, server_default=func.now(), nullable=False
    )

    @validates("email")
    def _lowercase_email(self, key: str, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None


# Rows written outside the ORM may carry mixed case; uniqueness ignores it.
Index(
    "uq_contact_org_email_lower",
    Contact.organization_id,
    func.lower(Contact.email),
    unique=True,
)
