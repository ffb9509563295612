"""Inbound channel models (email mailboxes and messaging accounts)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.db.base import Base
from helpdesk.db.enums import (
    ChannelKind,
    EmailProvider,
    MessagingProvider,
    PostImportAction,
)
from helpdesk.db.models.columns import _enum_type, _now_utc


class EmailChannel(Base):
    """
    A polled mailbox.

    Mutated only by sync processing (cursor, error state, lease). Never
    deleted while tickets reference it.
    """

    __tablename__ = "email_channels"
    __table_args__ = (
        Index("idx_email_channels_org", "organization_id"),
        Index("idx_email_channels_active", "is_active", "last_sync_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[EmailProvider] = mapped_column(
        _enum_type(EmailProvider, name="email_provider"), nullable=False
    )
    email_address: Mapped[str] = mapped_column(String(320), nullable=False)
    # Opaque credential, already decrypted/refreshed by the OAuth collaborator.
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    fetch_folder: Mapped[str] = mapped_column(String(255), default="INBOX", nullable=False)
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    import_emails_since: Mapped[datetime | None] = mapped_column(nullable=True)
    post_import_action: Mapped[PostImportAction] = mapped_column(
        _enum_type(PostImportAction, name="post_import_action"),
        default=PostImportAction.NOTHING,
        nullable=False,
    )
    post_import_folder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    sync_lock_owner: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sync_locked_until: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, onupdate=_now_utc, server_default=func.now(), nullable=False
    )

    @property
    def domain(self) -> str:
        """Domain part of the channel address, used in generated Message-IDs."""
        _, _, domain = (self.email_address or "").partition("@")
        return domain.lower() or "localhost"


class MessagingChannel(Base):
    """A connected social messaging account fed by provider webhooks."""

    __tablename__ = "messaging_channels"
    __table_args__ = (
        Index("idx_messaging_channels_org", "organization_id"),
        Index("idx_messaging_channels_external", "provider", "external_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[MessagingProvider] = mapped_column(
        _enum_type(MessagingProvider, name="messaging_provider"), nullable=False
    )
    # Page id (Messenger), IG account id, or WhatsApp phone-number id
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    auto_reply_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    auto_reply_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    department_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    sync_lock_owner: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sync_locked_until: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )


class ChannelSyncLog(Base):
    """One row per poll cycle or webhook batch, for operator visibility."""

    __tablename__ = "channel_sync_logs"
    __table_args__ = (
        Index("idx_channel_sync_logs_channel", "channel_kind", "channel_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    channel_kind: Mapped[ChannelKind] = mapped_column(
        _enum_type(ChannelKind, name="channel_kind"), nullable=False
    )
    channel_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    items_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tickets_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
