"""Canonical inbound message: the provider-agnostic shape every adapter produces."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from helpdesk.db.enums import ChannelKind, ImportanceHint


class SenderIdentity(BaseModel):
    """Who sent the message: an email address and/or a platform user id."""

    email: str | None = None
    platform_id: str | None = None
    name: str | None = None
    username: str | None = None
    avatar_url: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().lower()
        return value or None

    @property
    def is_empty(self) -> bool:
        return not self.email and not self.platform_id


class Recipient(BaseModel):
    email: str
    name: str | None = None


class AttachmentDescriptor(BaseModel):
    """One attachment as delivered by a provider.

    Either ``content`` (raw bytes) is present, or a ``fetch_handle`` the
    provider client resolves, or a ``remote_url`` for provider-hosted media.
    """

    filename: str = "attachment"
    mime_type: str = "application/octet-stream"
    size: int = 0
    content: bytes | None = None
    fetch_handle: str | None = None
    remote_url: str | None = None
    content_id: str | None = None
    is_inline: bool = False

    @field_validator("content_id")
    @classmethod
    def _strip_content_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().strip("<>").strip()
        return value or None


class CanonicalInboundMessage(BaseModel):
    """Provider-agnostic normalized representation of one received message."""

    channel_kind: ChannelKind
    provider_message_id: str | None = None
    # Provider's own handle for the stored item (Gmail id, Graph id); used by
    # post-import actions. Not an idempotency key.
    provider_item_id: str | None = None
    conversation_id: str | None = None
    thread_index: str | None = None

    sender: SenderIdentity = Field(default_factory=SenderIdentity)
    to: list[Recipient] = Field(default_factory=list)
    cc: list[Recipient] = Field(default_factory=list)
    bcc: list[Recipient] = Field(default_factory=list)

    subject: str | None = None
    text_body: str | None = None
    html_body: str | None = None
    received_at: datetime | None = None

    in_reply_to: str | None = None
    references: list[str] = Field(default_factory=list)
    importance: ImportanceHint | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    attachments: list[AttachmentDescriptor] = Field(default_factory=list)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def recipients_payload(self) -> dict | None:
        if not (self.to or self.cc or self.bcc):
            return None
        return {
            "to": [r.model_dump() for r in self.to],
            "cc": [r.model_dump() for r in self.cc],
            "bcc": [r.model_dump() for r in self.bcc],
        }
