"""Per-provider channel configuration, validated when an adapter is built."""

from __future__ import annotations

from pydantic import BaseModel, field_validator

from helpdesk.db.enums import EmailProvider, MessagingProvider


class EmailChannelConfig(BaseModel):
    provider: EmailProvider
    email_address: str
    access_token: str | None = None
    fetch_folder: str = "INBOX"

    @field_validator("email_address")
    @classmethod
    def _lower(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("email_address must contain '@'")
        return value

    @classmethod
    def from_channel(cls, channel) -> "EmailChannelConfig":
        return cls(
            provider=channel.provider,
            email_address=channel.email_address,
            access_token=channel.access_token,
            fetch_folder=channel.fetch_folder or "INBOX",
        )


class MessagingChannelConfig(BaseModel):
    provider: MessagingProvider
    external_id: str
    access_token: str | None = None

    @field_validator("external_id")
    @classmethod
    def _required(cls, value: str) -> str:
        value = str(value).strip()
        if not value:
            raise ValueError("external_id is required")
        return value

    @classmethod
    def from_channel(cls, channel) -> "MessagingChannelConfig":
        return cls(
            provider=channel.provider,
            external_id=channel.external_id,
            access_token=channel.access_token,
        )
