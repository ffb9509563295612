"""Meta messaging webhook adapters (Instagram DM, Messenger, WhatsApp)."""

from __future__ import annotations

import logging
import mimetypes
from datetime import datetime, timezone
from urllib.parse import urlsplit

from helpdesk.db.enums import ChannelKind
from helpdesk.schemas.inbound import (
    AttachmentDescriptor,
    CanonicalInboundMessage,
    SenderIdentity,
)
from helpdesk.services.adapters.base import MalformedPayloadError

logger = logging.getLogger(__name__)

WEBHOOK_OBJECTS = {"instagram", "page", "whatsapp_business_account"}

_DEFAULT_MIME_TYPES = {
    "image": "image/jpeg",
    "video": "video/mp4",
    "audio": "audio/mpeg",
    "file": "application/octet-stream",
    "document": "application/octet-stream",
    "sticker": "image/webp",
}


def _timestamp(value, *, millis: bool) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        seconds = int(value) / 1000 if millis else int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def conversation_id_for(sender_id: str, recipient_id: str) -> str:
    """Stable id for a two-party conversation, independent of direction."""
    return "_".join(sorted([str(sender_id), str(recipient_id)]))


def entry_ids(payload: dict) -> set[str]:
    """Account ids a webhook payload is addressed to (page/IG id or WA phone-number id)."""
    ids: set[str] = set()
    for entry in payload.get("entry") or []:
        if payload.get("object") == "whatsapp_business_account":
            for change in entry.get("changes") or []:
                metadata = (change.get("value") or {}).get("metadata") or {}
                if metadata.get("phone_number_id"):
                    ids.add(str(metadata["phone_number_id"]))
        elif entry.get("id") is not None:
            ids.add(str(entry["id"]))
    return ids


class MetaMessagingAdapter:
    """Instagram (``object=instagram``) and Messenger (``object=page``) events."""

    def extract_events(self, payload: dict, config) -> list[dict]:
        """Inbound message events for this channel, in delivery order."""
        if payload.get("object") not in ("instagram", "page"):
            raise MalformedPayloadError(f"Unexpected webhook object: {payload.get('object')}")

        events: list[dict] = []
        for entry in payload.get("entry") or []:
            if str(entry.get("id")) != config.external_id:
                continue
            for event in entry.get("messaging") or []:
                message = event.get("message")
                sender_id = str((event.get("sender") or {}).get("id") or "")
                if not message:
                    continue
                if message.get("is_echo"):
                    continue
                if sender_id == config.external_id:
                    continue
                events.append(event)
        return events

    def normalize(self, raw: dict, config) -> CanonicalInboundMessage:
        message = raw.get("message") or {}
        sender_id = str((raw.get("sender") or {}).get("id") or "")
        recipient_id = str((raw.get("recipient") or {}).get("id") or config.external_id)
        if not message.get("mid"):
            raise MalformedPayloadError("Messaging event without message id")

        attachments: list[AttachmentDescriptor] = []
        for index, item in enumerate(message.get("attachments") or [], start=1):
            kind = item.get("type") or "file"
            url = (item.get("payload") or {}).get("url")
            filename = urlsplit(url).path.rsplit("/", 1)[-1] if url else ""
            mime_type = mimetypes.guess_type(filename)[0] if filename else None
            attachments.append(
                AttachmentDescriptor(
                    filename=filename or f"{kind}_{index}",
                    mime_type=mime_type or _DEFAULT_MIME_TYPES.get(kind, "application/octet-stream"),
                    remote_url=url,
                )
            )

        return CanonicalInboundMessage(
            channel_kind=ChannelKind.MESSAGING,
            provider_message_id=str(message["mid"]),
            conversation_id=conversation_id_for(sender_id, recipient_id) if sender_id else None,
            sender=SenderIdentity(platform_id=sender_id or None),
            text_body=message.get("text") or None,
            received_at=_timestamp(raw.get("timestamp"), millis=True),
            attachments=attachments,
        )


class WhatsAppAdapter:
    """WhatsApp Cloud API events (``object=whatsapp_business_account``)."""

    def extract_events(self, payload: dict, config) -> list[dict]:
        if payload.get("object") != "whatsapp_business_account":
            raise MalformedPayloadError(f"Unexpected webhook object: {payload.get('object')}")

        events: list[dict] = []
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                metadata = value.get("metadata") or {}
                if str(metadata.get("phone_number_id")) != config.external_id:
                    continue
                names = {
                    str(contact.get("wa_id")): (contact.get("profile") or {}).get("name")
                    for contact in value.get("contacts") or []
                }
                for message in value.get("messages") or []:
                    events.append(
                        {
                            "message": message,
                            "metadata": metadata,
                            "profile_name": names.get(str(message.get("from"))),
                        }
                    )
        return events

    def normalize(self, raw: dict, config) -> CanonicalInboundMessage:
        message = raw.get("message") or {}
        sender = str(message.get("from") or "")
        if not message.get("id"):
            raise MalformedPayloadError("WhatsApp message without id")

        kind = message.get("type") or "text"
        text = None
        attachments: list[AttachmentDescriptor] = []
        if kind == "text":
            text = (message.get("text") or {}).get("body")
        elif kind == "button":
            text = (message.get("button") or {}).get("text")
        elif kind == "interactive":
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            text = reply.get("title")
        elif kind in _DEFAULT_MIME_TYPES:
            media = message.get(kind) or {}
            text = media.get("caption")
            mime_type = media.get("mime_type") or _DEFAULT_MIME_TYPES[kind]
            extension = mimetypes.guess_extension(mime_type.split(";")[0].strip()) or ""
            attachments.append(
                AttachmentDescriptor(
                    filename=media.get("filename") or f"{kind}_{media.get('id', 'media')}{extension}",
                    mime_type=mime_type,
                    fetch_handle=media.get("id"),
                )
            )
        else:
            logger.info("Unsupported WhatsApp message type: %s", kind)

        business_phone = str((raw.get("metadata") or {}).get("phone_number_id") or config.external_id)
        return CanonicalInboundMessage(
            channel_kind=ChannelKind.MESSAGING,
            provider_message_id=str(message["id"]),
            conversation_id=conversation_id_for(sender, business_phone) if sender else None,
            sender=SenderIdentity(platform_id=sender or None, name=raw.get("profile_name")),
            text_body=text or None,
            received_at=_timestamp(message.get("timestamp"), millis=False),
            attachments=attachments,
        )
