"""Raw RFC 822 adapter (IMAP relays, piped mail, Gmail format=raw)."""

from __future__ import annotations

from datetime import timezone
from email import policy
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from helpdesk.db.enums import ChannelKind
from helpdesk.schemas.inbound import (
    AttachmentDescriptor,
    CanonicalInboundMessage,
    Recipient,
    SenderIdentity,
)
from helpdesk.services.adapters.base import MalformedPayloadError, importance_from_headers
from helpdesk.utils.normalization import (
    clean_message_id,
    normalize_email,
    parse_references,
)


def _recipients(header_value: str) -> list[Recipient]:
    out: list[Recipient] = []
    for name, address in getaddresses([header_value]):
        email = normalize_email(address)
        if email:
            out.append(Recipient(email=email, name=name.strip() or None))
    return out


def _decode_part(part) -> str | None:
    payload = part.get_payload(decode=True)
    if payload is None:
        return None
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


class MimeAdapter:
    """Normalize raw MIME bytes into a canonical inbound message."""

    def normalize(self, raw: bytes | str, config=None) -> CanonicalInboundMessage:
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        if not raw:
            raise MalformedPayloadError("Empty MIME payload")
        message = BytesParser(policy=policy.default).parsebytes(raw)

        headers: dict[str, str] = {}
        for key in message.keys():
            # First occurrence wins, matching how threading headers are read.
            headers.setdefault(key, str(message.get(key)))

        from_list = getaddresses([str(message.get("From") or "")])
        from_name = from_list[0][0].strip() if from_list else ""
        from_email = normalize_email(from_list[0][1]) if from_list else None

        received_at = None
        if message.get("Date"):
            try:
                received_at = parsedate_to_datetime(str(message.get("Date")))
            except (TypeError, ValueError):
                received_at = None
            if received_at is not None and received_at.tzinfo is None:
                received_at = received_at.replace(tzinfo=timezone.utc)

        body_text = None
        body_html = None
        attachments: list[AttachmentDescriptor] = []

        for part in message.walk() if message.is_multipart() else [message]:
            if part.is_multipart():
                continue
            content_disposition = str(part.get("Content-Disposition") or "").lower()
            filename = part.get_filename()
            content_type = part.get_content_type()
            content_id = str(part.get("Content-ID") or "").strip() or None

            if filename or "attachment" in content_disposition or (
                content_id and not content_type.startswith("text/")
            ):
                payload = part.get_payload(decode=True) or b""
                attachments.append(
                    AttachmentDescriptor(
                        filename=filename or "attachment",
                        mime_type=content_type or "application/octet-stream",
                        size=len(payload),
                        content=payload,
                        content_id=content_id,
                        is_inline="inline" in content_disposition or bool(content_id),
                    )
                )
                continue

            if content_type == "text/plain" and body_text is None:
                body_text = _decode_part(part)
            elif content_type == "text/html" and body_html is None:
                body_html = _decode_part(part)

        return CanonicalInboundMessage(
            channel_kind=ChannelKind.EMAIL,
            provider_message_id=clean_message_id(str(message.get("Message-ID") or "")),
            thread_index=str(message.get("Thread-Index") or "").strip() or None,
            sender=SenderIdentity(email=from_email, name=from_name or None),
            to=_recipients(str(message.get("To") or "")),
            cc=_recipients(str(message.get("Cc") or "")),
            bcc=_recipients(str(message.get("Bcc") or "")),
            subject=str(message.get("Subject") or "").strip() or None,
            text_body=body_text,
            html_body=body_html,
            received_at=received_at,
            in_reply_to=clean_message_id(str(message.get("In-Reply-To") or "")),
            references=parse_references(str(message.get("References") or "")),
            importance=importance_from_headers(headers),
            headers=headers,
            attachments=attachments,
        )
