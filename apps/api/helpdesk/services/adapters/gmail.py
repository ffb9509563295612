"""Gmail API adapter and mailbox client."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from email.utils import getaddresses

import httpx

from helpdesk.core.config import settings
from helpdesk.db.enums import ChannelKind
from helpdesk.schemas.inbound import (
    AttachmentDescriptor,
    CanonicalInboundMessage,
    Recipient,
    SenderIdentity,
)
from helpdesk.services.adapters.base import (
    MalformedPayloadError,
    ProviderAuthError,
    importance_from_headers,
    send_provider_request,
)
from helpdesk.services.adapters.mime import MimeAdapter
from helpdesk.utils.normalization import clean_message_id, normalize_email, parse_references

logger = logging.getLogger(__name__)

GMAIL_MESSAGES_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages"
GMAIL_LABELS_URL = "https://gmail.googleapis.com/gmail/v1/users/me/labels"

# Gmail system labels are searched with in:, user labels with label:
_SYSTEM_LABELS = {"INBOX", "SENT", "SPAM", "TRASH", "DRAFT", "STARRED", "IMPORTANT", "UNREAD"}


def _b64url_decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _parse_internal_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _recipients(value: str | None) -> list[Recipient]:
    out: list[Recipient] = []
    for name, address in getaddresses([value or ""]):
        email = normalize_email(address)
        if email:
            out.append(Recipient(email=email, name=name.strip() or None))
    return out


def build_search_query(folder: str | None, since: datetime | None) -> str:
    """Gmail search string for one folder/label, optionally bounded by date."""
    folder = (folder or "INBOX").strip()
    if folder.upper() in _SYSTEM_LABELS:
        parts = [f"in:{folder.lower()}"]
    else:
        parts = [f"label:{folder.replace(' ', '-')}"]
    if since is not None:
        parts.append(f"after:{since.astimezone(timezone.utc):%Y/%m/%d}")
    return " ".join(parts)


class GmailAdapter:
    """Normalize ``users.messages.get`` JSON (format=full or format=raw)."""

    def __init__(self) -> None:
        self._mime = MimeAdapter()

    def normalize(self, raw: dict, config=None) -> CanonicalInboundMessage:
        if not isinstance(raw, dict) or not raw.get("id"):
            raise MalformedPayloadError("Gmail message payload without id")

        if raw.get("raw"):
            message = self._mime.normalize(_b64url_decode(raw["raw"]), config)
            return message.model_copy(
                update={
                    "provider_item_id": str(raw["id"]),
                    "conversation_id": raw.get("threadId") or None,
                    "received_at": message.received_at
                    or _parse_internal_date(raw.get("internalDate")),
                }
            )

        payload = raw.get("payload")
        if not isinstance(payload, dict):
            raise MalformedPayloadError("Gmail message missing payload")

        headers: dict[str, str] = {}
        for header in payload.get("headers") or []:
            name = header.get("name")
            if name:
                headers.setdefault(name, str(header.get("value") or ""))

        def get(name: str) -> str | None:
            wanted = name.lower()
            for key, value in headers.items():
                if key.lower() == wanted:
                    return value
            return None

        text_body: str | None = None
        html_body: str | None = None
        attachments: list[AttachmentDescriptor] = []

        def walk(part: dict) -> None:
            nonlocal text_body, html_body
            mime_type = part.get("mimeType") or ""
            body = part.get("body") or {}
            filename = part.get("filename") or ""
            part_headers = {
                (h.get("name") or "").lower(): str(h.get("value") or "")
                for h in part.get("headers") or []
            }
            content_id = part_headers.get("content-id")
            disposition = part_headers.get("content-disposition", "").lower()

            if filename or body.get("attachmentId"):
                data = body.get("data")
                attachments.append(
                    AttachmentDescriptor(
                        filename=filename or "attachment",
                        mime_type=mime_type or "application/octet-stream",
                        size=int(body.get("size") or 0),
                        content=_b64url_decode(data) if data else None,
                        fetch_handle=body.get("attachmentId"),
                        content_id=content_id,
                        is_inline="inline" in disposition or bool(content_id),
                    )
                )
            elif mime_type == "text/plain" and text_body is None and body.get("data"):
                text_body = _b64url_decode(body["data"]).decode("utf-8", errors="replace")
            elif mime_type == "text/html" and html_body is None and body.get("data"):
                html_body = _b64url_decode(body["data"]).decode("utf-8", errors="replace")

            for child in part.get("parts") or []:
                walk(child)

        walk(payload)

        from_list = getaddresses([get("From") or ""])
        from_name = from_list[0][0].strip() if from_list else ""
        from_email = normalize_email(from_list[0][1]) if from_list else None

        return CanonicalInboundMessage(
            channel_kind=ChannelKind.EMAIL,
            provider_message_id=clean_message_id(get("Message-ID") or get("Message-Id")),
            provider_item_id=str(raw["id"]),
            conversation_id=raw.get("threadId") or None,
            thread_index=(get("Thread-Index") or "").strip() or None,
            sender=SenderIdentity(email=from_email, name=from_name or None),
            to=_recipients(get("To")),
            cc=_recipients(get("Cc")),
            bcc=_recipients(get("Bcc")),
            subject=(get("Subject") or "").strip() or None,
            text_body=text_body,
            html_body=html_body,
            received_at=_parse_internal_date(raw.get("internalDate")),
            in_reply_to=clean_message_id(get("In-Reply-To")),
            references=parse_references(get("References")),
            importance=importance_from_headers(headers),
            headers=headers,
            attachments=attachments,
        )


class GmailClient:
    """Minimal Gmail REST client for polling one mailbox."""

    provider = "Gmail"

    def __init__(self, access_token: str | None, *, transport: httpx.BaseTransport | None = None):
        if not access_token:
            raise ProviderAuthError("Gmail channel has no access token")
        self._client = httpx.Client(
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._adapter = GmailAdapter()
        self._label_ids: dict[str, str] | None = None

    def __enter__(self) -> "GmailClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        return send_provider_request(self._client, method, url, provider=self.provider, **kwargs)

    def list_message_ids(self, *, folder: str, since: datetime | None) -> list[str]:
        """Ids of messages in ``folder`` newer than ``since``, oldest first."""
        query = build_search_query(folder, since)
        message_ids: list[str] = []
        page_token = None
        while True:
            params = {"q": query, "maxResults": 100}
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", GMAIL_MESSAGES_URL, params=params).json()
            for item in payload.get("messages") or []:
                if item.get("id"):
                    message_ids.append(str(item["id"]))
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        # Gmail lists newest first.
        message_ids.reverse()
        return message_ids

    def fetch_message(self, message_id: str) -> CanonicalInboundMessage:
        payload = self._request(
            "GET", f"{GMAIL_MESSAGES_URL}/{message_id}", params={"format": "full"}
        ).json()
        message = self._adapter.normalize(payload)

        resolved = []
        for attachment in message.attachments:
            if attachment.content is None and attachment.fetch_handle:
                data = self._request(
                    "GET",
                    f"{GMAIL_MESSAGES_URL}/{message_id}/attachments/{attachment.fetch_handle}",
                ).json()
                content = _b64url_decode(data.get("data") or "")
                attachment = attachment.model_copy(
                    update={"content": content, "size": len(content)}
                )
            resolved.append(attachment)
        return message.model_copy(update={"attachments": resolved})

    def _label_id(self, name: str) -> str:
        if name.upper() in _SYSTEM_LABELS:
            return name.upper()
        if self._label_ids is None:
            payload = self._request("GET", GMAIL_LABELS_URL).json()
            self._label_ids = {
                str(label.get("name", "")).lower(): str(label.get("id"))
                for label in payload.get("labels") or []
                if label.get("id")
            }
        return self._label_ids.get(name.lower(), name)

    def archive(self, item_id: str) -> str | None:
        self._request(
            "POST",
            f"{GMAIL_MESSAGES_URL}/{item_id}/modify",
            json={"removeLabelIds": ["INBOX"]},
        )
        return None

    def move(self, item_id: str, folder: str) -> str | None:
        """Add the target label and drop INBOX. Gmail ids survive label changes."""
        self._request(
            "POST",
            f"{GMAIL_MESSAGES_URL}/{item_id}/modify",
            json={"addLabelIds": [self._label_id(folder)], "removeLabelIds": ["INBOX"]},
        )
        return None

    def delete(self, item_id: str) -> None:
        self._request("POST", f"{GMAIL_MESSAGES_URL}/{item_id}/trash")
