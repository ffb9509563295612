"""Microsoft Graph (Microsoft 365 / Outlook) adapter and mailbox client."""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timezone

import httpx

from helpdesk.core.config import settings
from helpdesk.db.enums import ChannelKind, ImportanceHint
from helpdesk.schemas.inbound import (
    AttachmentDescriptor,
    CanonicalInboundMessage,
    Recipient,
    SenderIdentity,
)
from helpdesk.services.adapters.base import (
    AdapterError,
    MalformedPayloadError,
    ProviderAuthError,
    importance_from_headers,
    send_provider_request,
)
from helpdesk.utils.normalization import clean_message_id, normalize_email, parse_references

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
FILE_ATTACHMENT_TYPE = "#microsoft.graph.fileAttachment"

MESSAGE_SELECT_FIELDS = ",".join(
    [
        "id",
        "subject",
        "body",
        "from",
        "toRecipients",
        "ccRecipients",
        "bccRecipients",
        "receivedDateTime",
        "internetMessageId",
        "conversationId",
        "conversationIndex",
        "importance",
        "hasAttachments",
        "internetMessageHeaders",
    ]
)

# Graph accepts these well-known names in place of folder ids.
_WELL_KNOWN_FOLDERS = {"inbox", "archive", "deleteditems", "junkemail", "sentitems", "drafts"}


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _recipients(items: list | None) -> list[Recipient]:
    out: list[Recipient] = []
    for item in items or []:
        address = (item or {}).get("emailAddress") or {}
        email = normalize_email(address.get("address"))
        if email:
            out.append(Recipient(email=email, name=(address.get("name") or "").strip() or None))
    return out


def _file_attachments(items: list | None) -> list[AttachmentDescriptor]:
    out: list[AttachmentDescriptor] = []
    for item in items or []:
        if item.get("@odata.type") != FILE_ATTACHMENT_TYPE:
            continue
        try:
            content = base64.b64decode(item.get("contentBytes") or "")
        except (binascii.Error, ValueError) as exc:
            raise MalformedPayloadError(f"Invalid attachment content: {exc}") from exc
        out.append(
            AttachmentDescriptor(
                filename=item.get("name") or "attachment",
                mime_type=item.get("contentType") or "application/octet-stream",
                size=int(item.get("size") or len(content)),
                content=content,
                content_id=item.get("contentId"),
                is_inline=bool(item.get("isInline")),
            )
        )
    return out


class GraphAdapter:
    """Normalize a Graph ``message`` resource.

    An ``attachments`` list (as returned by ``/messages/{id}/attachments``)
    may be merged into the payload; item and reference attachments are
    ignored.
    """

    def normalize(self, raw: dict, config=None) -> CanonicalInboundMessage:
        if not isinstance(raw, dict) or not raw.get("id"):
            raise MalformedPayloadError("Graph message payload without id")

        headers: dict[str, str] = {}
        for header in raw.get("internetMessageHeaders") or []:
            name = header.get("name")
            if name:
                headers.setdefault(name, str(header.get("value") or ""))
        lowered = {key.lower(): value for key, value in headers.items()}

        body = raw.get("body") or {}
        content = body.get("content") or None
        is_html = str(body.get("contentType") or "").lower() == "html"

        sender = ((raw.get("from") or {}).get("emailAddress")) or {}

        importance = importance_from_headers(headers)
        graph_importance = str(raw.get("importance") or "").lower()
        if importance is None and graph_importance in {hint.value for hint in ImportanceHint}:
            importance = ImportanceHint(graph_importance)

        return CanonicalInboundMessage(
            channel_kind=ChannelKind.EMAIL,
            provider_message_id=clean_message_id(raw.get("internetMessageId")),
            provider_item_id=str(raw["id"]),
            conversation_id=raw.get("conversationId") or None,
            thread_index=lowered.get("thread-index") or raw.get("conversationIndex") or None,
            sender=SenderIdentity(
                email=normalize_email(sender.get("address")),
                name=(sender.get("name") or "").strip() or None,
            ),
            to=_recipients(raw.get("toRecipients")),
            cc=_recipients(raw.get("ccRecipients")),
            bcc=_recipients(raw.get("bccRecipients")),
            subject=(raw.get("subject") or "").strip() or None,
            text_body=None if is_html else content,
            html_body=content if is_html else None,
            received_at=_parse_datetime(raw.get("receivedDateTime")),
            in_reply_to=clean_message_id(lowered.get("in-reply-to")),
            references=parse_references(lowered.get("references")),
            importance=importance,
            headers=headers,
            attachments=_file_attachments(raw.get("attachments")),
        )


class GraphClient:
    """Minimal Graph mail client for polling one mailbox."""

    provider = "Microsoft Graph"

    def __init__(self, access_token: str | None, *, transport: httpx.BaseTransport | None = None):
        if not access_token:
            raise ProviderAuthError("Microsoft 365 channel has no access token")
        self._client = httpx.Client(
            base_url=GRAPH_BASE_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Prefer": 'outlook.body-content-type="html"',
            },
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._adapter = GraphAdapter()
        self._folder_ids: dict[str, str] = {}

    def __enter__(self) -> "GraphClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        return send_provider_request(self._client, method, url, provider=self.provider, **kwargs)

    def _folder_id(self, folder: str) -> str:
        name = (folder or "inbox").strip()
        if name.lower() in _WELL_KNOWN_FOLDERS:
            return name.lower()
        if name not in self._folder_ids:
            escaped = name.replace("'", "''")
            payload = self._request(
                "GET",
                "/me/mailFolders",
                params={"$filter": f"displayName eq '{escaped}'", "$select": "id"},
            ).json()
            folders = payload.get("value") or []
            self._folder_ids[name] = folders[0]["id"] if folders else name
        return self._folder_ids[name]

    def list_message_ids(self, *, folder: str, since: datetime | None) -> list[str]:
        """Ids of messages in ``folder`` received at or after ``since``, oldest first."""
        params = {
            "$select": "id,receivedDateTime",
            "$orderby": "receivedDateTime asc",
            "$top": 50,
        }
        if since is not None:
            stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            params["$filter"] = f"receivedDateTime ge {stamp}"

        message_ids: list[str] = []
        url: str | None = f"/me/mailFolders/{self._folder_id(folder)}/messages"
        while url:
            payload = self._request("GET", url, params=params).json()
            message_ids.extend(str(item["id"]) for item in payload.get("value") or [] if item.get("id"))
            url = payload.get("@odata.nextLink")
            # nextLink already carries the query string.
            params = None
        return message_ids

    def fetch_message(self, message_id: str) -> CanonicalInboundMessage:
        payload = self._request(
            "GET", f"/me/messages/{message_id}", params={"$select": MESSAGE_SELECT_FIELDS}
        ).json()
        if payload.get("hasAttachments"):
            attachments = self._request("GET", f"/me/messages/{message_id}/attachments").json()
            payload["attachments"] = attachments.get("value") or []
        return self._adapter.normalize(payload)

    def move(self, item_id: str, folder: str) -> str | None:
        """Move the message; Graph assigns a new item id, which is returned."""
        payload = self._request(
            "POST",
            f"/me/messages/{item_id}/move",
            json={"destinationId": self._folder_id(folder)},
        ).json()
        return payload.get("id")

    def archive(self, item_id: str) -> str | None:
        try:
            return self.move(item_id, "archive")
        except ProviderAuthError:
            raise
        except AdapterError as exc:
            logger.warning("Graph archive failed, deleting instead: %s", exc)
            self.delete(item_id)
            return None

    def delete(self, item_id: str) -> None:
        self._request("DELETE", f"/me/messages/{item_id}")
