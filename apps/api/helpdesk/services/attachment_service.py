"""Attachment persistence for inbound messages."""

import io
import logging
import os
import re
import uuid
from typing import BinaryIO

import boto3
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.db.models import Attachment, Message
from helpdesk.schemas.inbound import AttachmentDescriptor

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 200

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


# =============================================================================
# Storage Backend
# =============================================================================

def _get_s3_client():
    """Get boto3 S3 client."""
    return boto3.client("s3", region_name=settings.S3_REGION)


def _get_storage_backend() -> str:
    """Get configured storage backend."""
    return settings.STORAGE_BACKEND


def _get_local_storage_path() -> str:
    """Get local storage directory path."""
    path = settings.LOCAL_STORAGE_PATH
    os.makedirs(path, exist_ok=True)
    return path


# =============================================================================
# File Operations
# =============================================================================

def safe_filename(filename: str | None) -> str:
    """Filesystem/URL-safe version of a provider-supplied filename."""
    cleaned = _UNSAFE_FILENAME_RE.sub("_", os.path.basename(filename or "")).strip("._")
    return (cleaned or "attachment")[:MAX_FILENAME_LENGTH]


def build_storage_key(organization_id: uuid.UUID, ticket_id: uuid.UUID, filename: str) -> str:
    return f"attachments/{organization_id}/{ticket_id}/{uuid.uuid4().hex}_{safe_filename(filename)}"


def public_url(storage_key: str) -> str:
    """URL under which a stored attachment is served (own-storage for the sanitizer)."""
    return f"{settings.storage_url_prefix}/{storage_key}"


def store_file(storage_key: str, file: BinaryIO) -> None:
    """Store file to configured backend."""
    backend = _get_storage_backend()

    if backend == "s3":
        s3 = _get_s3_client()
        s3.upload_fileobj(file, settings.S3_BUCKET, storage_key)
    else:
        # Local storage
        path = os.path.join(_get_local_storage_path(), storage_key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            file.seek(0)
            f.write(file.read())


# =============================================================================
# Message attachments
# =============================================================================

def prepare_attachments(descriptors: list[AttachmentDescriptor]) -> list[AttachmentDescriptor]:
    """Drop descriptors that carry neither bytes nor a remote location."""
    prepared = []
    for descriptor in descriptors:
        if descriptor.content:
            prepared.append(descriptor)
        elif descriptor.content is None and (descriptor.remote_url or descriptor.fetch_handle):
            prepared.append(descriptor)
        else:
            logger.info("Skipping empty attachment %s", descriptor.filename)
    return prepared


def create_message_attachments(
    db: Session,
    *,
    message: Message,
    descriptors: list[AttachmentDescriptor],
) -> list[Attachment]:
    """
    Persist attachments for a freshly inserted message.

    Bytes go to the storage backend under
    attachments/{org_id}/{ticket_id}/{uuid}_{filename}. URL-only messaging
    media is recorded without bytes.
    """
    created: list[Attachment] = []
    for descriptor in descriptors:
        path = None
        size = descriptor.size
        if descriptor.content:
            path = build_storage_key(message.organization_id, message.ticket_id, descriptor.filename)
            store_file(path, io.BytesIO(descriptor.content))
            size = len(descriptor.content)

        attachment = Attachment(
            organization_id=message.organization_id,
            message_id=message.id,
            filename=descriptor.filename[:255],
            mime_type=descriptor.mime_type,
            size=size,
            path=path,
            remote_url=descriptor.remote_url,
            content_id=descriptor.content_id,
            is_inline=descriptor.is_inline,
        )
        db.add(attachment)
        created.append(attachment)
    db.flush()
    return created


def replace_inline_references(html: str | None, attachments: list[Attachment]) -> str | None:
    """Point ``cid:`` references at the stored inline attachments."""
    if not html:
        return html
    for attachment in attachments:
        if not attachment.content_id or not attachment.path:
            continue
        url = public_url(attachment.path)
        pattern = re.compile(r"cid:<?" + re.escape(attachment.content_id) + r">?", re.IGNORECASE)
        html = pattern.sub(url, html)
    return html
