"""Contact resolution for inbound senders."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk.db.enums import MessagingProvider
from helpdesk.db.models import Contact
from helpdesk.schemas.inbound import SenderIdentity
from helpdesk.utils.normalization import name_from_email

logger = logging.getLogger(__name__)


def placeholder_email(provider: MessagingProvider, platform_id: str) -> str:
    """Address recorded for messaging contacts that never gave us one."""
    return f"{platform_id}@{provider.value}.messaging.local".lower()


def find_contact(
    db: Session,
    organization_id: UUID,
    identity: SenderIdentity,
    provider: MessagingProvider | None,
) -> Contact | None:
    if provider is not None:
        column = getattr(Contact, provider.contact_field)
        return db.scalars(
            select(Contact).where(
                Contact.organization_id == organization_id,
                column == identity.platform_id,
            )
        ).first()
    return db.scalars(
        select(Contact).where(
            Contact.organization_id == organization_id,
            func.lower(Contact.email) == identity.email,
        )
    ).first()


def _backfill(contact: Contact, identity: SenderIdentity) -> None:
    """Fill blank identity fields; never overwrite what an agent entered."""
    if not contact.name and identity.name:
        contact.name = identity.name
    if not contact.username and identity.username:
        contact.username = identity.username
    if not contact.avatar_url and identity.avatar_url:
        contact.avatar_url = identity.avatar_url


def _new_contact(
    organization_id: UUID,
    identity: SenderIdentity,
    provider: MessagingProvider | None,
) -> Contact:
    contact = Contact(
        organization_id=organization_id,
        username=identity.username,
        avatar_url=identity.avatar_url,
    )
    if provider is not None:
        setattr(contact, provider.contact_field, identity.platform_id)
        contact.email = identity.email or placeholder_email(provider, identity.platform_id)
        contact.name = identity.name or identity.username or f"{provider.label} user"
    else:
        contact.email = identity.email
        contact.name = identity.name or name_from_email(identity.email)
    return contact


def resolve_contact(
    db: Session,
    *,
    organization_id: UUID,
    identity: SenderIdentity,
    provider: MessagingProvider | None = None,
) -> tuple[Contact, bool]:
    """
    Map a sender identity to a Contact in the organization.

    Email senders match on lowercased address; messaging senders match on
    the provider's platform-id column. Returns (contact, created).

    Concurrent creation of the same identity is settled by the per-org
    unique constraints: the losing insert is rolled back to its savepoint
    and the winner's row is returned.
    """
    if provider is not None and not identity.platform_id:
        raise ValueError("Messaging sender has no platform id")
    if provider is None and not identity.email:
        raise ValueError("Email sender has no address")

    contact = find_contact(db, organization_id, identity, provider)
    if contact is not None:
        _backfill(contact, identity)
        return contact, False

    contact = _new_contact(organization_id, identity, provider)
    try:
        with db.begin_nested():
            db.add(contact)
            db.flush()
    except IntegrityError:
        logger.info("Contact created concurrently, reusing existing row")
        contact = find_contact(db, organization_id, identity, provider)
        if contact is None:
            raise
        _backfill(contact, identity)
        return contact, False
    return contact, True
