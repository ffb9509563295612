import pytest
from sqlalchemy import func, insert, select

from helpdesk.db.enums import MessagingProvider
from helpdesk.db.models import Contact
from helpdesk.schemas.inbound import SenderIdentity
from helpdesk.services import contact_service


def _count_contacts(db, org_id) -> int:
    return db.scalar(select(func.count(Contact.id)).where(Contact.organization_id == org_id))


def test_email_sender_creates_contact_named_from_address(db, test_org):
    contact, created = contact_service.resolve_contact(
        db,
        organization_id=test_org.id,
        identity=SenderIdentity(email="jane.doe@example.com"),
    )

    assert created is True
    assert contact.email == "jane.doe@example.com"
    assert contact.name == "Jane Doe"


def test_email_lookup_is_case_insensitive(db, test_org):
    first, _ = contact_service.resolve_contact(
        db, organization_id=test_org.id, identity=SenderIdentity(email="Jane@Example.com")
    )
    second, created = contact_service.resolve_contact(
        db, organization_id=test_org.id, identity=SenderIdentity(email="JANE@example.COM")
    )

    assert created is False
    assert second.id == first.id
    assert _count_contacts(db, test_org.id) == 1


def test_messaging_sender_gets_platform_id_and_placeholder_email(db, test_org):
    contact, created = contact_service.resolve_contact(
        db,
        organization_id=test_org.id,
        identity=SenderIdentity(platform_id="IGSID42", username="jane.ig"),
        provider=MessagingProvider.INSTAGRAM,
    )

    assert created is True
    assert contact.instagram_id == "IGSID42"
    assert contact.email == "igsid42@instagram.messaging.local"
    assert contact.name == "jane.ig"


def test_messaging_sender_without_profile_uses_provider_label(db, test_org):
    contact, _ = contact_service.resolve_contact(
        db,
        organization_id=test_org.id,
        identity=SenderIdentity(platform_id="31612345678"),
        provider=MessagingProvider.WHATSAPP,
    )

    assert contact.whatsapp_phone == "31612345678"
    assert contact.name == "WhatsApp user"


def test_existing_contact_gets_blank_fields_backfilled_only(db, test_org):
    existing = Contact(organization_id=test_org.id, email="bob@example.com", name="Robert")
    db.add(existing)
    db.commit()

    contact, created = contact_service.resolve_contact(
        db,
        organization_id=test_org.id,
        identity=SenderIdentity(
            email="bob@example.com", name="Bobby", avatar_url="https://cdn.example/bob.png"
        ),
    )

    assert created is False
    assert contact.id == existing.id
    assert contact.name == "Robert"
    assert contact.avatar_url == "https://cdn.example/bob.png"


def test_contacts_are_scoped_per_organization(db, test_org):
    from helpdesk.db.models import Organization

    other = Organization(name="Other", slug="other-org")
    db.add(other)
    db.commit()

    mine, _ = contact_service.resolve_contact(
        db, organization_id=test_org.id, identity=SenderIdentity(email="x@example.com")
    )
    theirs, created = contact_service.resolve_contact(
        db, organization_id=other.id, identity=SenderIdentity(email="x@example.com")
    )

    assert created is True
    assert theirs.id != mine.id


def test_missing_identity_is_rejected(db, test_org):
    with pytest.raises(ValueError):
        contact_service.resolve_contact(
            db,
            organization_id=test_org.id,
            identity=SenderIdentity(name="Nobody"),
            provider=MessagingProvider.INSTAGRAM,
        )
    with pytest.raises(ValueError):
        contact_service.resolve_contact(
            db, organization_id=test_org.id, identity=SenderIdentity(name="Nobody")
        )


def test_mixed_case_row_written_outside_the_orm_is_matched(db, test_org):
    db.execute(
        insert(Contact).values(
            organization_id=test_org.id, email="Jane@Example.com", name="Jane Imported"
        )
    )
    db.commit()

    contact, created = contact_service.resolve_contact(
        db, organization_id=test_org.id, identity=SenderIdentity(email="jane@example.com")
    )

    assert created is False
    assert contact.name == "Jane Imported"
    assert _count_contacts(db, test_org.id) == 1


def test_contact_email_is_lowercased_on_write(db, test_org):
    contact = Contact(organization_id=test_org.id, email="  Mixed@Example.COM ")
    db.add(contact)
    db.commit()

    assert contact.email == "mixed@example.com"


def test_concurrent_creation_reuses_the_winning_row(db, test_org, monkeypatch):
    winner = Contact(organization_id=test_org.id, email="race@example.com", name="Winner")
    db.add(winner)
    db.commit()

    real_find = contact_service.find_contact
    calls = []

    def find_missing_once(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            return None
        return real_find(*args, **kwargs)

    monkeypatch.setattr(contact_service, "find_contact", find_missing_once)

    contact, created = contact_service.resolve_contact(
        db,
        organization_id=test_org.id,
        identity=SenderIdentity(email="race@example.com", name="Loser"),
    )

    assert created is False
    assert contact.id == winner.id
    assert contact.name == "Winner"
    assert len(calls) == 2
    assert _count_contacts(db, test_org.id) == 1
