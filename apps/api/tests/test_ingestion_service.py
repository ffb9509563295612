import os

import pytest
from sqlalchemy import func, select

from helpdesk.core.config import settings
from helpdesk.db.enums import ActivityType, ImportanceHint
from helpdesk.db.models import Attachment, Contact, Message, Ticket, TicketActivity
from helpdesk.schemas.inbound import AttachmentDescriptor, SenderIdentity
from helpdesk.services import ingestion_service
from helpdesk.services.ingestion_service import (
    IngestionError,
    MissingProviderIdError,
    MissingSenderIdentityError,
    ingest_message,
)
from helpdesk.services.sanitizer import INTERNAL_IMAGE_CLASS


def _count(db, model, *criteria) -> int:
    return db.scalar(select(func.count(model.id)).where(*criteria))


def _activity_types(db, ticket_id) -> set[str]:
    return set(
        db.scalars(select(TicketActivity.type).where(TicketActivity.ticket_id == ticket_id)).all()
    )


# =============================================================================
# Email
# =============================================================================

class TestEmailIngestion:
    def test_first_message_creates_contact_ticket_and_message(self, db, org_defaults, email_channel, make_email):
        result = ingest_message(db, make_email(), email_channel)

        assert result.ticket_created is True
        assert result.duplicate is False
        ticket = result.ticket
        assert ticket.ticket_number == "TKT-00001"
        assert ticket.subject == "Printer on fire"
        assert ticket.email_channel_id == email_channel.id
        assert ticket.email_original_message_id == "item-msg-1@example.com"
        assert ticket.status_id == org_defaults.open_status.id
        assert ticket.folder_id is None

        contact = db.get(Contact, ticket.contact_id)
        assert contact.email == "alice@example.com"
        assert contact.name == "Alice Example"

        message = result.message
        assert message.email_message_id == "msg-1@example.com"
        assert message.email_provider_id == "item-msg-1@example.com"
        assert message.is_from_contact is True
        assert message.body == "The printer is on fire."
        assert message.body_html == "<p>The printer is on fire.</p>"
        assert _activity_types(db, ticket.id) == {
            ActivityType.CREATED.value,
            ActivityType.MESSAGE_ADDED.value,
        }

    def test_same_message_twice_is_a_no_op(self, db, email_channel, make_email):
        first = ingest_message(db, make_email(), email_channel)
        second = ingest_message(db, make_email(message_id="<msg-1@example.com>"), email_channel)

        assert second.duplicate is True
        assert second.message is None
        assert second.ticket.id == first.ticket.id
        assert _count(db, Message, Message.ticket_id == first.ticket.id) == 1
        assert _count(db, Ticket, Ticket.organization_id == email_channel.organization_id) == 1

    def test_concurrent_redelivery_is_caught_by_unique_key(self, db, email_channel, make_email, monkeypatch):
        first = ingest_message(db, make_email(), email_channel)

        real_find = ingestion_service.find_existing_message
        calls = []

        def find_missing_once(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                return None
            return real_find(*args, **kwargs)

        monkeypatch.setattr(ingestion_service, "find_existing_message", find_missing_once)

        # No thread signals, so the losing insert also built a fresh ticket.
        second = ingest_message(db, make_email(), email_channel)

        assert second.duplicate is True
        assert second.message is None
        assert second.ticket.id == first.ticket.id
        assert len(calls) == 2
        org_id = email_channel.organization_id
        assert _count(db, Message, Message.organization_id == org_id) == 1
        assert _count(db, Ticket, Ticket.organization_id == org_id) == 1

        monkeypatch.setattr(ingestion_service, "find_existing_message", real_find)
        third = ingest_message(
            db, make_email("other@example.com", sender="bob@example.com", subject="Other"), email_channel
        )
        assert third.ticket.ticket_number == "TKT-00002"

    def test_unrelated_messages_get_sequential_tickets(self, db, email_channel, make_email):
        first = ingest_message(db, make_email("one@example.com", subject="First"), email_channel)
        second = ingest_message(
            db, make_email("two@example.com", sender="bob@example.com", subject="Second"), email_channel
        )

        assert first.ticket.ticket_number == "TKT-00001"
        assert second.ticket.ticket_number == "TKT-00002"
        assert first.ticket.contact_id != second.ticket.contact_id

    def test_reply_lands_on_existing_ticket(self, db, email_channel, make_email):
        first = ingest_message(db, make_email(), email_channel)
        reply = ingest_message(
            db,
            make_email("reply@example.com", subject="Re: Printer on fire", in_reply_to="<msg-1@example.com>"),
            email_channel,
        )

        assert reply.ticket_created is False
        assert reply.ticket.id == first.ticket.id
        assert reply.reopened is False
        assert _count(db, Message, Message.ticket_id == first.ticket.id) == 2

    def test_reply_to_closed_ticket_reopens_it(self, db, org_defaults, email_channel, make_email):
        ticket = ingest_message(db, make_email(), email_channel).ticket
        ticket.status_id = org_defaults.closed_status.id
        ticket.folder_id = org_defaults.solved_folder.id
        ticket.resolved_at = ticket.created_at
        db.flush()

        reply = ingest_message(
            db, make_email("reply@example.com", in_reply_to="<msg-1@example.com>"), email_channel
        )

        assert reply.reopened is True
        assert ticket.status_id == org_defaults.open_status.id
        assert ticket.resolved_at is None
        assert ticket.folder_id is None
        assert ActivityType.REOPENED.value in _activity_types(db, ticket.id)

    def test_reply_fills_missing_thread_id(self, db, email_channel, make_email):
        ticket = ingest_message(db, make_email(), email_channel).ticket

        ingest_message(
            db,
            make_email("reply@example.com", in_reply_to="msg-1@example.com", conversation_id="thread-9"),
            email_channel,
        )

        assert ticket.email_thread_id == "thread-9"

    def test_provider_item_id_is_the_fallback_key(self, db, email_channel, make_email):
        result = ingest_message(
            db, make_email(message_id=None, provider_item_id="18c2f0a1b2"), email_channel
        )

        assert result.message.email_message_id == "18c2f0a1b2"

    def test_quoted_history_is_stripped(self, db, email_channel, make_email):
        html = (
            "<div>Thanks, that worked.</div>"
            '<div class="gmail_quote">On Mon, Alice wrote:<blockquote>old text</blockquote></div>'
        )

        result = ingest_message(db, make_email(html_body=html, text_body=None), email_channel)

        assert "old text" not in result.message.body_html
        assert "Thanks, that worked." in result.message.body_html
        assert result.message.body == "Thanks, that worked."

    def test_unsafe_html_is_sanitized(self, db, email_channel, make_email):
        html = '<p onclick="x()">Hi</p><script>alert(1)</script><img src="https://tracker.example/p.gif">'

        result = ingest_message(db, make_email(html_body=html), email_channel)

        assert result.message.body_html == "<p>Hi</p>[Image]"

    def test_inline_and_regular_attachments(self, db, email_channel, make_email):
        message = make_email(
            html_body='<p>See logo <img src="cid:img1" alt="logo"></p>',
            attachments=[
                AttachmentDescriptor(
                    filename="logo.png",
                    mime_type="image/png",
                    content=b"\x89PNG fake",
                    content_id="<img1>",
                    is_inline=True,
                ),
                AttachmentDescriptor(
                    filename="report.pdf", mime_type="application/pdf", content=b"%PDF-1.4"
                ),
                AttachmentDescriptor(filename="empty.txt", content=b""),
            ],
        )

        result = ingest_message(db, message, email_channel)

        rows = db.scalars(
            select(Attachment).where(Attachment.message_id == result.message.id).order_by(Attachment.filename)
        ).all()
        assert [row.filename for row in rows] == ["logo.png", "report.pdf"]
        logo, report = rows
        assert logo.is_inline is True
        assert logo.content_id == "img1"
        assert report.size == len(b"%PDF-1.4")
        assert report.path.startswith(f"attachments/{email_channel.organization_id}/{result.ticket.id}/")
        assert os.path.exists(os.path.join(settings.LOCAL_STORAGE_PATH, report.path))

        body_html = result.message.body_html
        assert "cid:" not in body_html
        assert f'src="/storage/{logo.path}"' in body_html
        assert f'class="{INTERNAL_IMAGE_CLASS}"' in body_html

    def test_urgent_keyword_raises_priority(self, db, org_defaults, email_channel, make_email):
        result = ingest_message(db, make_email(subject="URGENT: site is down"), email_channel)

        assert result.ticket.priority_id == org_defaults.urgent_priority.id
        assert ActivityType.PRIORITY_RAISED.value in _activity_types(db, result.ticket.id)

    @pytest.mark.parametrize(
        "fields",
        [
            {"importance": ImportanceHint.HIGH},
            {"headers": {"X-Priority": "1 (Highest)"}},
            {"headers": {"Importance": "High"}},
        ],
    )
    def test_priority_hints_raise_priority(self, db, org_defaults, email_channel, make_email, fields):
        result = ingest_message(db, make_email(**fields), email_channel)

        assert result.ticket.priority_id == org_defaults.urgent_priority.id

    def test_ordinary_message_keeps_default_priority(self, db, org_defaults, email_channel, make_email):
        result = ingest_message(db, make_email(), email_channel)

        assert result.ticket.priority_id == org_defaults.normal_priority.id
        assert ActivityType.PRIORITY_RAISED.value not in _activity_types(db, result.ticket.id)

    def test_missing_sender_is_rejected(self, db, email_channel, make_email):
        with pytest.raises(MissingSenderIdentityError):
            ingest_message(db, make_email(sender=None), email_channel)

    def test_missing_provider_id_is_rejected(self, db, email_channel, make_email):
        with pytest.raises(MissingProviderIdError):
            ingest_message(db, make_email(message_id=None, provider_item_id=None), email_channel)

    def test_channel_kind_mismatch_is_rejected(self, db, email_channel, make_dm):
        with pytest.raises(IngestionError):
            ingest_message(db, make_dm(), email_channel)


# =============================================================================
# Messaging
# =============================================================================

class TestMessagingIngestion:
    def test_first_dm_creates_ticket(self, db, instagram_channel, make_dm):
        result = ingest_message(db, make_dm(), instagram_channel)

        ticket = result.ticket
        assert result.ticket_created is True
        assert ticket.subject == "Instagram DM: hello there"
        assert ticket.messaging_channel_id == instagram_channel.id
        assert ticket.messaging_conversation_id == "17841400000000_IGSID1"
        assert ticket.messaging_participant_id == "IGSID1"
        assert result.message.messaging_provider_id == "m_1"
        assert result.message.body == "hello there"
        assert result.message.body_html == "hello there"

        contact = db.get(Contact, ticket.contact_id)
        assert contact.instagram_id == "IGSID1"
        assert contact.name == "Instagram DM user"

    def test_follow_up_dm_joins_conversation(self, db, instagram_channel, make_dm):
        first = ingest_message(db, make_dm("m_1"), instagram_channel)
        second = ingest_message(db, make_dm("m_2", text="still there?"), instagram_channel)
        duplicate = ingest_message(db, make_dm("m_2", text="still there?"), instagram_channel)

        assert second.ticket.id == first.ticket.id
        assert duplicate.duplicate is True
        assert _count(db, Message, Message.ticket_id == first.ticket.id) == 2

    def test_concurrent_redelivery_on_open_conversation(self, db, instagram_channel, make_dm, monkeypatch):
        first = ingest_message(db, make_dm("m_1"), instagram_channel)
        real_find = ingestion_service.find_existing_message
        calls = []

        def find_missing_once(*args, **kwargs):
            calls.append(1)
            return None if len(calls) == 1 else real_find(*args, **kwargs)

        monkeypatch.setattr(ingestion_service, "find_existing_message", find_missing_once)

        again = ingest_message(db, make_dm("m_1"), instagram_channel)

        assert again.duplicate is True
        assert again.ticket.id == first.ticket.id
        assert _count(db, Message, Message.ticket_id == first.ticket.id) == 1

    def test_different_sender_gets_own_ticket(self, db, instagram_channel, make_dm):
        first = ingest_message(db, make_dm("m_1"), instagram_channel)
        other = ingest_message(db, make_dm("m_2", sender_id="IGSID2"), instagram_channel)

        assert other.ticket_created is True
        assert other.ticket.id != first.ticket.id

    def test_long_text_is_truncated_in_subject(self, db, instagram_channel, make_dm):
        text = "a" * 80

        result = ingest_message(db, make_dm(text=text), instagram_channel)

        assert result.ticket.subject == "Instagram DM: " + "a" * 47 + "..."
        assert result.message.body == text

    def test_attachment_only_dm(self, db, whatsapp_channel, make_dm):
        message = make_dm(
            "wamid.1",
            sender_id="31612345678",
            text=None,
            sender=SenderIdentity(platform_id="31612345678", name="Jan"),
            conversation_id="1234567890_31612345678",
            attachments=[
                AttachmentDescriptor(
                    filename="photo.jpg",
                    mime_type="image/jpeg",
                    remote_url="https://cdn.example/photo.jpg",
                )
            ],
        )

        result = ingest_message(db, message, whatsapp_channel)

        assert result.ticket.subject == "WhatsApp message from Jan"
        assert result.message.body == "[1 attachment(s)]"
        attachment = db.scalars(select(Attachment).where(Attachment.message_id == result.message.id)).one()
        assert attachment.path is None
        assert attachment.remote_url == "https://cdn.example/photo.jpg"

    def test_missing_sender_id_is_rejected(self, db, instagram_channel, make_dm):
        with pytest.raises(MissingSenderIdentityError, match="no sender identity"):
            ingest_message(db, make_dm(sender=SenderIdentity()), instagram_channel)

    def test_dm_sender_without_platform_id_is_rejected(self, db, instagram_channel, make_dm):
        sender = SenderIdentity(email="someone@example.com")

        with pytest.raises(MissingSenderIdentityError, match="no sender id"):
            ingest_message(db, make_dm(sender=sender), instagram_channel)


class TestDerivedFields:
    def test_messaging_subject(self):
        assert ingestion_service.messaging_subject("WhatsApp", "  hi\n there ", "Jan") == "WhatsApp: hi there"
        assert ingestion_service.messaging_subject("WhatsApp", "", None) == "WhatsApp message from unknown sender"

    def test_messaging_body(self):
        assert ingestion_service.messaging_body("hello", 2) == "hello"
        assert ingestion_service.messaging_body("  ", 2) == "[2 attachment(s)]"

    def test_custom_urgent_keywords(self, make_email):
        message = make_email()

        assert ingestion_service.is_urgent(message, "Spoed: kapot", ["spoed"]) is True
        assert ingestion_service.is_urgent(message, "Printer on fire", ["spoed"]) is False
