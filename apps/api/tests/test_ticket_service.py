from datetime import datetime, timezone

from sqlalchemy import select, update

from helpdesk.db.enums import ActivityType, MessageKind
from helpdesk.db.models import Contact, OrganizationSettings, Ticket, TicketActivity
from helpdesk.services import ticket_service


def _contact(db, org_id, email="carol@example.com") -> Contact:
    contact = Contact(organization_id=org_id, email=email, name="Carol")
    db.add(contact)
    db.flush()
    return contact


def _activity_types(db, ticket_id) -> list[str]:
    return list(
        db.scalars(
            select(TicketActivity.type)
            .where(TicketActivity.ticket_id == ticket_id)
            .order_by(TicketActivity.created_at, TicketActivity.id)
        ).all()
    )


class TestTicketNumbers:
    def test_placeholders_are_rendered(self):
        number = ticket_service.format_ticket_number(
            "{prefix}-{yyyy}{mm}{dd}-{number}",
            prefix="HD",
            number=7,
            padding=4,
            now=datetime(2025, 3, 9, tzinfo=timezone.utc),
        )

        assert number == "HD-20250309-0007"

    def test_short_date_placeholders(self):
        number = ticket_service.format_ticket_number(
            "{yy}/{m}/{d}-{number}",
            prefix="X",
            number=12,
            padding=1,
            now=datetime(2025, 3, 9, tzinfo=timezone.utc),
        )

        assert number == "25/3/9-12"

    def test_random_placeholder(self):
        number = ticket_service.format_ticket_number(
            "{prefix}-{random}",
            prefix="R",
            number=1,
            padding=5,
            now=datetime.now(timezone.utc),
        )

        suffix = number.split("-", 1)[1]
        assert len(suffix) == 6
        assert all(ch in ticket_service.RANDOM_ALPHABET for ch in suffix)

    def test_sequence_advances(self, db, org_defaults):
        org_id = org_defaults.org.id

        first = ticket_service.generate_ticket_number(db, org_id)
        second = ticket_service.generate_ticket_number(db, org_id)

        assert first == "TKT-00001"
        assert second == "TKT-00002"

    def test_numbers_already_in_use_are_skipped(self, db, org_defaults):
        org_id = org_defaults.org.id
        contact = _contact(db, org_id)
        db.add(
            Ticket(
                organization_id=org_id,
                ticket_number="TKT-00001",
                subject="Imported",
                contact_id=contact.id,
            )
        )
        db.flush()

        number = ticket_service.generate_ticket_number(db, org_id)

        assert number == "TKT-00002"
        assert org_defaults.settings.next_ticket_number == 3

    def test_locked_read_sees_counter_advanced_elsewhere(self, db, org_defaults):
        org_id = org_defaults.org.id
        loaded = ticket_service.get_org_settings(db, org_id)
        assert loaded.next_ticket_number == 1

        # Another transaction moved the counter; the loaded row is now stale.
        db.execute(
            update(OrganizationSettings)
            .where(OrganizationSettings.organization_id == org_id)
            .values(next_ticket_number=7)
            .execution_options(synchronize_session=False)
        )

        number = ticket_service.generate_ticket_number(db, org_id)

        assert number == "TKT-00007"
        assert loaded.next_ticket_number == 8

    def test_settings_row_is_created_on_demand(self, db, test_org):
        number = ticket_service.generate_ticket_number(db, test_org.id)

        assert number == "TKT-00001"


class TestCreateTicket:
    def test_defaults_and_sla_are_applied(self, db, org_defaults):
        org_id = org_defaults.org.id
        contact = _contact(db, org_id)

        ticket = ticket_service.create_ticket(
            db,
            organization_id=org_id,
            contact=contact,
            subject="Broken",
            source="gmail",
        )

        assert ticket.status_id == org_defaults.open_status.id
        assert ticket.priority_id == org_defaults.normal_priority.id
        assert ticket.sla_id == org_defaults.sla.id
        assert ticket.folder_id is None
        assert ticket.sla_first_response_due_at is not None
        hours = (ticket.sla_resolution_due_at - ticket.created_at).total_seconds() / 3600
        assert round(hours) == 24
        assert _activity_types(db, ticket.id) == [ActivityType.CREATED.value]

    def test_contact_sla_overrides_org_default(self, db, org_defaults):
        from helpdesk.db.models import Sla

        org_id = org_defaults.org.id
        vip = Sla(organization_id=org_id, name="VIP", first_response_hours=1)
        db.add(vip)
        db.flush()
        contact = _contact(db, org_id)
        contact.sla_id = vip.id

        ticket = ticket_service.create_ticket(
            db, organization_id=org_id, contact=contact, subject="Help", source="gmail"
        )

        assert ticket.sla_id == vip.id
        assert ticket.sla_resolution_due_at is None

    def test_urgent_priority_prefers_urgent_over_high(self, db, org_defaults):
        urgent = ticket_service.find_urgent_priority(db, org_defaults.org.id)

        assert urgent.id == org_defaults.urgent_priority.id


class TestReplyLifecycle:
    def _ticket(self, db, org_defaults) -> Ticket:
        contact = _contact(db, org_defaults.org.id)
        return ticket_service.create_ticket(
            db,
            organization_id=org_defaults.org.id,
            contact=contact,
            subject="Lifecycle",
            source="gmail",
        )

    def test_customer_reply_reopens_closed_ticket(self, db, org_defaults):
        ticket = self._ticket(db, org_defaults)
        now = datetime.now(timezone.utc)
        ticket.status_id = org_defaults.closed_status.id
        ticket.resolved_at = now
        ticket.closed_at = now
        ticket.folder_id = org_defaults.solved_folder.id
        db.flush()

        reopened = ticket_service.apply_reply_lifecycle(
            db, ticket, message_id=ticket.id, kind=MessageKind.CUSTOMER_REPLY
        )

        assert reopened is True
        assert ticket.status_id == org_defaults.open_status.id
        assert ticket.resolved_at is None
        assert ticket.closed_at is None
        assert ticket.folder_id is None
        assert ActivityType.REOPENED.value in _activity_types(db, ticket.id)

    def test_reply_to_open_ticket_leaves_status_alone(self, db, org_defaults):
        ticket = self._ticket(db, org_defaults)
        ticket.status_id = org_defaults.pending_status.id
        ticket.folder_id = org_defaults.inbox_folder.id
        db.flush()

        reopened = ticket_service.apply_reply_lifecycle(
            db, ticket, message_id=ticket.id, kind=MessageKind.CUSTOMER_REPLY
        )

        assert reopened is False
        assert ticket.status_id == org_defaults.pending_status.id
        assert ticket.folder_id == org_defaults.inbox_folder.id
        assert ActivityType.REOPENED.value not in _activity_types(db, ticket.id)

    def test_agent_reply_sets_first_response_once(self, db, org_defaults):
        ticket = self._ticket(db, org_defaults)

        ticket_service.apply_reply_lifecycle(
            db, ticket, message_id=ticket.id, kind=MessageKind.AGENT_REPLY
        )
        first = ticket.first_response_at
        ticket_service.apply_reply_lifecycle(
            db, ticket, message_id=ticket.id, kind=MessageKind.AGENT_REPLY
        )

        assert first is not None
        assert ticket.first_response_at == first

    def test_note_does_not_reopen(self, db, org_defaults):
        ticket = self._ticket(db, org_defaults)
        ticket.status_id = org_defaults.closed_status.id
        db.flush()

        reopened = ticket_service.apply_reply_lifecycle(
            db, ticket, message_id=ticket.id, kind=MessageKind.NOTE
        )

        assert reopened is False
        assert ticket.status_id == org_defaults.closed_status.id
        assert ActivityType.MESSAGE_ADDED.value in _activity_types(db, ticket.id)
        assert ActivityType.REOPENED.value not in _activity_types(db, ticket.id)
