"""
Test configuration and fixtures.

Provides:
- SQLite in-memory schema (unless DATABASE_URL points elsewhere)
- Database session with savepoint (rollback after each test)
- Organization defaults, email and messaging channels
- Canonical message factories
- HTTPX AsyncClient bound to the app
"""
import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ["TESTING"] = "1"
os.environ["META_APP_SECRET"] = "test-app-secret"
os.environ["META_VERIFY_TOKEN"] = "test-verify-token"
os.environ["META_TEST_MODE"] = "False"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOCAL_STORAGE_PATH"] = tempfile.mkdtemp(prefix="helpdesk-test-")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from helpdesk.core.deps import get_db
from helpdesk.db.base import Base
from helpdesk.db.enums import ChannelKind, EmailProvider, MessagingProvider
from helpdesk.db.models import (
    EmailChannel,
    MessagingChannel,
    Organization,
    OrganizationSettings,
    Priority,
    Sla,
    Status,
    TicketFolder,
)
from helpdesk.db.session import SessionLocal, engine
from helpdesk.main import app
from helpdesk.schemas.inbound import CanonicalInboundMessage, SenderIdentity


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def _schema() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session with savepoint for test isolation.

    App code calls commit() and rollback() freely; each one only ends the
    current SAVEPOINT, and the outer transaction is rolled back at the end.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = SessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization."""
    org = Organization(
        id=uuid.uuid4(),
        name="Acme Support",
        slug=f"acme-{uuid.uuid4().hex[:8]}",
    )
    db.add(org)
    db.commit()
    return org


@dataclass
class OrgDefaults:
    """Statuses, priorities, SLA and folders seeded for one organization."""
    org: Organization
    settings: OrganizationSettings
    open_status: Status
    pending_status: Status
    closed_status: Status
    normal_priority: Priority
    high_priority: Priority
    urgent_priority: Priority
    sla: Sla
    inbox_folder: TicketFolder
    solved_folder: TicketFolder


@pytest.fixture(scope="function")
def org_defaults(db: Session, test_org: Organization) -> OrgDefaults:
    def status(name, slug, *, default=False, closed=False, order=0):
        return Status(
            organization_id=test_org.id,
            name=name,
            slug=slug,
            is_default=default,
            is_closed=closed,
            sort_order=order,
        )

    def priority(name, slug, *, default=False, order=0):
        return Priority(
            organization_id=test_org.id,
            name=name,
            slug=slug,
            is_default=default,
            sort_order=order,
        )

    open_status = status("Open", "open", default=True, order=1)
    pending_status = status("Pending", "pending", order=2)
    closed_status = status("Closed", "closed", closed=True, order=3)
    normal_priority = priority("Normal", "normal", default=True, order=2)
    high_priority = priority("High", "high", order=3)
    urgent_priority = priority("Urgent", "urgent", order=4)
    sla = Sla(
        organization_id=test_org.id,
        name="Standard",
        first_response_hours=4,
        resolution_hours=24,
        is_default=True,
    )
    inbox_folder = TicketFolder(
        organization_id=test_org.id, name="Inbox", is_system=True, is_default=True
    )
    solved_folder = TicketFolder(organization_id=test_org.id, name="Solved", is_system=True)
    db.add_all(
        [
            open_status,
            pending_status,
            closed_status,
            priority("Low", "low", order=1),
            normal_priority,
            high_priority,
            urgent_priority,
            sla,
            inbox_folder,
            solved_folder,
        ]
    )
    db.flush()

    org_settings = OrganizationSettings(
        organization_id=test_org.id,
        ticket_prefix="TKT",
        ticket_number_format="{prefix}-{number}",
        ticket_number_padding=5,
        next_ticket_number=1,
        default_status_id=open_status.id,
        default_priority_id=normal_priority.id,
        default_sla_id=sla.id,
    )
    db.add(org_settings)
    db.commit()

    return OrgDefaults(
        org=test_org,
        settings=org_settings,
        open_status=open_status,
        pending_status=pending_status,
        closed_status=closed_status,
        normal_priority=normal_priority,
        high_priority=high_priority,
        urgent_priority=urgent_priority,
        sla=sla,
        inbox_folder=inbox_folder,
        solved_folder=solved_folder,
    )


# =============================================================================
# Channel Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def email_channel(db: Session, org_defaults: OrgDefaults) -> EmailChannel:
    channel = EmailChannel(
        organization_id=org_defaults.org.id,
        name="Support mailbox",
        provider=EmailProvider.GMAIL,
        email_address="support@acme.test",
        access_token="gmail-token",
    )
    db.add(channel)
    db.commit()
    return channel


@pytest.fixture(scope="function")
def instagram_channel(db: Session, org_defaults: OrgDefaults) -> MessagingChannel:
    channel = MessagingChannel(
        organization_id=org_defaults.org.id,
        name="Acme on Instagram",
        provider=MessagingProvider.INSTAGRAM,
        external_id="17841400000000",
    )
    db.add(channel)
    db.commit()
    return channel


@pytest.fixture(scope="function")
def whatsapp_channel(db: Session, org_defaults: OrgDefaults) -> MessagingChannel:
    channel = MessagingChannel(
        organization_id=org_defaults.org.id,
        name="Acme on WhatsApp",
        provider=MessagingProvider.WHATSAPP,
        external_id="1234567890",
    )
    db.add(channel)
    db.commit()
    return channel


# =============================================================================
# Message factories
# =============================================================================

@pytest.fixture
def make_email():
    """Build a canonical inbound email; keyword arguments override fields."""
    def _make(
        message_id: str = "msg-1@example.com",
        *,
        sender: str = "alice@example.com",
        sender_name: str | None = "Alice Example",
        **fields,
    ) -> CanonicalInboundMessage:
        values = {
            "channel_kind": ChannelKind.EMAIL,
            "provider_message_id": message_id,
            "provider_item_id": f"item-{message_id}",
            "sender": SenderIdentity(email=sender, name=sender_name),
            "subject": "Printer on fire",
            "text_body": "The printer is on fire.",
            "html_body": "<p>The printer is on fire.</p>",
        }
        values.update(fields)
        return CanonicalInboundMessage(**values)

    return _make


@pytest.fixture
def make_dm():
    """Build a canonical inbound messaging event."""
    def _make(
        message_id: str = "m_1",
        *,
        sender_id: str = "IGSID1",
        text: str | None = "hello there",
        **fields,
    ) -> CanonicalInboundMessage:
        values = {
            "channel_kind": ChannelKind.MESSAGING,
            "provider_message_id": message_id,
            "conversation_id": f"17841400000000_{sender_id}",
            "sender": SenderIdentity(platform_id=sender_id),
            "text_body": text,
        }
        values.update(fields)
        return CanonicalInboundMessage(**values)

    return _make


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient for the public webhook and internal endpoints."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
