"""SQLAlchemy ORM models."""

from helpdesk.db.models.channels import ChannelSyncLog, EmailChannel, MessagingChannel
from helpdesk.db.models.contacts import Contact
from helpdesk.db.models.jobs import Job
from helpdesk.db.models.organizations import (
    DEFAULT_URGENT_KEYWORDS,
    Organization,
    OrganizationSettings,
    Priority,
    Sla,
    Status,
    TicketFolder,
)
from helpdesk.db.models.tickets import Attachment, Message, Ticket, TicketActivity

__all__ = [
    "Attachment",
    "ChannelSyncLog",
    "Contact",
    "DEFAULT_URGENT_KEYWORDS",
    "EmailChannel",
    "Job",
    "Message",
    "MessagingChannel",
    "Organization",
    "OrganizationSettings",
    "Priority",
    "Sla",
    "Status",
    "Ticket",
    "TicketActivity",
    "TicketFolder",
]
