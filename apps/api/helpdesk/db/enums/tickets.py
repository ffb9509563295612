"""Ticket, message and activity enums."""

from enum import Enum


class MessageType(str, Enum):
    """Kind of message on a ticket."""

    REPLY = "reply"
    NOTE = "note"
    SYSTEM = "system"


class ActivityType(str, Enum):
    """Ticket activity log entry types."""

    CREATED = "created"
    MESSAGE_ADDED = "message_added"
    REOPENED = "reopened"
    PRIORITY_RAISED = "priority_raised"


class MessageKind(str, Enum):
    """Message kind recorded on message_added activities."""

    CUSTOMER_REPLY = "customer_reply"
    AGENT_REPLY = "agent_reply"
    NOTE = "note"
    SYSTEM = "system"


class ImportanceHint(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
