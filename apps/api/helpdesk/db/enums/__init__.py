"""Enum definitions for application constants."""

from helpdesk.db.enums.channels import (
    ChannelKind,
    EmailProvider,
    MessagingProvider,
    PostImportAction,
    SyncLogStatus,
)
from helpdesk.db.enums.jobs import DEFAULT_JOB_STATUS, JobStatus, JobType
from helpdesk.db.enums.tickets import (
    ActivityType,
    ImportanceHint,
    MessageKind,
    MessageType,
)

__all__ = [
    "ActivityType",
    "ChannelKind",
    "DEFAULT_JOB_STATUS",
    "EmailProvider",
    "ImportanceHint",
    "JobStatus",
    "JobType",
    "MessageKind",
    "MessageType",
    "MessagingProvider",
    "PostImportAction",
    "SyncLogStatus",
]
