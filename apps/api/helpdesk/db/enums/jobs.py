"""Background job enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    EMAIL_CHANNEL_SYNC = "email_channel_sync"
    MESSAGING_WEBHOOK = "messaging_webhook"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_JOB_STATUS = JobStatus.PENDING
