"""Application configuration with environment variables."""

from urllib.parse import urlsplit

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Public base URL of the helpdesk (images hosted here survive sanitizing)
    APP_URL: str = "http://localhost:8000"
    STORAGE_URL_PREFIX: str = "/storage"

    # Attachment storage
    STORAGE_BACKEND: str = "local"  # local | s3
    LOCAL_STORAGE_PATH: str = "/tmp/helpdesk-attachments"
    S3_BUCKET: str = "helpdesk-attachments"
    S3_REGION: str = "us-east-1"

    # Meta messaging webhooks (Instagram, Messenger, WhatsApp)
    META_VERIFY_TOKEN: str = ""
    META_APP_SECRET: str = ""
    META_TEST_MODE: bool = False  # Set to True only for local testing
    META_API_VERSION: str = "v21.0"
    META_WEBHOOK_MAX_PAYLOAD_BYTES: int = 100000  # 100KB limit

    # Provider calls (Gmail, Graph, Meta) are always time-bounded
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    # Email channel polling
    SYNC_DEFAULT_LOOKBACK_HOURS: int = 24
    SYNC_CURSOR_BUFFER_MINUTES: int = 60
    SYNC_SWEEP_INTERVAL_SECONDS: int = 60
    CHANNEL_LOCK_TTL_SECONDS: int = 900

    # Worker
    WORKER_POLL_INTERVAL: int = 10
    WORKER_BATCH_SIZE: int = 10
    JOB_RETRY_BACKOFF_SECONDS: int = 60

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_WEBHOOK: int = 100

    @property
    def app_host(self) -> str:
        """Lowercased host of APP_URL (no port)."""
        return (urlsplit(self.APP_URL).hostname or "").lower()

    @property
    def storage_url_prefix(self) -> str:
        return "/" + self.STORAGE_URL_PREFIX.strip("/")


settings = Settings()
