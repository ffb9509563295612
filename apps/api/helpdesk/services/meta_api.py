"""Meta Graph API helpers for messaging channels.

Handles:
- Webhook signature verification (HMAC-SHA256)
- appsecret_proof for server-to-server calls
- Sender profile and WhatsApp media lookups
"""

import hashlib
import hmac
import logging

import httpx

from helpdesk.core.config import settings
from helpdesk.services.adapters.base import ProviderAuthError, send_provider_request

logger = logging.getLogger(__name__)


# Graph API base URL with version
def _graph_base() -> str:
    return f"https://graph.facebook.com/{settings.META_API_VERSION}"


def verify_signature(payload: bytes, signature: str | None) -> bool:
    """
    Verify X-Hub-Signature-256 HMAC signature.

    Args:
        payload: Raw request body bytes
        signature: Value of X-Hub-Signature-256 header

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature or not signature.startswith("sha256="):
        return False

    if not settings.META_APP_SECRET:
        return False

    expected = hmac.new(
        settings.META_APP_SECRET.encode(), payload, hashlib.sha256
    ).hexdigest()

    return hmac.compare_digest(f"sha256={expected}", signature)


def compute_appsecret_proof(access_token: str) -> str:
    """HMAC-SHA256 of the access token with the app secret ("" when unset)."""
    if not settings.META_APP_SECRET:
        return ""

    return hmac.new(
        settings.META_APP_SECRET.encode(), access_token.encode(), hashlib.sha256
    ).hexdigest()


class MetaGraphClient:
    """Read-only Graph calls made while ingesting messaging webhooks."""

    provider = "Meta Graph"

    def __init__(self, access_token: str | None, *, transport: httpx.BaseTransport | None = None):
        if not access_token:
            raise ProviderAuthError("Messaging channel has no access token")
        self._access_token = access_token
        self._client = httpx.Client(
            base_url=_graph_base(),
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=transport,
        )

    def __enter__(self) -> "MetaGraphClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: dict | None = None) -> dict:
        query = {"access_token": self._access_token, **(params or {})}
        proof = compute_appsecret_proof(self._access_token)
        if proof:
            query["appsecret_proof"] = proof
        response = send_provider_request(
            self._client, "GET", path, provider=self.provider, params=query
        )
        return response.json()

    def get_user_profile(self, user_id: str) -> dict:
        """Return ``{id, name, username}`` for a messaging sender (keys may be missing)."""
        return self._get(f"/{user_id}", {"fields": "id,name,username"})

    def get_media_url(self, media_id: str) -> str | None:
        """Resolve a WhatsApp media id to its short-lived download URL."""
        return self._get(f"/{media_id}").get("url")
