"""Channel adapter interface and error taxonomy."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from helpdesk.db.enums import ImportanceHint
from helpdesk.schemas.inbound import CanonicalInboundMessage


class AdapterError(Exception):
    """Base error raised by channel adapters and provider clients.

    ``retryable`` tells the job queue whether another attempt can help.
    """

    retryable = True

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(AdapterError):
    """Timeout, rate limit or provider 5xx. Retry on the next cycle."""

    retryable = True


class ProviderAuthError(AdapterError):
    """Expired or revoked credentials. Needs a human to re-authenticate."""

    retryable = False


class MalformedPayloadError(AdapterError):
    """The provider payload does not match its documented schema."""

    retryable = False


class ChannelAdapter(Protocol):
    def normalize(self, raw: Any, config: Any) -> CanonicalInboundMessage:
        """Turn one provider payload into a canonical inbound message."""


def raise_for_provider_status(response: httpx.Response, *, provider: str) -> None:
    """Map an HTTP error response onto the adapter error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    detail = None
    try:
        payload = response.json()
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            detail = error.get("message")
        elif error:
            detail = str(error)
    except ValueError:
        detail = response.text[:200]
    message = f"{provider} API error {status}: {detail or 'unknown error'}"
    if status in (401, 403):
        raise ProviderAuthError(message, status_code=status)
    if status == 429 or status >= 500:
        raise TransientProviderError(message, status_code=status)
    raise MalformedPayloadError(message, status_code=status)


def send_provider_request(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    provider: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one provider call; network failures become TransientProviderError."""
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise TransientProviderError(f"{provider} API timeout: {exc}") from exc
    except httpx.RequestError as exc:
        raise TransientProviderError(f"{provider} API request failed: {exc}") from exc
    raise_for_provider_status(response, provider=provider)
    return response


def importance_from_headers(headers: dict[str, str]) -> ImportanceHint | None:
    """Derive an importance hint from X-Priority / Importance headers."""
    lowered = {key.lower(): value for key, value in headers.items()}
    x_priority = (lowered.get("x-priority") or "").strip()
    if x_priority[:1].isdigit():
        level = int(x_priority[:1])
        if level <= 2:
            return ImportanceHint.HIGH
        if level >= 4:
            return ImportanceHint.LOW
        return ImportanceHint.NORMAL
    importance = (lowered.get("importance") or "").strip().lower()
    if importance in {hint.value for hint in ImportanceHint}:
        return ImportanceHint(importance)
    return None
