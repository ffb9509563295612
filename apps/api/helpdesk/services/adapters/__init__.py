"""Channel adapters: one normalizer per provider family."""

from __future__ import annotations

import httpx

from helpdesk.db.enums import EmailProvider, MessagingProvider
from helpdesk.services.adapters.base import (
    AdapterError,
    ChannelAdapter,
    MalformedPayloadError,
    ProviderAuthError,
    TransientProviderError,
)
from helpdesk.services.adapters.gmail import GmailAdapter, GmailClient
from helpdesk.services.adapters.meta import MetaMessagingAdapter, WhatsAppAdapter
from helpdesk.services.adapters.microsoft import GraphAdapter, GraphClient
from helpdesk.services.adapters.mime import MimeAdapter

_EMAIL_ADAPTERS = {
    EmailProvider.GMAIL: GmailAdapter,
    EmailProvider.MICROSOFT365: GraphAdapter,
    EmailProvider.MIME: MimeAdapter,
}

_MESSAGING_ADAPTERS = {
    MessagingProvider.INSTAGRAM: MetaMessagingAdapter,
    MessagingProvider.FACEBOOK_MESSENGER: MetaMessagingAdapter,
    MessagingProvider.WHATSAPP: WhatsAppAdapter,
}

_MAILBOX_CLIENTS = {
    EmailProvider.GMAIL: GmailClient,
    EmailProvider.MICROSOFT365: GraphClient,
}


def get_adapter(provider: EmailProvider | MessagingProvider):
    """Return the adapter for a provider. Raises MalformedPayloadError if unsupported."""
    registry = _EMAIL_ADAPTERS if isinstance(provider, EmailProvider) else _MESSAGING_ADAPTERS
    adapter_cls = registry.get(provider)
    if adapter_cls is None:
        raise MalformedPayloadError(f"No adapter for provider {provider.value}")
    return adapter_cls()


def supports_polling(provider: EmailProvider) -> bool:
    return provider in _MAILBOX_CLIENTS


def build_mailbox_client(
    provider: EmailProvider,
    access_token: str | None,
    *,
    transport: httpx.BaseTransport | None = None,
):
    """Provider client able to list, fetch and file messages for one mailbox."""
    client_cls = _MAILBOX_CLIENTS.get(provider)
    if client_cls is None:
        raise MalformedPayloadError(f"Provider {provider.value} is not polled")
    return client_cls(access_token, transport=transport)


__all__ = [
    "AdapterError",
    "ChannelAdapter",
    "GmailAdapter",
    "GmailClient",
    "GraphAdapter",
    "GraphClient",
    "MalformedPayloadError",
    "MetaMessagingAdapter",
    "MimeAdapter",
    "ProviderAuthError",
    "TransientProviderError",
    "WhatsAppAdapter",
    "build_mailbox_client",
    "get_adapter",
    "supports_polling",
]
