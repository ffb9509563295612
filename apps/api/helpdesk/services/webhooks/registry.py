"""Webhook handler registry."""

from __future__ import annotations

from helpdesk.services.webhooks.base import MessagingWebhookHandler
from helpdesk.services.webhooks.meta import MetaMessagingWebhookHandler

_HANDLERS: dict[str, MessagingWebhookHandler] = {
    "meta": MetaMessagingWebhookHandler(),
}


def get_handler(name: str) -> MessagingWebhookHandler:
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"No messaging webhook handler for provider {name!r}")
    return handler
