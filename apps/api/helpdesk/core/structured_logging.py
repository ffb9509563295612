"""Structured logging helpers."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    channel_id: str | None = None,
    ticket_id: str | None = None,
    provider_message_id: str | None = None,
    job_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with only the identifiers that are set."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if channel_id:
        context["channel_id"] = str(channel_id)
    if ticket_id:
        context["ticket_id"] = str(ticket_id)
    if provider_message_id:
        context["provider_message_id"] = provider_message_id
    if job_id:
        context["job_id"] = str(job_id)
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
