"""Shared helpers for worker job handlers."""

from __future__ import annotations

from uuid import UUID


def mask_email(email: str | None) -> str:
    """Shorten an address for logs: 'jane.doe@x.com' -> 'jan...@x.com'."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def uuid_from_payload(payload: dict, key: str) -> UUID:
    value = payload.get(key)
    if not value:
        raise ValueError(f"Missing {key} in job payload")
    return UUID(str(value))
