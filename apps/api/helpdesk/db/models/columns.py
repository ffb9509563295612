"""Column helpers shared by the model modules."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Enum


def _enum_type(enum_cls, *, name: str) -> Enum:
    """Bind Python str-enums to their value strings."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)
