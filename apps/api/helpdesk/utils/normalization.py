"""Normalization helpers for inbound email fields."""

from __future__ import annotations

import html as html_module
import re
from email.utils import parseaddr

MAX_SUBJECT_LENGTH = 255
NO_SUBJECT = "(No subject)"

_REPLY_PREFIX_RE = re.compile(r"^\s*((re|fwd?|aw|wg|antw)\s*(\[\d+\])?\s*:\s*)+", re.IGNORECASE)
_RFC_ID_RE = re.compile(r"<([^>]+)>")

# Quoted-history containers: everything from the opening tag to the end goes.
_QUOTED_TAIL_PATTERNS = [
    re.compile(
        r"<div[^>]*id=[\"']?mail-editor-reference-message-container[\"']?[^>]*>.*$",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(
        r"<div[^>]*id=[\"']?(divRplyFwdMsg|appendonsend)[\"']?[^>]*>.*$",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(
        r"<div[^>]*class=[\"'][^\"']*gmail_quote[^\"']*[\"'][^>]*>.*$",
        re.IGNORECASE | re.DOTALL,
    ),
]
_CITE_BLOCKQUOTE_RE = re.compile(
    r"<blockquote[^>]*type=[\"']?cite[\"']?[^>]*>.*?</blockquote>",
    re.IGNORECASE | re.DOTALL,
)


def normalize_email(value: str | None) -> str | None:
    """Extract and lowercase the address part of an email header value."""
    if not value:
        return None
    _, address = parseaddr(value)
    address = (address or value).strip().strip("<>").strip().lower()
    if "@" not in address:
        return None
    return address


def clean_subject(subject: str | None) -> str:
    """Drop leading Re:/Fwd: chains and clamp to the column width."""
    cleaned = _REPLY_PREFIX_RE.sub("", subject or "")
    cleaned = " ".join(cleaned.split())
    if not cleaned:
        return NO_SUBJECT
    return cleaned[:MAX_SUBJECT_LENGTH]


def name_from_email(email: str) -> str:
    """'jane.doe_smith@x.com' -> 'Jane Doe Smith'."""
    local_part = email.split("@", 1)[0]
    words = re.split(r"[._\-]+", local_part)
    return " ".join(word.capitalize() for word in words if word) or local_part


def clean_message_id(value: str | None) -> str | None:
    """Strip whitespace and angle brackets from a Message-ID style value."""
    if value is None:
        return None
    cleaned = value.strip().strip("<>").strip()
    return cleaned or None


def parse_references(value: str | list[str] | None) -> list[str]:
    """Parse a References header (or list) into bracket-less ids, in order."""
    if not value:
        return []
    if isinstance(value, list):
        items = [str(item) for item in value]
    else:
        bracketed = _RFC_ID_RE.findall(value)
        items = bracketed if bracketed else value.split()
    out: list[str] = []
    for item in items:
        cleaned = clean_message_id(item)
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out


def strip_quoted_html(html: str) -> str:
    """Remove quoted reply history left by common mail clients."""
    for pattern in _QUOTED_TAIL_PATTERNS:
        html = pattern.sub("", html)
    return _CITE_BLOCKQUOTE_RE.sub("", html)


def html_to_text(html: str) -> str:
    """Readable plain text from an HTML body."""
    text = re.sub(r"<(style|script)[^>]*>.*?</\1>", "", html, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</(p|div|h[1-6]|li|tr)>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html_module.unescape(text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
