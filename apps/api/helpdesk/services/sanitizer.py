"""HTML sanitizer for message bodies.

Pure functions only. ``sanitize`` is idempotent: running it over its own
output returns the same string.
"""

from __future__ import annotations

import html as html_module
import re
from urllib.parse import urlsplit

import nh3

from helpdesk.core.config import settings

ALLOWED_TAGS = {
    "p", "br", "b", "strong", "i", "em", "u", "a",
    "ul", "ol", "li", "blockquote",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "span", "div",
    "table", "caption", "colgroup", "col", "thead", "tbody", "tfoot", "tr", "td", "th",
    "pre", "code", "hr",
    "img",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href"},
    "img": {"src", "alt", "width", "height", "class"},
}
URL_SCHEMES = {"http", "https", "mailto"}
# Dropped together with everything inside them.
CLEAN_CONTENT_TAGS = {
    "script", "style", "iframe", "object", "embed", "noscript", "template",
    "title", "select", "textarea", "button",
}
LINK_REL = "nofollow noopener noreferrer"
INTERNAL_IMAGE_CLASS = "max-w-full h-auto rounded"

_IMG_TAG_RE = re.compile(r"<img\b([^>]*)>", re.IGNORECASE)
_ATTR_RE = re.compile(r'([a-zA-Z_:][-a-zA-Z0-9_:.]*)="([^"]*)"')
_BR_RUN_RE = re.compile(r"(\s*<br\s*/?>\s*){3,}", re.IGNORECASE)
_EMPTY_P_RE = re.compile(r"<p>\s*</p>", re.IGNORECASE)


def _is_internal_image(src: str) -> bool:
    """True when src points at this application's own storage."""
    if not src:
        return False
    if src.startswith(settings.storage_url_prefix + "/"):
        return True
    host = (urlsplit(src).hostname or "").lower()
    return bool(host) and host == settings.app_host


def _rewrite_image(match: re.Match) -> str:
    attrs = {name.lower(): value for name, value in _ATTR_RE.findall(match.group(1))}
    src = html_module.unescape(attrs.get("src", ""))

    if not _is_internal_image(src):
        alt = html_module.unescape(attrs.get("alt", "")).strip()
        placeholder = f"[Image: {alt}]" if alt else "[Image]"
        return html_module.escape(placeholder, quote=False)

    if not attrs.get("class"):
        attrs["class"] = INTERNAL_IMAGE_CLASS
    parts = [f'{name}="{attrs[name]}"' for name in ("src", "alt", "width", "height", "class") if name in attrs]
    return "<img " + " ".join(parts) + ">"


def sanitize(html: str | None) -> str | None:
    """Strip unsafe markup from an HTML body.

    - script/style/iframe/object/embed and form controls are removed with
      their contents; other disallowed wrappers are unwrapped.
    - style= and on* attributes never survive (not in the allowlist).
    - <a href> keeps only http(s) and mailto targets.
    - <img> survives only when served from our storage; anything else turns
      into an "[Image: alt]" placeholder.
    - Runs of three or more <br> collapse to two and empty paragraphs go.
    """
    if html is None:
        return None
    if html == "":
        return ""

    cleaned = nh3.clean(
        html,
        tags=ALLOWED_TAGS,
        clean_content_tags=CLEAN_CONTENT_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        url_schemes=URL_SCHEMES,
        link_rel=LINK_REL,
        set_tag_attribute_values={"a": {"target": "_blank"}},
        strip_comments=True,
    )
    cleaned = _IMG_TAG_RE.sub(_rewrite_image, cleaned)
    # Empty paragraphs first: removing one can join two <br> runs.
    previous = None
    while previous != cleaned:
        previous = cleaned
        cleaned = _EMPTY_P_RE.sub("", cleaned)
    cleaned = _BR_RUN_RE.sub("<br><br>", cleaned)
    return cleaned.strip()


def text_to_html(text: str | None) -> str | None:
    """Escape plain text and turn newlines into <br> (nl2br), then sanitize."""
    if text is None:
        return None
    escaped = html_module.escape(text, quote=False)
    return sanitize(escaped.replace("\r\n", "\n").replace("\n", "<br>\n"))
