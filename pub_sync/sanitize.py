from __future__ import annotations

import html
import re
from typing import Optional

_TAG_RE = re.compile(r"<[^>]+>")
_WS = re.compile(r"\s+")


def strip_html_tags(text: str) -> str:
    """Drop markup but keep its text, e.g. ``CO<sub>2</sub>`` -> ``CO2``."""
    if not text:
        return text
    return _TAG_RE.sub("", text)


def decode_html_entities(text: str) -> str:
    if not text:
        return text
    return html.unescape(text)


def sanitize_text(text: Optional[str]) -> str:
    """
    Clean a title, abstract, journal or author string for display.

    Tags are stripped *before* entities are decoded so that encoded markup
    (``&lt;i&gt;``) survives as literal text instead of being removed.
    """
    if not text:
        return ""
    cleaned = strip_html_tags(str(text))
    cleaned = decode_html_entities(cleaned)
    return _WS.sub(" ", cleaned).strip()
