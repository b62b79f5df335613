"""CSRF token extraction.

The web app embeds its anti-forgery token in a ``<meta name="csrf-token">``
tag of the root HTML document. Parsing that document is brittle, so it sits
behind the narrow :class:`CsrfTokenExtractor` interface.
"""

from __future__ import annotations

import html
import re
from collections.abc import Mapping
from typing import Protocol

CSRF_META_NAME = "csrf-token"
CSRF_HEADER_NAME = "x-csrf-token"

_META_TAG_PATTERN = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_ATTRIBUTE_PATTERN = re.compile(
    r"""([A-Za-z_:][-A-Za-z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))"""
)


class CsrfTokenExtractor(Protocol):
    """Turns a fetched document into a CSRF token, or ``None`` when absent."""

    def extract_token(self, document: str) -> str | None: ...


def _meta_attributes(tag: str) -> dict[str, str]:
    attributes: dict[str, str] = {}
    for match in _ATTRIBUTE_PATTERN.finditer(tag):
        name = match.group(1).lower()
        value = next((g for g in match.groups()[1:] if g is not None), "")
        attributes[name] = html.unescape(value)
    return attributes


class MetaTagCsrfExtractor:
    """Finds ``<meta name="csrf-token" content="...">`` in any attribute order."""

    def __init__(self, meta_name: str = CSRF_META_NAME) -> None:
        self._meta_name = meta_name.lower()

    def extract_token(self, document: str) -> str | None:
        if not document:
            return None
        for match in _META_TAG_PATTERN.finditer(document):
            attributes = _meta_attributes(match.group(0))
            if attributes.get("name", "").lower() != self._meta_name:
                continue
            token = attributes.get("content", "").strip()
            if token:
                return token
        return None


def extract_csrf_from_headers(headers: Mapping[str, str]) -> str | None:
    """Return a server-rotated CSRF token carried on a response header."""
    for key, value in headers.items():
        if key.lower() == CSRF_HEADER_NAME:
            token = value.strip()
            return token or None
    return None
