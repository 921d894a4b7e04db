"""Survey platform detection for response analytics."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

_PLATFORM_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("alchemer", re.compile(r"alchemer\.com|surveygizmo\.com|alchemer\.eu")),
    ("qualtrics", re.compile(r"qualtrics\.com")),
    ("surveymonkey", re.compile(r"surveymonkey\.com")),
    ("questionpro", re.compile(r"questionpro\.com")),
    ("jotform", re.compile(r"jotform\.com|jotform\.pro")),
    ("typeform", re.compile(r"typeform\.com")),
    ("formstack", re.compile(r"formstack\.com")),
)


def detect_platform(origin: str | None) -> str:
    """Return a platform slug for an origin or referer URL."""
    if not origin:
        return "unknown"
    try:
        hostname = urlsplit(origin).hostname
    except ValueError:
        return "unknown"
    if not hostname:
        return "unknown"
    for slug, pattern in _PLATFORM_PATTERNS:
        if pattern.search(hostname):
            return slug
    return "other"


def enrich_metadata(
    metadata: dict[str, Any] | None,
    origin: str | None,
    referer: str | None,
) -> dict[str, Any]:
    """Return a copy of metadata with system-injected origin fields.

    Injected keys are prefixed with an underscore. The input is not mutated.
    """
    request_origin = origin or referer or None
    return {
        **(metadata or {}),
        "_origin": request_origin,
        "_platform": detect_platform(request_origin),
    }
