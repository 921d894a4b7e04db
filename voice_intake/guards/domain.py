"""Project-level domain locking.

When a project has allowed domains configured, only requests from those
domains are accepted, so a copied widget snippet and project key cannot be
used on another site.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from urllib.parse import urlsplit

from voice_intake.utils.errors import DomainUnauthorizedError

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})


def request_origin(origin: str | None, referer: str | None) -> str | None:
    """Return the request origin, preferring Origin over a parsed Referer."""
    if origin:
        return origin
    if referer:
        parts = urlsplit(referer)
        if parts.scheme and parts.netloc:
            return f"{parts.scheme}://{parts.netloc}"
    return None


def _hostname(origin: str) -> str:
    host = urlsplit(origin).hostname
    if host:
        return host
    # Bare hostname, possibly with a port.
    return origin.split("/", 1)[0].split(":", 1)[0].lower()


def is_domain_allowed(origin: str | None, allowed_domains: list[str] | None) -> bool:
    """Check an origin against a list of domain patterns.

    - No patterns configured: allow.
    - "*.example.com" matches "example.com" and any subdomain depth.
    - "example.com" matches only that hostname.
    - localhost and 127.0.0.1 are always allowed.
    - Missing origin with patterns configured: deny.
    """
    if not allowed_domains:
        return True
    if not origin:
        return False

    hostname = _hostname(origin)
    if hostname in LOOPBACK_HOSTS:
        return True

    for pattern in allowed_domains:
        pattern = pattern.strip().lower()
        if pattern.startswith("*."):
            suffix = pattern[2:]
            if hostname == suffix or hostname.endswith("." + suffix):
                return True
        elif hostname == pattern:
            return True
    return False


def authorize_origin(
    origin: str | None,
    referer: str | None,
    allowed_domains: list[str] | None,
    project_id: str | None = None,
) -> None:
    """Raise DomainUnauthorizedError when the request origin is not allowed."""
    resolved = request_origin(origin, referer)
    if not is_domain_allowed(resolved, allowed_domains):
        logger.warning(
            "Domain lock blocked %s",
            resolved or "(no origin)",
            extra={"project_id": project_id},
        )
        raise DomainUnauthorizedError(
            "Domain not authorized for this project", origin=resolved
        )


@dataclass
class _CacheEntry:
    value: list[str]
    expires_at: float


class AllowedDomainsCache:
    """Per-project allowed-domain lists with time-based refresh.

    Entries are refreshed on access once expired. If the refresh fails and a
    previous value exists, the stale value is served and the failure logged.

    Args:
        loader: Async callable returning the allow-list for a project id.
        ttl_seconds: Lifetime of a loaded entry.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        loader: Callable[[str], Awaitable[list[str]]],
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    async def get(self, project_id: str) -> list[str]:
        now = self._clock()
        entry = self._entries.get(project_id)
        if entry is not None and now < entry.expires_at:
            return entry.value

        try:
            value = list(await self._loader(project_id))
        except Exception:
            if entry is None:
                raise
            logger.warning(
                "Allowed-domains refresh failed, serving stale value",
                extra={"project_id": project_id},
                exc_info=True,
            )
            return entry.value

        self._entries[project_id] = _CacheEntry(value=value, expires_at=now + self._ttl)
        return value

    def invalidate(self, project_id: str | None = None) -> None:
        if project_id is None:
            self._entries.clear()
        else:
            self._entries.pop(project_id, None)
