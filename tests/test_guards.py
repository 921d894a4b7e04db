"""Tests for origin, duration, and platform guards."""

from __future__ import annotations

import pytest

from voice_intake.guards.domain import (
    AllowedDomainsCache,
    authorize_origin,
    is_domain_allowed,
    request_origin,
)
from voice_intake.guards.duration import check_duration
from voice_intake.guards.platform import detect_platform, enrich_metadata
from voice_intake.utils.errors import DomainUnauthorizedError, ValidationError


class TestIsDomainAllowed:
    PATTERNS = ["*.alchemer.com"]

    def test_empty_list_allows_everything(self) -> None:
        assert is_domain_allowed("https://anywhere.io", [])
        assert is_domain_allowed(None, None)

    def test_wildcard_matches_subdomain(self) -> None:
        assert is_domain_allowed("https://x.alchemer.com", self.PATTERNS)

    def test_wildcard_matches_multi_level_subdomain(self) -> None:
        assert is_domain_allowed("https://a.b.alchemer.com", self.PATTERNS)

    def test_wildcard_matches_bare_suffix(self) -> None:
        assert is_domain_allowed("https://alchemer.com", self.PATTERNS)

    def test_wildcard_rejects_lookalike_domain(self) -> None:
        assert not is_domain_allowed("https://alchemer.com.evil.io", self.PATTERNS)
        assert not is_domain_allowed("https://evilalchemer.com", self.PATTERNS)

    def test_exact_pattern_matches_only_that_host(self) -> None:
        patterns = ["survey.example.com"]
        assert is_domain_allowed("https://survey.example.com", patterns)
        assert not is_domain_allowed("https://x.survey.example.com", patterns)
        assert not is_domain_allowed("https://example.com", patterns)

    def test_localhost_always_allowed(self) -> None:
        assert is_domain_allowed("http://localhost:5173", self.PATTERNS)
        assert is_domain_allowed("http://127.0.0.1:3000", self.PATTERNS)

    def test_missing_origin_denied_when_patterns_configured(self) -> None:
        assert not is_domain_allowed(None, self.PATTERNS)
        assert not is_domain_allowed("", self.PATTERNS)

    def test_bare_hostname_origin(self) -> None:
        assert is_domain_allowed("x.alchemer.com", self.PATTERNS)

    def test_pattern_case_insensitive(self) -> None:
        assert is_domain_allowed("https://X.Alchemer.com", ["*.ALCHEMER.com"])


class TestRequestOrigin:
    def test_prefers_origin_header(self) -> None:
        assert request_origin("https://a.com", "https://b.com/page") == "https://a.com"

    def test_falls_back_to_referer_scheme_and_host(self) -> None:
        assert (
            request_origin(None, "https://survey.alchemer.com/s3/123?x=1")
            == "https://survey.alchemer.com"
        )

    def test_unparseable_referer_gives_none(self) -> None:
        assert request_origin(None, "not a url") is None
        assert request_origin(None, None) is None


class TestAuthorizeOrigin:
    def test_allowed_origin_passes(self) -> None:
        authorize_origin("https://x.alchemer.com", None, ["*.alchemer.com"])

    def test_denied_origin_raises_with_origin(self) -> None:
        with pytest.raises(DomainUnauthorizedError) as exc_info:
            authorize_origin(None, "https://evil.io/form", ["*.alchemer.com"])
        assert exc_info.value.origin == "https://evil.io"
        assert exc_info.value.http_status == 403


class TestAllowedDomainsCache:
    class Clock:
        def __init__(self) -> None:
            self.now = 1000.0

        def __call__(self) -> float:
            return self.now

    async def test_loads_once_within_ttl(self) -> None:
        calls = 0

        async def loader(project_id: str) -> list[str]:
            nonlocal calls
            calls += 1
            return ["*.alchemer.com"]

        clock = self.Clock()
        cache = AllowedDomainsCache(loader, ttl_seconds=60, clock=clock)

        assert await cache.get("p1") == ["*.alchemer.com"]
        clock.now += 30
        assert await cache.get("p1") == ["*.alchemer.com"]
        assert calls == 1

    async def test_refreshes_after_expiry(self) -> None:
        values = [["a.com"], ["b.com"]]

        async def loader(project_id: str) -> list[str]:
            return values.pop(0)

        clock = self.Clock()
        cache = AllowedDomainsCache(loader, ttl_seconds=60, clock=clock)

        assert await cache.get("p1") == ["a.com"]
        clock.now += 61
        assert await cache.get("p1") == ["b.com"]

    async def test_serves_stale_value_when_refresh_fails(self) -> None:
        fail = False

        async def loader(project_id: str) -> list[str]:
            if fail:
                raise ConnectionError("db down")
            return ["a.com"]

        clock = self.Clock()
        cache = AllowedDomainsCache(loader, ttl_seconds=60, clock=clock)
        await cache.get("p1")

        fail = True
        clock.now += 120
        assert await cache.get("p1") == ["a.com"]

    async def test_failure_without_entry_propagates(self) -> None:
        async def loader(project_id: str) -> list[str]:
            raise ConnectionError("db down")

        cache = AllowedDomainsCache(loader)
        with pytest.raises(ConnectionError):
            await cache.get("p1")

    async def test_invalidate_forces_reload(self) -> None:
        calls = 0

        async def loader(project_id: str) -> list[str]:
            nonlocal calls
            calls += 1
            return []

        cache = AllowedDomainsCache(loader, ttl_seconds=60, clock=self.Clock())
        await cache.get("p1")
        cache.invalidate("p1")
        await cache.get("p1")
        assert calls == 2


class TestCheckDuration:
    def test_within_limit_passes(self) -> None:
        check_duration(90, 90)

    def test_missing_duration_passes(self) -> None:
        check_duration(None, 90)

    def test_over_limit_raises(self) -> None:
        with pytest.raises(ValidationError, match="90 seconds") as exc_info:
            check_duration(91, 90)
        assert exc_info.value.field == "duration_seconds"


class TestPlatformDetection:
    @pytest.mark.parametrize(
        ("origin", "platform"),
        [
            ("https://survey.alchemer.com", "alchemer"),
            ("https://app.surveygizmo.com", "alchemer"),
            ("https://acme.qualtrics.com", "qualtrics"),
            ("https://www.surveymonkey.com", "surveymonkey"),
            ("https://form.jotform.com", "jotform"),
            ("https://example.org", "other"),
            (None, "unknown"),
        ],
    )
    def test_detect_platform(self, origin, platform) -> None:
        assert detect_platform(origin) == platform

    def test_enrich_metadata_adds_fields_without_mutating(self) -> None:
        original = {"respondent": "r-1"}
        enriched = enrich_metadata(original, None, "https://x.typeform.com/to/abc")

        assert enriched == {
            "respondent": "r-1",
            "_origin": "https://x.typeform.com/to/abc",
            "_platform": "typeform",
        }
        assert original == {"respondent": "r-1"}
