"""
Tests for the query facade: source routing, database fallback, timeouts,
caching and validation.

Run: pytest backend/tests/test_facade.py -v
"""
from __future__ import annotations

from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.errors import AllProvidersExhausted, ValidationError
from shared.models.enums import DataSource, MatchStatus, ProviderName

from api.facade import QueryFacade
from ingest.aggregator import MatchAggregator
from ingest.health import ProviderHealthMonitor
from ingest.providers.registry import ProviderRegistry
from ingest.repository import MatchRepository
from scheduler.service import LiveUpdateScheduler, RefreshReport


def _repo(matches: Optional[list] = None, total: Optional[int] = None) -> MagicMock:
    matches = matches or []
    repo = MagicMock(spec=MatchRepository)
    repo.find_matches = AsyncMock(return_value=(matches, len(matches) if total is None else total))
    repo.get_match = AsyncMock(return_value=None)
    return repo


def _facade(settings, providers, repo=None, redis=None) -> QueryFacade:
    aggregator = MatchAggregator(ProviderRegistry(providers), ProviderHealthMonitor(settings=settings), settings=settings)
    scheduler = MagicMock(spec=LiveUpdateScheduler)
    scheduler.status.return_value = {"running": False}
    scheduler.update_all_matches = AsyncMock(return_value=RefreshReport(upserted={"football": 3}))
    return QueryFacade(aggregator, repo or _repo(), scheduler, redis, settings)


class _FakeCache:
    """In-memory stand-in for RedisManager's cache calls."""

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.cache_get = AsyncMock(side_effect=lambda ns, key: self.store.get(f"{ns}:{key}"))
        self.cache_set = AsyncMock(side_effect=self._set)

    def _set(self, ns: str, key: str, value: Any, ttl_s: int) -> None:
        self.store[f"{ns}:{key}"] = value


# ── Source routing ──────────────────────────────────────────────────────

class TestRouting:
    @pytest.mark.asyncio
    async def test_default_listing_reads_database(self, settings, fake_provider, make_match) -> None:
        stored = make_match(ProviderName.ESPN, "1", status=MatchStatus.SCHEDULED)
        provider = fake_provider(ProviderName.ESPN)
        repo = _repo([stored])
        facade = _facade(settings, [provider], repo)

        page = await facade.list_matches({"sport": "football"})

        assert page.source == DataSource.DATABASE
        assert page.matches == [stored]
        assert page.pagination.total == 1
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_empty_database_falls_back_to_providers(self, settings, fake_provider, make_match) -> None:
        provider = fake_provider(ProviderName.ESPN, matches=[make_match(ProviderName.ESPN, "1", status=MatchStatus.SCHEDULED)])
        facade = _facade(settings, [provider])

        page = await facade.get_scheduled_matches({"sport": "football"})

        assert page.source == DataSource.API
        assert [m.external_id for m in page.matches] == ["espn-1"]

    @pytest.mark.asyncio
    async def test_explicit_database_source_never_calls_providers(self, settings, fake_provider) -> None:
        provider = fake_provider(ProviderName.ESPN)
        facade = _facade(settings, [provider])

        page = await facade.list_matches({"source": "database", "status": "live"})

        assert page.source == DataSource.DATABASE
        assert page.matches == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_failed_fallback_degrades_to_empty_page(self, settings, fake_provider) -> None:
        provider = fake_provider(ProviderName.ESPN)
        provider.fail_with("down")
        facade = _facade(settings, [provider])

        page = await facade.get_finished_matches({})

        assert page.source == DataSource.DATABASE
        assert page.pagination.total == 0

    @pytest.mark.asyncio
    async def test_repository_error_treated_as_empty(self, settings, fake_provider, make_match) -> None:
        provider = fake_provider(ProviderName.ESPN, matches=[make_match(ProviderName.ESPN, "1", status=MatchStatus.SCHEDULED)])
        repo = _repo()
        repo.find_matches = AsyncMock(side_effect=RuntimeError("connection refused"))
        facade = _facade(settings, [provider], repo)

        page = await facade.get_scheduled_matches({})

        assert page.source == DataSource.API
        assert len(page.matches) == 1

    @pytest.mark.asyncio
    async def test_live_listing_goes_to_providers(self, settings, fake_provider, make_match) -> None:
        provider = fake_provider(ProviderName.ESPN, matches=[make_match(ProviderName.ESPN, "1")])
        repo = _repo()
        facade = _facade(settings, [provider], repo)

        page = await facade.get_live_matches({})

        assert page.source == DataSource.API
        assert page.matches[0].status == MatchStatus.LIVE
        repo.find_matches.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fresh_page_is_sliced_after_merging(self, settings, fake_provider, make_match) -> None:
        matches = [make_match(ProviderName.ESPN, str(i), home=f"Team {i}") for i in range(25)]
        facade = _facade(settings, [fake_provider(ProviderName.ESPN, matches=matches)])

        page = await facade.get_live_matches({"page": "3", "limit": "10"})

        assert len(page.matches) == 5
        assert page.pagination.total == 25
        assert page.pagination.has_more is False


# ── Search & validation ─────────────────────────────────────────────────

class TestSearch:
    @pytest.mark.asyncio
    async def test_search_requires_text(self, settings, fake_provider) -> None:
        facade = _facade(settings, [fake_provider(ProviderName.ESPN)])
        with pytest.raises(ValidationError):
            await facade.search_matches({"sport": "football"})

    @pytest.mark.asyncio
    async def test_search_is_fresh(self, settings, fake_provider, make_match) -> None:
        provider = fake_provider(ProviderName.ESPN, matches=[make_match(ProviderName.ESPN, "1")])
        repo = _repo()
        facade = _facade(settings, [provider], repo)

        page = await facade.list_matches({"search": "arsenal", "source": "auto"})

        assert page.source == DataSource.API
        assert len(page.matches) == 1
        repo.find_matches.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_params_rejected_before_any_call(self, settings, fake_provider) -> None:
        provider = fake_provider(ProviderName.ESPN)
        repo = _repo()
        facade = _facade(settings, [provider], repo)

        with pytest.raises(ValidationError):
            await facade.list_matches({"page": "0"})
        assert provider.calls == []
        repo.find_matches.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_page_size_applied(self, settings, fake_provider) -> None:
        facade = _facade(settings, [fake_provider(ProviderName.ESPN)])
        assert facade.parse_query({}).limit == settings.default_page_size

    @pytest.mark.asyncio
    async def test_configured_max_page_size_above_default(self, settings, fake_provider) -> None:
        settings.max_page_size = 250
        facade = _facade(settings, [fake_provider(ProviderName.ESPN)])
        assert facade.parse_query({"limit": "200"}).limit == 200
        assert facade.parse_query({"limit": "400"}).limit == 250


# ── Failure surfaces ────────────────────────────────────────────────────

class TestFailures:
    @pytest.mark.asyncio
    async def test_query_timeout_is_exhausted(self, settings, fake_provider, make_match) -> None:
        settings.query_timeout_s = 0.1
        slow = fake_provider(ProviderName.ESPN, delay=0.8, matches=[make_match(ProviderName.ESPN, "1")])
        facade = _facade(settings, [slow])

        with pytest.raises(AllProvidersExhausted, match="timed out"):
            await facade.get_live_matches({})

    @pytest.mark.asyncio
    async def test_all_providers_failing_is_exhausted(self, settings, fake_provider) -> None:
        a = fake_provider(ProviderName.API_FOOTBALL)
        b = fake_provider(ProviderName.ESPN)
        a.fail_with()
        b.fail_with()
        facade = _facade(settings, [a, b])

        with pytest.raises(AllProvidersExhausted) as info:
            await facade.search_matches({"search": "arsenal"})
        assert set(info.value.failures) == {"api_football", "espn"}

    @pytest.mark.asyncio
    async def test_no_provider_for_sport_is_empty_not_error(self, settings, fake_provider) -> None:
        facade = _facade(settings, [fake_provider(ProviderName.ESPN)])

        page = await facade.get_live_matches({"sport": "cricket"})

        assert page.matches == []
        assert page.pagination.total == 0


# ── Cache ───────────────────────────────────────────────────────────────

class TestCache:
    @pytest.mark.asyncio
    async def test_second_identical_query_served_from_cache(self, settings, fake_provider, make_match) -> None:
        settings.redis_url = "redis://localhost:6379/0"
        provider = fake_provider(ProviderName.ESPN, matches=[make_match(ProviderName.ESPN, "1")])
        cache = _FakeCache()
        facade = _facade(settings, [provider], redis=cache)

        first = await facade.get_live_matches({"sport": "football"})
        second = await facade.get_live_matches({"sport": "football", "source": "api"})

        assert provider.calls == ["fetch_by_sport"]
        assert second.matches == first.matches
        assert second.source == DataSource.API
        cache.cache_set.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cache_failure_is_ignored(self, settings, fake_provider, make_match) -> None:
        settings.redis_url = "redis://localhost:6379/0"
        provider = fake_provider(ProviderName.ESPN, matches=[make_match(ProviderName.ESPN, "1")])
        cache = MagicMock()
        cache.cache_get = AsyncMock(side_effect=ConnectionError("redis down"))
        cache.cache_set = AsyncMock(side_effect=ConnectionError("redis down"))
        facade = _facade(settings, [provider], redis=cache)

        page = await facade.get_live_matches({})

        assert len(page.matches) == 1


# ── Single match, leagues, operations ───────────────────────────────────

class TestLookups:
    @pytest.mark.asyncio
    async def test_get_match_prefers_store(self, settings, fake_provider, make_match) -> None:
        stored = make_match(ProviderName.ESPN, "1")
        provider = fake_provider(ProviderName.ESPN)
        repo = _repo()
        repo.get_match = AsyncMock(return_value=stored)
        facade = _facade(settings, [provider], repo)

        assert await facade.get_match("espn-1") == stored
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_get_match_falls_back_to_owner(self, settings, fake_provider, make_match) -> None:
        provider = fake_provider(ProviderName.ESPN, matches=[make_match(ProviderName.ESPN, "1")])
        facade = _facade(settings, [provider])

        match = await facade.get_match("espn-1")

        assert match is not None and match.external_id == "espn-1"
        assert await facade.get_match("espn-404") is None

    @pytest.mark.asyncio
    async def test_get_leagues_rejects_unknown_sport(self, settings, fake_provider) -> None:
        facade = _facade(settings, [fake_provider(ProviderName.ESPN)])
        with pytest.raises(ValidationError):
            await facade.get_leagues("quidditch")

    @pytest.mark.asyncio
    async def test_get_leagues(self, settings, fake_provider) -> None:
        facade = _facade(settings, [fake_provider(ProviderName.ESPN)])
        leagues = await facade.get_leagues("soccer")
        assert [lg.name for lg in leagues] == ["Premier League"]

    @pytest.mark.asyncio
    async def test_refresh_and_status(self, settings, fake_provider) -> None:
        facade = _facade(settings, [fake_provider(ProviderName.ESPN)])

        report = await facade.refresh()
        status = facade.status()

        assert report.total_upserted == 3
        assert status["scheduler"] == {"running": False}
        assert status["providers"]["espn"]["status"] == "healthy"
