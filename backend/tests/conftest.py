"""Shared fixtures: test settings, a match factory and a scripted provider."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Union

import pytest
import pytest_asyncio

from shared.config import Settings
from shared.errors import ProviderError
from shared.models.domain import CanonicalMatch, DateRange, LeagueInfo, MatchQuery, TeamInfo, utcnow
from shared.models.enums import MatchStatus, ProviderName, Sport
from shared.utils.database import DatabaseManager
from shared.utils.http_client import ProviderHTTPClient

from ingest.providers.base import BaseProvider


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="",
        api_football_api_key="test-key",
        sportmonks_api_key="test-key",
        provider_max_retries=0,
        provider_call_timeout_s=1.0,
        query_timeout_s=2.0,
        refresh_interval_s=0.05,
        refresh_run_on_start=False,
        live_sports=["football", "basketball"],
        health_probe_interval_s=60.0,
        metrics_enabled=False,
    )


def build_match(
    provider: ProviderName = ProviderName.ESPN,
    provider_id: str = "1",
    home: str = "Arsenal",
    away: str = "Chelsea",
    league: Union[str, LeagueInfo] = "Premier League",
    status: MatchStatus = MatchStatus.LIVE,
    sport: Sport = Sport.FOOTBALL,
    scheduled_at: Optional[datetime] = None,
    **extra: Any,
) -> CanonicalMatch:
    if scheduled_at is None:
        offset = timedelta(hours=3) if status == MatchStatus.SCHEDULED else timedelta(minutes=-30)
        scheduled_at = utcnow() + offset
    data: dict[str, Any] = {
        "external_id": f"{provider.id_prefix}-{provider_id}",
        "provider": provider,
        "sport": sport,
        "league": league if isinstance(league, LeagueInfo) else LeagueInfo(name=league, sport=sport),
        "home_team": TeamInfo(name=home),
        "away_team": TeamInfo(name=away),
        "scheduled_at": scheduled_at,
        "status": status,
    }
    if status.has_score:
        data.update(home_score=1, away_score=0)
    if status == MatchStatus.LIVE:
        data["minute"] = 30
    data.update(extra)
    return CanonicalMatch(**data)


@pytest.fixture
def make_match() -> Callable[..., CanonicalMatch]:
    return build_match


class FakeProvider(BaseProvider):
    """Adapter double that answers every call with a scripted result."""

    def __init__(
        self,
        name: ProviderName,
        sports: Iterable[Sport],
        settings: Settings,
        matches: Iterable[CanonicalMatch] = (),
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(
            name=name,
            http_client=ProviderHTTPClient(name.value, "http://fake.invalid", settings=settings),
            supported_sports=set(sports),
        )
        self.matches = list(matches)
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    def fail_with(self, message: str = "boom") -> None:
        self.error = ProviderError(self.name.value, message)

    async def _respond(self, operation: str) -> list[CanonicalMatch]:
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.matches)

    async def _search(self, query: MatchQuery, date_range: DateRange) -> list[CanonicalMatch]:
        return await self._respond("search")

    async def _fetch_by_sport(
        self, sport: Sport, date_range: DateRange, status: Optional[MatchStatus]
    ) -> list[CanonicalMatch]:
        return await self._respond("fetch_by_sport")

    async def _fetch_match(self, provider_id: str) -> Optional[CanonicalMatch]:
        matches = await self._respond("fetch_match")
        return next((m for m in matches if self.local_id(m.external_id) == provider_id), None)

    async def _list_leagues(self, sport: Sport) -> list[LeagueInfo]:
        await self._respond("list_leagues")
        return [LeagueInfo(name="Premier League", sport=sport, provider_id="39")]


@pytest.fixture
def fake_provider(settings: Settings) -> Callable[..., FakeProvider]:
    def _build(
        name: ProviderName,
        sports: Iterable[Sport] = (Sport.FOOTBALL,),
        **kwargs: Any,
    ) -> FakeProvider:
        return FakeProvider(name, sports, settings, **kwargs)

    return _build


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncIterator[DatabaseManager]:
    """In-memory SQLite schema, created fresh per test."""
    manager = DatabaseManager(settings)
    await manager.connect()
    await manager.create_all()
    yield manager
    await manager.disconnect()
