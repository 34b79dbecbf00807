"""
API route tests. The facade is mocked, so no DB, Redis or providers are needed.

Run: pytest backend/tests/test_api.py -v
"""
from __future__ import annotations

from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from shared.errors import AllProvidersExhausted, ValidationError
from shared.models.domain import LeagueInfo, MatchPage
from shared.models.enums import DataSource, MatchStatus, ProviderName, Sport

from api.app import create_app
from api.facade import QueryFacade
from ingest.normalization.pagination import pagination_info
from scheduler.service import RefreshReport


@pytest.fixture
def facade() -> MagicMock:
    mock = MagicMock(spec=QueryFacade)
    mock.list_matches = AsyncMock()
    mock.search_matches = AsyncMock()
    mock.get_match = AsyncMock(return_value=None)
    mock.get_leagues = AsyncMock(return_value=[])
    mock.refresh = AsyncMock(return_value=RefreshReport(upserted={"football": 4}))
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.status.return_value = {"scheduler": {"running": True}, "providers": {}}
    return mock


@pytest.fixture
def client(facade: MagicMock) -> Iterator[TestClient]:
    """Test client with lifespan disabled and the mocked facade injected."""
    app = create_app(use_lifespan=False, facade=facade)
    with TestClient(app) as c:
        yield c


def _page(matches, source: DataSource = DataSource.API) -> MatchPage:
    return MatchPage(matches=matches, pagination=pagination_info(len(matches), 1, 20), source=source)


# ── System ──────────────────────────────────────────────────────────────

def test_health_returns_ok(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "api"}


def test_request_id_echoed(client: TestClient) -> None:
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


# ── Matches ─────────────────────────────────────────────────────────────

class TestMatches:
    def test_listing_passes_raw_params(self, client: TestClient, facade: MagicMock, make_match) -> None:
        facade.list_matches.return_value = _page([make_match(ProviderName.ESPN, "1")])

        r = client.get("/v1/matches", params={"sport": "football", "dateFrom": "2025-03-01", "limit": "5"})

        assert r.status_code == 200
        params = facade.list_matches.await_args.args[0]
        assert params["sport"] == "football"
        assert params["dateFrom"] == "2025-03-01"
        assert params["limit"] == "5"
        body = r.json()
        assert body["source"] == "api"
        assert body["pagination"]["totalPages"] == 1
        assert body["pagination"]["hasMore"] is False
        assert body["matches"][0]["external_id"] == "espn-1"
        assert body["matches"][0]["status"] == MatchStatus.LIVE.value

    def test_validation_error_is_400(self, client: TestClient, facade: MagicMock) -> None:
        facade.list_matches.side_effect = ValidationError(
            "Invalid match query", errors=[{"loc": ["page"], "msg": "too small", "type": "greater_than_equal"}]
        )

        r = client.get("/v1/matches", params={"page": "0"})

        assert r.status_code == 400
        body = r.json()
        assert body["error"] == "validation_error"
        assert body["details"][0]["loc"] == ["page"]

    def test_exhausted_is_503_with_retry_after(self, client: TestClient, facade: MagicMock) -> None:
        facade.list_matches.side_effect = AllProvidersExhausted({"espn": "timeout", "thesportsdb": "HTTP 500"})

        r = client.get("/v1/matches", params={"status": "live"})

        assert r.status_code == 503
        assert r.headers["Retry-After"] == "30"
        body = r.json()
        assert body["error"] == "temporarily_unavailable"
        assert body["providers"] == ["espn", "thesportsdb"]

    def test_search_uses_q(self, client: TestClient, facade: MagicMock) -> None:
        facade.search_matches.return_value = _page([])

        r = client.get("/v1/matches/search", params={"q": "arsenal", "sport": "football"})

        assert r.status_code == 200
        params = facade.search_matches.await_args.args[0]
        assert params["search"] == "arsenal"
        assert params["sport"] == "football"

    def test_search_without_q_rejected(self, client: TestClient, facade: MagicMock) -> None:
        r = client.get("/v1/matches/search")
        assert r.status_code == 422
        facade.search_matches.assert_not_awaited()

    def test_get_match(self, client: TestClient, facade: MagicMock, make_match) -> None:
        facade.get_match.return_value = make_match(ProviderName.THESPORTSDB, "77")

        r = client.get("/v1/matches/tsdb-77")

        assert r.status_code == 200
        assert r.json()["external_id"] == "tsdb-77"
        facade.get_match.assert_awaited_once_with("tsdb-77")

    def test_missing_match_is_404(self, client: TestClient) -> None:
        r = client.get("/v1/matches/espn-404")
        assert r.status_code == 404
        assert r.json() == {"error": "not_found", "message": "Match not found"}


def test_unexpected_error_is_500(facade: MagicMock) -> None:
    facade.list_matches.side_effect = RuntimeError("boom")
    app = create_app(use_lifespan=False, facade=facade)
    with TestClient(app, raise_server_exceptions=False) as c:
        r = c.get("/v1/matches")
    assert r.status_code == 500
    assert r.json()["error"] == "internal_server_error"


# ── Leagues & ops ───────────────────────────────────────────────────────

def test_leagues(client: TestClient, facade: MagicMock) -> None:
    facade.get_leagues.return_value = [LeagueInfo(name="Premier League", country="England", sport=Sport.FOOTBALL)]

    r = client.get("/v1/leagues", params={"sport": "soccer"})

    assert r.status_code == 200
    assert r.json()["leagues"][0]["name"] == "Premier League"
    facade.get_leagues.assert_awaited_once_with("soccer")


class TestOps:
    def test_status(self, client: TestClient) -> None:
        r = client.get("/v1/ops/status")
        assert r.status_code == 200
        assert r.json()["scheduler"]["running"] is True

    def test_refresh(self, client: TestClient, facade: MagicMock) -> None:
        r = client.post("/v1/ops/refresh")
        assert r.status_code == 200
        body = r.json()
        assert body["total_upserted"] == 4
        assert body["skipped"] is False
        facade.refresh.assert_awaited_once()

    def test_start_and_stop(self, client: TestClient, facade: MagicMock) -> None:
        assert client.post("/v1/ops/start").json() == {"running": True}
        assert client.post("/v1/ops/stop").status_code == 200
        facade.start.assert_awaited_once()
        facade.stop.assert_awaited_once()
