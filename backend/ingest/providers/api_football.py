"""
API-Football (api-sports.io v3) provider adapter.
Football only; authenticated with the x-apisports-key header.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import ProviderMalformedData, ProviderUnavailable
from shared.models.domain import (
    CanonicalMatch,
    DateRange,
    LeagueInfo,
    MatchEvent,
    MatchQuery,
    TeamInfo,
)
from shared.models.enums import EventType, MatchStatus, ProviderName, Sport, TeamSide
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import TokenBucket

from ingest.providers.base import BaseProvider, day_str, parse_datetime, to_int

logger = get_logger(__name__)

_STATUS_MAP: dict[str, MatchStatus] = {
    "TBD": MatchStatus.SCHEDULED,
    "NS": MatchStatus.SCHEDULED,
    "1H": MatchStatus.LIVE,
    "HT": MatchStatus.LIVE,
    "2H": MatchStatus.LIVE,
    "ET": MatchStatus.LIVE,
    "BT": MatchStatus.LIVE,
    "P": MatchStatus.LIVE,
    "SUSP": MatchStatus.LIVE,
    "INT": MatchStatus.LIVE,
    "LIVE": MatchStatus.LIVE,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
    "AWD": MatchStatus.FINISHED,
    "WO": MatchStatus.FINISHED,
    "PST": MatchStatus.POSTPONED,
    "CANC": MatchStatus.CANCELLED,
    "ABD": MatchStatus.CANCELLED,
}

# Status filter sent with date-window requests.
_STATUS_FILTER: dict[MatchStatus, str] = {
    MatchStatus.SCHEDULED: "NS-TBD",
    MatchStatus.FINISHED: "FT-AET-PEN",
    MatchStatus.POSTPONED: "PST",
    MatchStatus.CANCELLED: "CANC-ABD",
}


def _event_type(kind: str, detail: str) -> EventType:
    kind, detail = kind.lower(), detail.lower()
    if kind == "goal":
        if "own" in detail:
            return EventType.OWN_GOAL
        if "missed" in detail:
            return EventType.PENALTY_MISS
        if "penalty" in detail:
            return EventType.PENALTY
        return EventType.GOAL
    if kind == "card":
        return EventType.RED_CARD if "red" in detail else EventType.YELLOW_CARD
    if kind == "subst":
        return EventType.SUBSTITUTION
    if kind == "var":
        return EventType.VAR_DECISION
    return EventType.GENERIC


class ApiFootballProvider(BaseProvider):
    """API-Football provider adapter."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.API_FOOTBALL.value,
            base_url=settings.api_football_base_url,
            headers={"x-apisports-key": settings.api_football_api_key},
            rate_limiter=TokenBucket(settings.api_football_rpm_limit, name=ProviderName.API_FOOTBALL.value),
            transport=transport,
            settings=settings,
        )
        super().__init__(
            name=ProviderName.API_FOOTBALL,
            http_client=http_client,
            supported_sports={Sport.FOOTBALL},
        )

    async def _get_response(self, path: str, params: dict[str, Any]) -> list[Any]:
        data = await self._http.get_json(path, params=params)
        if not isinstance(data, dict):
            raise ProviderMalformedData(self._name.value, f"unexpected payload from {path}")
        errors = data.get("errors")
        if errors:
            # api-sports reports auth/plan problems with HTTP 200 and an errors object
            raise ProviderUnavailable(self._name.value, f"provider error: {errors}")
        records = data.get("response")
        if not isinstance(records, list):
            raise ProviderMalformedData(self._name.value, f"missing 'response' list from {path}")
        return records

    async def _fetch_fixtures(self, date_range: DateRange, status: Optional[MatchStatus]) -> list[CanonicalMatch]:
        if status == MatchStatus.LIVE:
            params: dict[str, Any] = {"live": "all"}
        else:
            params = {"from": day_str(date_range.start), "to": day_str(date_range.end)}
            if status in _STATUS_FILTER:
                params["status"] = _STATUS_FILTER[status]
        records = await self._get_response("/fixtures", params)
        return self._convert_batch(records, self._convert)

    # ── Contract ────────────────────────────────────────────────────────
    async def _search(self, query: MatchQuery, date_range: DateRange) -> list[CanonicalMatch]:
        # No search endpoint: fetch the window and let the caller filter by text.
        return await self._fetch_fixtures(date_range, query.status if query.status != MatchStatus.LIVE else None)

    async def _fetch_by_sport(
        self, sport: Sport, date_range: DateRange, status: Optional[MatchStatus]
    ) -> list[CanonicalMatch]:
        return await self._fetch_fixtures(date_range, status)

    async def _fetch_match(self, provider_id: str) -> Optional[CanonicalMatch]:
        records = await self._get_response("/fixtures", {"id": provider_id})
        matches = self._convert_batch(records[:1], self._convert)
        return matches[0] if matches else None

    async def _list_leagues(self, sport: Sport) -> list[LeagueInfo]:
        records = await self._get_response("/leagues", {})
        leagues: list[LeagueInfo] = []
        for item in records:
            league = item.get("league") or {}
            if not league.get("name"):
                continue
            leagues.append(LeagueInfo(
                name=league["name"],
                country=(item.get("country") or {}).get("name"),
                logo_url=league.get("logo") or None,
                provider_id=str(league["id"]) if league.get("id") is not None else None,
                sport=Sport.FOOTBALL,
            ))
        return leagues

    # ── Parsing ─────────────────────────────────────────────────────────
    def _convert(self, item: dict[str, Any]) -> CanonicalMatch:
        fixture = item["fixture"]
        league = item.get("league") or {}
        teams = item["teams"]
        goals = item.get("goals") or {}
        status_block = fixture.get("status") or {}
        short = (status_block.get("short") or "").upper()

        scheduled_at = parse_datetime(fixture.get("date")) or parse_datetime(fixture.get("timestamp"))
        if scheduled_at is None:
            raise ProviderMalformedData(self._name.value, "fixture without kickoff time", str(fixture.get("id")))

        home, away = teams["home"], teams["away"]
        return CanonicalMatch(
            external_id=self.qualify(fixture["id"]),
            provider=self._name,
            sport=Sport.FOOTBALL,
            league=LeagueInfo(
                name=league.get("name"),
                country=league.get("country"),
                logo_url=league.get("logo") or None,
                provider_id=str(league["id"]) if league.get("id") is not None else None,
                sport=Sport.FOOTBALL,
            ),
            home_team=TeamInfo(name=home.get("name"), logo_url=home.get("logo") or None),
            away_team=TeamInfo(name=away.get("name"), logo_url=away.get("logo") or None),
            venue=(fixture.get("venue") or {}).get("name"),
            scheduled_at=scheduled_at,
            status=_STATUS_MAP.get(short, MatchStatus.SCHEDULED),
            period=short or None,
            minute=to_int(status_block.get("elapsed")),
            home_score=to_int(goals.get("home")),
            away_score=to_int(goals.get("away")),
            events=[self._convert_event(e, home.get("id")) for e in item.get("events") or []],
        )

    @staticmethod
    def _convert_event(event: dict[str, Any], home_id: Any) -> MatchEvent:
        team_id = (event.get("team") or {}).get("id")
        detail = event.get("detail") or ""
        return MatchEvent(
            type=_event_type(event.get("type") or "", detail),
            minute=to_int((event.get("time") or {}).get("elapsed")),
            team=TeamSide.HOME if team_id is not None and team_id == home_id else TeamSide.AWAY,
            player=(event.get("player") or {}).get("name"),
            description=detail or None,
        )
