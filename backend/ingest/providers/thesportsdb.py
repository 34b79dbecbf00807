"""
TheSportsDB provider adapter.
Free tier API (key "3") with lower rate limits; multi-sport, used as fallback.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import ProviderMalformedData
from shared.models.domain import CanonicalMatch, DateRange, LeagueInfo, MatchQuery, TeamInfo
from shared.models.enums import MatchStatus, ProviderName, Sport
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import TokenBucket

from ingest.providers.base import BaseProvider, day_str, parse_datetime, to_int

logger = get_logger(__name__)

FREE_API_KEY = "3"

_TSDB_SPORT_MAP: dict[Sport, str] = {
    Sport.FOOTBALL: "Soccer",
    Sport.BASKETBALL: "Basketball",
    Sport.HOCKEY: "Ice Hockey",
    Sport.BASEBALL: "Baseball",
    Sport.AMERICAN_FOOTBALL: "American Football",
    Sport.TENNIS: "Tennis",
    Sport.CRICKET: "Cricket",
    Sport.RUGBY: "Rugby",
    Sport.MMA: "Fighting",
    Sport.VOLLEYBALL: "Volleyball",
}

_EXACT_STATUS: dict[str, MatchStatus] = {
    "ns": MatchStatus.SCHEDULED,
    "tbd": MatchStatus.SCHEDULED,
    "ft": MatchStatus.FINISHED,
    "aet": MatchStatus.FINISHED,
    "pen.": MatchStatus.FINISHED,
    "aot": MatchStatus.FINISHED,
    "1h": MatchStatus.LIVE,
    "ht": MatchStatus.LIVE,
    "2h": MatchStatus.LIVE,
    "et": MatchStatus.LIVE,
    "p": MatchStatus.LIVE,
    "bt": MatchStatus.LIVE,
    "q1": MatchStatus.LIVE,
    "q2": MatchStatus.LIVE,
    "q3": MatchStatus.LIVE,
    "q4": MatchStatus.LIVE,
    "ot": MatchStatus.LIVE,
    "pst": MatchStatus.POSTPONED,
    "canc": MatchStatus.CANCELLED,
    "abd": MatchStatus.CANCELLED,
}


def map_tsdb_status(status: Optional[str]) -> MatchStatus:
    """Map TheSportsDB strStatus (codes or free text) to a canonical status."""
    s = (status or "").strip().lower()
    if not s:
        return MatchStatus.SCHEDULED
    if s in _EXACT_STATUS:
        return _EXACT_STATUS[s]
    if "not started" in s or "scheduled" in s:
        return MatchStatus.SCHEDULED
    if "postponed" in s or "delayed" in s:
        return MatchStatus.POSTPONED
    if "cancel" in s or "abandon" in s:
        return MatchStatus.CANCELLED
    if "finished" in s or "complete" in s or "final" in s:
        return MatchStatus.FINISHED
    if "live" in s or "progress" in s or "half" in s:
        return MatchStatus.LIVE
    return MatchStatus.SCHEDULED


def _kickoff(event: dict[str, Any]) -> Optional[datetime]:
    stamp = parse_datetime(event.get("strTimestamp"))
    if stamp is not None:
        return stamp
    day = event.get("dateEvent")
    if not day:
        return None
    clock = (event.get("strTime") or "00:00:00").split("+")[0]
    return parse_datetime(f"{day}T{clock}")


class TheSportsDBProvider(BaseProvider):
    """TheSportsDB provider adapter (free fallback)."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        api_key = settings.thesportsdb_api_key or FREE_API_KEY
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.THESPORTSDB.value,
            base_url=f"{settings.thesportsdb_base_url.rstrip('/')}/{api_key}",
            rate_limiter=TokenBucket(settings.thesportsdb_rpm_limit, name=ProviderName.THESPORTSDB.value),
            transport=transport,
            settings=settings,
        )
        super().__init__(
            name=ProviderName.THESPORTSDB,
            http_client=http_client,
            supported_sports=set(_TSDB_SPORT_MAP),
        )

    async def _events(self, path: str, params: dict[str, Any], key: str = "events") -> list[Any]:
        data = await self._http.get_json(path, params=params)
        if not isinstance(data, dict):
            raise ProviderMalformedData(self._name.value, f"unexpected payload from {path}")
        # The free API answers "no results" with null instead of an empty list.
        return data.get(key) or []

    # ── Contract ────────────────────────────────────────────────────────
    async def _search(self, query: MatchQuery, date_range: DateRange) -> list[CanonicalMatch]:
        text = query.search or query.team
        if not text:
            if query.sport is not None and self.supports(query.sport):
                return await self._fetch_by_sport(query.sport, date_range, query.status)
            return []
        records = await self._events("/searchevents.php", {"e": text})
        return self._convert_batch(records, self._convert)

    async def _fetch_by_sport(
        self, sport: Sport, date_range: DateRange, status: Optional[MatchStatus]
    ) -> list[CanonicalMatch]:
        matches: list[CanonicalMatch] = []
        for day in date_range.days():
            records = await self._events("/eventsday.php", {"d": day_str(day), "s": _TSDB_SPORT_MAP[sport]})
            matches.extend(self._convert_batch(records, self._convert))
        return matches

    async def _fetch_match(self, provider_id: str) -> Optional[CanonicalMatch]:
        records = await self._events("/lookupevent.php", {"id": provider_id})
        matches = self._convert_batch(records[:1], self._convert)
        return matches[0] if matches else None

    async def _list_leagues(self, sport: Sport) -> list[LeagueInfo]:
        data = await self._http.get_json("/search_all_leagues.php", params={"s": _TSDB_SPORT_MAP[sport]})
        if not isinstance(data, dict):
            raise ProviderMalformedData(self._name.value, "unexpected leagues payload")
        records = data.get("countries") or data.get("countrys") or data.get("leagues") or []
        return [
            LeagueInfo(
                name=item["strLeague"],
                country=item.get("strCountry"),
                logo_url=item.get("strBadge") or None,
                provider_id=str(item.get("idLeague")),
                sport=sport,
            )
            for item in records
            if item.get("strLeague")
        ]

    # ── Parsing ─────────────────────────────────────────────────────────
    def _convert(self, event: dict[str, Any]) -> CanonicalMatch:
        scheduled_at = _kickoff(event)
        if scheduled_at is None:
            raise ProviderMalformedData(self._name.value, "event without date", str(event.get("idEvent")))
        sport = Sport.parse(event.get("strSport") or "")
        return CanonicalMatch(
            external_id=self.qualify(event["idEvent"]),
            provider=self._name,
            sport=sport,
            league=LeagueInfo(
                name=event.get("strLeague"),
                country=event.get("strCountry"),
                logo_url=event.get("strLeagueBadge") or None,
                provider_id=event.get("idLeague"),
                sport=sport,
            ),
            home_team=TeamInfo(name=event.get("strHomeTeam"), logo_url=event.get("strHomeTeamBadge") or None),
            away_team=TeamInfo(name=event.get("strAwayTeam"), logo_url=event.get("strAwayTeamBadge") or None),
            venue=event.get("strVenue"),
            scheduled_at=scheduled_at,
            status=map_tsdb_status(event.get("strStatus")),
            period=event.get("strStatus"),
            minute=to_int(event.get("strProgress")),
            home_score=to_int(event.get("intHomeScore")),
            away_score=to_int(event.get("intAwayScore")),
        )
