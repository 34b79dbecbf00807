"""
ESPN provider adapter.
Reads ESPN's public scoreboard API (no key) across the configured leagues of
each sport and normalizes events to CanonicalMatch.
"""
from __future__ import annotations

import re
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import ProviderError, ProviderMalformedData
from shared.models.domain import (
    CanonicalMatch,
    DateRange,
    LeagueInfo,
    MatchEvent,
    MatchOdds,
    MatchQuery,
    TeamInfo,
)
from shared.models.enums import EventType, MatchStatus, ProviderName, Sport, TeamSide
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import TokenBucket

from ingest.providers.base import BaseProvider, parse_datetime, to_float, to_int

logger = get_logger(__name__)

# ESPN sport slug mapping
_SPORT_SLUGS: dict[Sport, str] = {
    Sport.FOOTBALL: "soccer",
    Sport.BASKETBALL: "basketball",
    Sport.HOCKEY: "hockey",
    Sport.BASEBALL: "baseball",
    Sport.AMERICAN_FOOTBALL: "football",
}
_SLUG_SPORTS: dict[str, Sport] = {slug: sport for sport, slug in _SPORT_SLUGS.items()}

_EVENT_TYPES: list[tuple[str, EventType]] = [
    ("own goal", EventType.OWN_GOAL),
    ("penalty - missed", EventType.PENALTY_MISS),
    ("penalty - saved", EventType.PENALTY_MISS),
    ("penalty", EventType.PENALTY),
    ("goal", EventType.GOAL),
    ("yellow card", EventType.YELLOW_CARD),
    ("red card", EventType.RED_CARD),
    ("substitution", EventType.SUBSTITUTION),
    ("var", EventType.VAR_DECISION),
]


def _parse_soccer_clock_minute(clock: str) -> Optional[int]:
    """Parse minute from soccer clock (e.g. \"111'\", \"45+3'\"). Returns None if unparseable."""
    if not clock:
        return None
    s = clock.strip()
    plus = re.match(r"^(\d+)\s*\+\s*(\d+)\s*'?", s)
    if plus:
        return int(plus.group(1)) + int(plus.group(2))
    simple = re.search(r"(\d+)\s*'?", s)
    return int(simple.group(1)) if simple else None


def _parse_espn_status(status_type: dict[str, Any]) -> MatchStatus:
    """Map an ESPN status.type block to a canonical status."""
    name = str(status_type.get("name", "")).upper()
    state = str(status_type.get("state", "")).lower()
    if "POSTPONED" in name or "DELAYED" in name:
        return MatchStatus.POSTPONED
    if "CANCEL" in name or "ABANDON" in name or "FORFEIT" in name:
        return MatchStatus.CANCELLED
    if state == "in":
        return MatchStatus.LIVE
    if state == "post" or status_type.get("completed"):
        return MatchStatus.FINISHED
    return MatchStatus.SCHEDULED


def _parse_espn_event_type(play_type: str) -> EventType:
    """Map ESPN detail type strings to canonical EventType."""
    pt = play_type.lower()
    for key, val in _EVENT_TYPES:
        if key in pt:
            return val
    return EventType.GENERIC


def _american_to_decimal(value: Any) -> Optional[float]:
    line = to_float(value)
    if line is None or line == 0:
        return None
    if line > 0:
        return round(1 + line / 100, 3)
    return round(1 + 100 / abs(line), 3)


class ESPNProvider(BaseProvider):
    """ESPN data provider adapter."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._leagues: dict[Sport, list[str]] = {}
        for raw_sport, slugs in settings.espn_leagues.items():
            sport = Sport.parse(raw_sport)
            if sport in _SPORT_SLUGS and slugs:
                self._leagues[sport] = list(slugs)
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.ESPN.value,
            base_url=settings.espn_base_url,
            rate_limiter=TokenBucket(settings.espn_rpm_limit, name=ProviderName.ESPN.value),
            transport=transport,
            settings=settings,
        )
        super().__init__(
            name=ProviderName.ESPN,
            http_client=http_client,
            supported_sports=set(self._leagues),
        )

    # ── Contract ────────────────────────────────────────────────────────
    async def _search(self, query: MatchQuery, date_range: DateRange) -> list[CanonicalMatch]:
        # No search endpoint: scan the scoreboards and let the caller filter by text.
        sports = [query.sport] if query.sport is not None else sorted(self._leagues, key=lambda s: s.value)
        matches: list[CanonicalMatch] = []
        for sport in sports:
            if self.supports(sport):
                matches.extend(await self._fetch_by_sport(sport, date_range, query.status))
        return matches

    async def _fetch_by_sport(
        self, sport: Sport, date_range: DateRange, status: Optional[MatchStatus]
    ) -> list[CanonicalMatch]:
        params: dict[str, Any] = {}
        if status != MatchStatus.LIVE:
            params["dates"] = f"{date_range.start:%Y%m%d}-{date_range.end:%Y%m%d}"

        matches: list[CanonicalMatch] = []
        failures: list[ProviderError] = []
        leagues = self._leagues.get(sport, [])
        for league_slug in leagues:
            try:
                matches.extend(await self._scoreboard(sport, league_slug, params))
            except ProviderError as exc:
                # One broken league must not hide the others.
                failures.append(exc)
                logger.warning(
                    "espn_league_failed",
                    sport=sport.value,
                    league=league_slug,
                    error=str(exc),
                )
        if failures and len(failures) == len(leagues):
            raise failures[-1]
        return matches

    async def _fetch_match(self, provider_id: str) -> Optional[CanonicalMatch]:
        try:
            sport_slug, league_slug, event_id = provider_id.split(":", 2)
        except ValueError:
            return None
        sport = _SLUG_SPORTS.get(sport_slug)
        if sport is None:
            return None
        data = await self._http.get_json(f"/{sport_slug}/{league_slug}/summary", params={"event": event_id})
        if not isinstance(data, dict):
            raise ProviderMalformedData(self._name.value, "unexpected summary payload", event_id)
        header = data.get("header") or {}
        competitions = header.get("competitions") or []
        if not competitions:
            return None
        event = {
            "id": header.get("id", event_id),
            "date": competitions[0].get("date"),
            "competitions": competitions,
        }
        league = header.get("league") or {}
        league_info = LeagueInfo(
            name=league.get("name") or league_slug,
            provider_id=league_slug,
            sport=sport,
        )
        venue = ((data.get("gameInfo") or {}).get("venue") or {}).get("fullName")
        matches = self._convert_batch([event], lambda e: self._convert(e, sport, league_slug, league_info, venue))
        return matches[0] if matches else None

    async def _list_leagues(self, sport: Sport) -> list[LeagueInfo]:
        leagues: list[LeagueInfo] = []
        for league_slug in self._leagues.get(sport, []):
            data = await self._http.get_json(f"/{_SPORT_SLUGS[sport]}/{league_slug}/scoreboard")
            leagues.append(self._league_info(data, sport, league_slug))
        return leagues

    # ── Parsing helpers ─────────────────────────────────────────────────
    async def _scoreboard(self, sport: Sport, league_slug: str, params: dict[str, Any]) -> list[CanonicalMatch]:
        data = await self._http.get_json(f"/{_SPORT_SLUGS[sport]}/{league_slug}/scoreboard", params=params)
        if not isinstance(data, dict):
            raise ProviderMalformedData(self._name.value, f"unexpected scoreboard payload for {league_slug}")
        league_info = self._league_info(data, sport, league_slug)
        return self._convert_batch(
            data.get("events") or [],
            lambda event: self._convert(event, sport, league_slug, league_info),
        )

    @staticmethod
    def _league_info(data: Any, sport: Sport, league_slug: str) -> LeagueInfo:
        leagues = data.get("leagues") if isinstance(data, dict) else None
        league = leagues[0] if leagues else {}
        logos = league.get("logos") or []
        return LeagueInfo(
            name=league.get("name") or league_slug,
            logo_url=logos[0].get("href") if logos else None,
            provider_id=league_slug,
            sport=sport,
        )

    def _convert(
        self,
        event: dict[str, Any],
        sport: Sport,
        league_slug: str,
        league_info: LeagueInfo,
        venue: Optional[str] = None,
    ) -> CanonicalMatch:
        """Parse a single ESPN scoreboard event into a CanonicalMatch."""
        comp = (event.get("competitions") or [{}])[0]
        competitors = comp.get("competitors", [])
        home_data = next((c for c in competitors if c.get("homeAway") == "home"), None)
        away_data = next((c for c in competitors if c.get("homeAway") == "away"), None)
        if home_data is None or away_data is None:
            raise ProviderMalformedData(self._name.value, "event without home/away competitors", str(event.get("id")))

        scheduled_at = parse_datetime(event.get("date") or comp.get("date"))
        if scheduled_at is None:
            raise ProviderMalformedData(self._name.value, "event without date", str(event.get("id")))

        status_block = comp.get("status") or event.get("status") or {}
        status_type = status_block.get("type") or {}
        status = _parse_espn_status(status_type)
        clock = status_block.get("displayClock", "")
        minute = _parse_soccer_clock_minute(clock) if sport == Sport.FOOTBALL else None

        home_team = home_data.get("team") or {}
        away_team = away_data.get("team") or {}
        home_id = home_team.get("id", home_data.get("id"))

        return CanonicalMatch(
            external_id=self.qualify(f"{_SPORT_SLUGS[sport]}:{league_slug}:{event['id']}"),
            provider=self._name,
            sport=sport,
            league=league_info,
            home_team=TeamInfo(name=home_team.get("displayName"), logo_url=home_team.get("logo") or None),
            away_team=TeamInfo(name=away_team.get("displayName"), logo_url=away_team.get("logo") or None),
            venue=venue or (comp.get("venue") or {}).get("fullName"),
            scheduled_at=scheduled_at,
            status=status,
            period=status_type.get("shortDetail") or status_type.get("detail"),
            minute=minute,
            home_score=to_int(home_data.get("score")),
            away_score=to_int(away_data.get("score")),
            odds=self._parse_odds(comp.get("odds")),
            events=[self._parse_detail(d, home_id) for d in comp.get("details") or []],
        )

    @staticmethod
    def _parse_odds(raw: Any) -> Optional[MatchOdds]:
        if not raw:
            return None
        line = raw[0]
        extra: dict[str, float] = {}
        for key, name in (("spread", "spread"), ("overUnder", "over_under")):
            value = to_float(line.get(key))
            if value is not None:
                extra[name] = value
        return MatchOdds(
            home_win=_american_to_decimal((line.get("homeTeamOdds") or {}).get("moneyLine")),
            away_win=_american_to_decimal((line.get("awayTeamOdds") or {}).get("moneyLine")),
            draw=_american_to_decimal((line.get("drawOdds") or {}).get("moneyLine")),
            extra=extra,
        )

    @staticmethod
    def _parse_detail(detail: dict[str, Any], home_id: Any) -> MatchEvent:
        """Parse a scoreboard key event (goal, card, substitution)."""
        text = (detail.get("type") or {}).get("text", "")
        if detail.get("ownGoal"):
            event_type = EventType.OWN_GOAL
        elif detail.get("penaltyKick") and detail.get("scoringPlay"):
            event_type = EventType.PENALTY
        elif detail.get("redCard"):
            event_type = EventType.RED_CARD
        elif detail.get("yellowCard"):
            event_type = EventType.YELLOW_CARD
        else:
            event_type = _parse_espn_event_type(text)
        athletes = detail.get("athletesInvolved") or []
        team_id = (detail.get("team") or {}).get("id")
        return MatchEvent(
            type=event_type,
            minute=_parse_soccer_clock_minute((detail.get("clock") or {}).get("displayValue", "")),
            team=TeamSide.HOME if team_id is not None and team_id == home_id else TeamSide.AWAY,
            player=athletes[0].get("displayName") if athletes else None,
            description=text or None,
        )
