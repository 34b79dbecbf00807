"""
SportMonks Football (v3) provider adapter.
Authenticated with the api_token query parameter; related entities are
pulled in with include= expansions and status comes from the state id.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional
from urllib.parse import quote

import httpx

from shared.config import Settings, get_settings
from shared.errors import ProviderMalformedData
from shared.models.domain import (
    CanonicalMatch,
    DateRange,
    LeagueInfo,
    MatchEvent,
    MatchQuery,
    TeamInfo,
    utcnow,
)
from shared.models.enums import EventType, MatchStatus, ProviderName, Sport, TeamSide
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import TokenBucket

from ingest.providers.base import BaseProvider, day_str, parse_datetime, to_int

logger = get_logger(__name__)

FIXTURE_INCLUDES = "state;league.country;participants;venue;scores;events"
LEAGUE_PAGE_SIZE = 100
LEAGUE_MAX_PAGES = 10
CURRENT_SCORE_TYPE_ID = 1525

_STATE_IDS: dict[int, MatchStatus] = {
    1: MatchStatus.SCHEDULED,    # NS
    13: MatchStatus.SCHEDULED,   # DELAYED
    14: MatchStatus.SCHEDULED,   # TBA
    16: MatchStatus.SCHEDULED,   # AU
    11: MatchStatus.POSTPONED,   # POSTP
    2: MatchStatus.LIVE,         # LIVE
    3: MatchStatus.LIVE,         # HT
    7: MatchStatus.LIVE,         # BREAK
    10: MatchStatus.LIVE,        # INT
    5: MatchStatus.FINISHED,     # FT
    6: MatchStatus.FINISHED,     # FT_PEN
    17: MatchStatus.FINISHED,    # AET
    8: MatchStatus.CANCELLED,    # CANC
    9: MatchStatus.CANCELLED,    # SUSP
    12: MatchStatus.CANCELLED,   # ABANDN
    15: MatchStatus.CANCELLED,   # WO
}

# Older payloads without a known state id
_STATE_NAMES: dict[str, MatchStatus] = {
    "NS": MatchStatus.SCHEDULED,
    "TBD": MatchStatus.SCHEDULED,
    "DELAYED": MatchStatus.SCHEDULED,
    "POSTP": MatchStatus.POSTPONED,
    "LIVE": MatchStatus.LIVE,
    "1H": MatchStatus.LIVE,
    "HT": MatchStatus.LIVE,
    "2H": MatchStatus.LIVE,
    "ET": MatchStatus.LIVE,
    "PEN": MatchStatus.LIVE,
    "INT": MatchStatus.LIVE,
    "BREAK": MatchStatus.LIVE,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "FT_PEN": MatchStatus.FINISHED,
    "CANCL": MatchStatus.CANCELLED,
    "CANC": MatchStatus.CANCELLED,
    "ABD": MatchStatus.CANCELLED,
    "ABAN": MatchStatus.CANCELLED,
    "WO": MatchStatus.CANCELLED,
    "SUSP": MatchStatus.CANCELLED,
}

_STAT_KEYS: dict[str, str] = {
    "possessiontime": "possession",
    "shots_total": "shots",
    "shots_on_target": "shots_on_target",
    "corners": "corners",
    "yellowcards": "yellow_cards",
    "redcards": "red_cards",
}


def map_state(state: Optional[dict[str, Any]]) -> MatchStatus:
    """SportMonks state object -> canonical status (id first, then short name)."""
    if not state:
        return MatchStatus.SCHEDULED
    by_id = _STATE_IDS.get(to_int(state.get("id")) or 0)
    if by_id is not None:
        return by_id
    name = str(state.get("short_name") or state.get("state") or "").upper()
    return _STATE_NAMES.get(name, MatchStatus.SCHEDULED)


def _event_type(raw: Any) -> EventType:
    if isinstance(raw, dict):
        raw = raw.get("developer_name") or raw.get("name") or ""
    name = str(raw or "").lower().replace("_", " ")
    if "owngoal" in name or "own goal" in name:
        return EventType.OWN_GOAL
    if "missed penalty" in name or "penalty miss" in name:
        return EventType.PENALTY_MISS
    if "penalty" in name:
        return EventType.PENALTY
    if "goal" in name:
        return EventType.GOAL
    if "redcard" in name or "red card" in name or "yellowred" in name:
        return EventType.RED_CARD
    if "yellow" in name:
        return EventType.YELLOW_CARD
    if "subst" in name:
        return EventType.SUBSTITUTION
    if "var" in name:
        return EventType.VAR_DECISION
    return EventType.GENERIC


class SportMonksProvider(BaseProvider):
    """SportMonks football provider adapter."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.SPORTMONKS.value,
            base_url=settings.sportmonks_base_url,
            default_params={"api_token": settings.sportmonks_api_key},
            rate_limiter=TokenBucket(settings.sportmonks_rpm_limit, name=ProviderName.SPORTMONKS.value),
            transport=transport,
            settings=settings,
        )
        super().__init__(
            name=ProviderName.SPORTMONKS,
            http_client=http_client,
            supported_sports={Sport.FOOTBALL},
        )

    async def _get_data(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = await self._http.get_json(path, params={"include": FIXTURE_INCLUDES, **(params or {})})
        if not isinstance(payload, dict) or "data" not in payload:
            raise ProviderMalformedData(self._name.value, f"missing 'data' from {path}")
        return payload

    async def _fixtures(self, path: str) -> list[CanonicalMatch]:
        payload = await self._get_data(path)
        data = payload["data"] or []
        if isinstance(data, dict):
            data = [data]
        return self._convert_batch(data, self._convert)

    async def _between(self, date_range: DateRange) -> list[CanonicalMatch]:
        return await self._fixtures(
            f"/fixtures/between/{day_str(date_range.start)}/{day_str(date_range.end)}"
        )

    # ── Contract ────────────────────────────────────────────────────────
    async def _search(self, query: MatchQuery, date_range: DateRange) -> list[CanonicalMatch]:
        text = query.search or query.team
        if text:
            return await self._fixtures(f"/fixtures/search/{quote(text, safe='')}")
        return await self._between(date_range)

    async def _fetch_by_sport(
        self, sport: Sport, date_range: DateRange, status: Optional[MatchStatus]
    ) -> list[CanonicalMatch]:
        if status != MatchStatus.LIVE:
            return await self._between(date_range)

        matches = await self._fixtures("/livescores/inplay")
        if matches:
            return matches
        # The in-play feed lags on some plans; fall back to today's fixtures.
        today = utcnow()
        todays = await self._between(DateRange(start=today, end=today + timedelta(days=1)))
        return [m for m in todays if m.status == MatchStatus.LIVE]

    async def _fetch_match(self, provider_id: str) -> Optional[CanonicalMatch]:
        matches = await self._fixtures(f"/fixtures/{quote(provider_id, safe='')}")
        return matches[0] if matches else None

    async def _list_leagues(self, sport: Sport) -> list[LeagueInfo]:
        leagues: dict[str, LeagueInfo] = {}
        page = 1
        while page <= LEAGUE_MAX_PAGES:
            payload = await self._get_data(
                "/leagues", {"include": "country", "page": page, "per_page": LEAGUE_PAGE_SIZE}
            )
            for item in payload["data"] or []:
                league_id = str(item.get("id"))
                if not item.get("name") or league_id in leagues:
                    continue
                leagues[league_id] = LeagueInfo(
                    name=item["name"],
                    country=(item.get("country") or {}).get("name"),
                    logo_url=item.get("image_path") or None,
                    provider_id=league_id,
                    sport=Sport.FOOTBALL,
                )
            pagination = (payload.get("meta") or {}).get("pagination") or payload.get("pagination") or {}
            if not pagination.get("has_more") and page >= (to_int(pagination.get("total_pages")) or 1):
                break
            page += 1
        return sorted(leagues.values(), key=lambda league: league.name)

    # ── Parsing ─────────────────────────────────────────────────────────
    def _convert(self, f: dict[str, Any]) -> CanonicalMatch:
        participants = f.get("participants") or []
        home = self._select_team(participants, "home")
        away = self._select_team(participants, "away")
        if home is None or away is None:
            raise ProviderMalformedData(self._name.value, "fixture without two participants", str(f.get("id")))

        scheduled_at = parse_datetime(f.get("starting_at")) or parse_datetime(f.get("starting_at_timestamp"))
        if scheduled_at is None:
            raise ProviderMalformedData(self._name.value, "fixture without kickoff time", str(f.get("id")))

        state = f.get("state") or {}
        league = f.get("league") or {}
        scores = f.get("scores") or []
        return CanonicalMatch(
            external_id=self.qualify(f["id"]),
            provider=self._name,
            sport=Sport.FOOTBALL,
            league=LeagueInfo(
                name=league.get("name") or "Football",
                country=(league.get("country") or {}).get("name"),
                logo_url=league.get("image_path") or None,
                provider_id=str(league["id"]) if league.get("id") is not None else None,
                sport=Sport.FOOTBALL,
            ),
            home_team=TeamInfo(name=home.get("name"), logo_url=home.get("image_path") or None),
            away_team=TeamInfo(name=away.get("name"), logo_url=away.get("image_path") or None),
            venue=(f.get("venue") or {}).get("name"),
            scheduled_at=scheduled_at,
            status=map_state(state),
            period=state.get("short_name") or state.get("state"),
            minute=to_int((f.get("time") or {}).get("minute")),
            home_score=self._score(scores, home.get("id")),
            away_score=self._score(scores, away.get("id")),
            statistics=self._statistics(f.get("statistics")),
            events=[self._convert_event(e, home.get("id")) for e in f.get("events") or []],
        )

    @staticmethod
    def _select_team(participants: list[dict[str, Any]], location: str) -> Optional[dict[str, Any]]:
        for p in participants:
            if (p.get("meta") or {}).get("location") == location:
                return p
        # Without location metadata the first participant is home.
        index = 0 if location == "home" else 1
        return participants[index] if len(participants) > index else None

    @staticmethod
    def _score(scores: list[dict[str, Any]], participant_id: Any) -> Optional[int]:
        if participant_id is None:
            return None
        own = [s for s in scores if s.get("participant_id") == participant_id]
        current = next(
            (s for s in own if s.get("type_id") == CURRENT_SCORE_TYPE_ID or s.get("description") == "CURRENT"),
            own[0] if own else None,
        )
        if current is None:
            return None
        return to_int((current.get("score") or {}).get("goals"))

    @staticmethod
    def _statistics(raw: Any) -> dict[str, Any]:
        if not isinstance(raw, dict):
            return {}
        stats: dict[str, Any] = {}
        for key, name in _STAT_KEYS.items():
            value = raw.get(key)
            if isinstance(value, dict):
                stats[name] = {"home": to_int(value.get("home")) or 0, "away": to_int(value.get("away")) or 0}
        return stats

    @staticmethod
    def _convert_event(event: dict[str, Any], home_id: Any) -> MatchEvent:
        participant_id = event.get("participant_id")
        if participant_id is None:
            participant_id = (event.get("participant") or {}).get("id")
        return MatchEvent(
            type=_event_type(event.get("type")),
            minute=to_int(event.get("minute")),
            team=TeamSide.HOME if participant_id is not None and participant_id == home_id else TeamSide.AWAY,
            player=event.get("player_name") or (event.get("participant") or {}).get("name"),
            description=event.get("result") or event.get("info"),
        )
