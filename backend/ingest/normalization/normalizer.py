"""
Normalization layer shared by the aggregator and the live refresh.
Canonicalizes names, merges duplicates across providers, applies query
filters locally and orders listings.
"""
from __future__ import annotations

from itertools import chain
from typing import Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch, DateRange, MatchQuery, TeamInfo
from shared.models.enums import MatchStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import DEDUP_MERGES

logger = get_logger(__name__)


def _collapse(text: Optional[str]) -> str:
    return " ".join((text or "").split())


class MatchNormalizer:
    """
    Stateless normalization pipeline: canonicalize → merge → filter → sort.

    Merge policy: the first record seen for a key keeps its position; a later
    record replaces it only when its status is further along
    (scheduled < live < finished), and then inherits logos, venue and odds the
    replacement lacks.
    """

    def __init__(self, settings: Settings | None = None, team_aliases: dict[str, str] | None = None) -> None:
        settings = settings or get_settings()
        aliases = settings.team_aliases if team_aliases is None else team_aliases
        self._aliases = {_collapse(k).lower(): _collapse(v) for k, v in aliases.items() if _collapse(v)}

    # ── Canonical naming ────────────────────────────────────────────────
    def team_name(self, name: str) -> str:
        collapsed = _collapse(name)
        return self._aliases.get(collapsed.lower(), collapsed)

    def canonicalize(self, match: CanonicalMatch) -> Optional[CanonicalMatch]:
        """Apply the alias table; returns None for records that cannot be keyed."""
        home = self.team_name(match.home_team.name)
        away = self.team_name(match.away_team.name)
        if not home or not away:
            logger.warning("match_dropped_missing_teams", external_id=match.external_id)
            return None
        if home == match.home_team.name and away == match.away_team.name:
            return match
        return match.model_copy(update={
            "home_team": TeamInfo(name=home, logo_url=match.home_team.logo_url),
            "away_team": TeamInfo(name=away, logo_url=match.away_team.logo_url),
        })

    @staticmethod
    def dedup_key(match: CanonicalMatch) -> str:
        return "|".join((
            match.sport.value,
            _collapse(match.league.name),
            _collapse(match.home_team.name),
            _collapse(match.away_team.name),
        )).lower()

    # ── Merge ───────────────────────────────────────────────────────────
    def merge(
        self,
        batches: Iterable[Iterable[CanonicalMatch]],
        by_external_id: bool = False,
    ) -> list[CanonicalMatch]:
        """
        Flatten batches (in the given order) into one deduplicated list.

        by_external_id keys on the provider-qualified id instead of the
        sport/league/teams key; used when refreshing already-known matches.
        """
        merged: dict[str, CanonicalMatch] = {}
        for raw in chain.from_iterable(batches):
            match = self.canonicalize(raw)
            if match is None:
                continue
            key = match.external_id if by_external_id else self.dedup_key(match)
            current = merged.get(key)
            if current is None:
                merged[key] = match
                continue
            if match.status.progress > current.status.progress:
                # Re-assigning an existing key keeps its original position.
                merged[key] = _backfill(match, current)
                DEDUP_MERGES.labels(winner="later").inc()
            else:
                DEDUP_MERGES.labels(winner="first").inc()
        return list(merged.values())

    # ── Filtering & ordering ────────────────────────────────────────────
    @staticmethod
    def matches_query(
        match: CanonicalMatch,
        query: MatchQuery,
        status: Optional[MatchStatus] = None,
        date_range: Optional[DateRange] = None,
    ) -> bool:
        status = status or query.status
        if query.sport is not None and match.sport != query.sport:
            return False
        if status is not None and match.status != status:
            return False
        league = match.league.name.lower()
        home = match.home_team.name.lower()
        away = match.away_team.name.lower()
        if query.league and query.league.lower() not in league:
            return False
        if query.team:
            team = query.team.lower()
            if team not in home and team not in away:
                return False
        if query.search:
            text = query.search.lower()
            if text not in home and text not in away and text not in league:
                return False
        # Live matches may have kicked off before the window; compare by day otherwise.
        if date_range is not None and status != MatchStatus.LIVE:
            day = match.scheduled_at.date()
            if not (date_range.start.date() <= day <= date_range.end.date()):
                return False
        return True

    def filter(
        self,
        matches: Iterable[CanonicalMatch],
        query: MatchQuery,
        status: Optional[MatchStatus] = None,
        date_range: Optional[DateRange] = None,
    ) -> list[CanonicalMatch]:
        return [m for m in matches if self.matches_query(m, query, status, date_range)]

    @staticmethod
    def sort(matches: list[CanonicalMatch], status: Optional[MatchStatus]) -> list[CanonicalMatch]:
        """Scheduled listings soonest first; everything else most recent first."""
        return sorted(
            matches,
            key=lambda m: m.scheduled_at,
            reverse=status != MatchStatus.SCHEDULED,
        )

    def normalize(
        self,
        batches: Iterable[Iterable[CanonicalMatch]],
        query: MatchQuery,
        status: Optional[MatchStatus] = None,
        date_range: Optional[DateRange] = None,
    ) -> list[CanonicalMatch]:
        status = status or query.status
        merged = self.merge(batches)
        return self.sort(self.filter(merged, query, status, date_range), status)


def _backfill(winner: CanonicalMatch, loser: CanonicalMatch) -> CanonicalMatch:
    """Copy presentation fields the winner lacks from the record it replaces."""
    update: dict[str, object] = {}
    if not winner.venue and loser.venue:
        update["venue"] = loser.venue
    if winner.odds is None and loser.odds is not None:
        update["odds"] = loser.odds
    if not winner.home_team.logo_url and loser.home_team.logo_url:
        update["home_team"] = winner.home_team.model_copy(update={"logo_url": loser.home_team.logo_url})
    if not winner.away_team.logo_url and loser.away_team.logo_url:
        update["away_team"] = winner.away_team.model_copy(update={"logo_url": loser.away_team.logo_url})
    if not winner.league.logo_url and loser.league.logo_url:
        update["league"] = winner.league.model_copy(update={"logo_url": loser.league.logo_url})
    return winner.model_copy(update=update) if update else winner
