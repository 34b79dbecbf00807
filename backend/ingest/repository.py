"""
Persistence adapter for canonical matches.

MatchRepository is the collaborator interface used by the scheduler and the
query facade; SqlMatchRepository implements it with SQLAlchemy 2.0 async on
top of DatabaseManager. Matches are upserted by (sport, external_id) so the
same batch written twice leaves one row per match.
"""
from __future__ import annotations

import abc
from datetime import datetime, time
from typing import Any, Iterable, Optional

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from shared.models.domain import (
    CanonicalMatch,
    DateRange,
    LeagueInfo,
    MatchEvent,
    MatchOdds,
    MatchQuery,
    TeamInfo,
    ensure_utc,
    utcnow,
)
from shared.models.enums import EventType, MatchStatus, ProviderName, Sport, TeamSide
from shared.models.orm import LeagueORM, MatchEventORM, MatchORM, TeamORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class MatchRepository(abc.ABC):
    """Persistence collaborator for canonical matches."""

    @abc.abstractmethod
    async def upsert_matches(self, matches: Iterable[CanonicalMatch]) -> int:
        """Insert or update matches keyed by (sport, external_id). Returns rows written."""

    @abc.abstractmethod
    async def find_matches(
        self,
        query: MatchQuery,
        status: Optional[MatchStatus] = None,
    ) -> tuple[list[CanonicalMatch], int]:
        """One page of matches for query plus the total number of matches."""

    @abc.abstractmethod
    async def get_match(self, external_id: str) -> Optional[CanonicalMatch]:
        ...

    @abc.abstractmethod
    async def live_external_ids(self, sport: Sport) -> list[str]:
        """External ids of the matches of sport currently stored as live."""

    @abc.abstractmethod
    async def count(self) -> int:
        ...


class SqlMatchRepository(MatchRepository):
    """SQLAlchemy implementation over the leagues/teams/matches/match_events tables."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # ── Writes ──────────────────────────────────────────────────────────
    async def upsert_matches(self, matches: Iterable[CanonicalMatch]) -> int:
        matches = list(matches)
        if not matches:
            return 0
        leagues: dict[tuple[str, str], LeagueORM] = {}
        teams: dict[tuple[str, str], TeamORM] = {}
        created = updated = 0

        async with self._db.write_session() as session:
            for match in matches:
                league = await self._get_or_create_league(session, match, leagues)
                home = await self._get_or_create_team(session, match.sport.value, match.home_team, teams)
                away = await self._get_or_create_team(session, match.sport.value, match.away_team, teams)

                stmt = (
                    select(MatchORM)
                    .options(selectinload(MatchORM.events))
                    .where(
                        MatchORM.sport == match.sport.value,
                        MatchORM.external_id == match.external_id,
                    )
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    # Kickoff is fixed by the first write; later refreshes never move it.
                    row = MatchORM(
                        external_id=match.external_id,
                        sport=match.sport.value,
                        scheduled_at=match.scheduled_at,
                        events=[],
                    )
                    session.add(row)
                    created += 1
                else:
                    updated += 1

                row.provider = match.provider.value
                row.league_id = league.id
                row.home_team_id = home.id
                row.away_team_id = away.id
                row.venue = match.venue
                row.status = match.status.value
                row.period = match.period
                row.minute = match.minute
                row.home_score = match.home_score
                row.away_score = match.away_score
                row.odds = match.odds.model_dump() if match.odds is not None else None
                row.statistics = dict(match.statistics)
                row.updated_at = utcnow()

                # Old rows must be gone before new ones reuse their seq numbers.
                if row.events:
                    row.events.clear()
                    await session.flush()
                row.events.extend(_event_rows(match.events))
                await session.flush()

        logger.info("matches_upserted", created=created, updated=updated)
        return created + updated

    async def _get_or_create_league(
        self,
        session: AsyncSession,
        match: CanonicalMatch,
        cache: dict[tuple[str, str], LeagueORM],
    ) -> LeagueORM:
        key = (match.sport.value, match.league.name)
        league = cache.get(key)
        if league is None:
            stmt = select(LeagueORM).where(LeagueORM.sport == key[0], LeagueORM.name == key[1])
            league = (await session.execute(stmt)).scalar_one_or_none()
            if league is None:
                league = LeagueORM(sport=key[0], name=key[1])
                session.add(league)
            cache[key] = league
        info = match.league
        league.country = league.country or info.country
        league.logo_url = league.logo_url or info.logo_url
        league.provider_id = league.provider_id or info.provider_id
        await session.flush()
        return league

    async def _get_or_create_team(
        self,
        session: AsyncSession,
        sport: str,
        info: TeamInfo,
        cache: dict[tuple[str, str], TeamORM],
    ) -> TeamORM:
        key = (sport, info.name)
        team = cache.get(key)
        if team is None:
            stmt = select(TeamORM).where(TeamORM.sport == sport, TeamORM.name == info.name)
            team = (await session.execute(stmt)).scalar_one_or_none()
            if team is None:
                team = TeamORM(sport=sport, name=info.name)
                session.add(team)
            cache[key] = team
        if info.logo_url and not team.logo_url:
            team.logo_url = info.logo_url
        await session.flush()
        return team

    # ── Reads ───────────────────────────────────────────────────────────
    async def find_matches(
        self,
        query: MatchQuery,
        status: Optional[MatchStatus] = None,
    ) -> tuple[list[CanonicalMatch], int]:
        status = status or query.status
        filtered = self._filtered(select(MatchORM.id), query, status)

        ordering = MatchORM.scheduled_at.asc() if status == MatchStatus.SCHEDULED else MatchORM.scheduled_at.desc()
        page_stmt = (
            select(MatchORM)
            .options(*_LOAD_OPTIONS)
            .where(MatchORM.id.in_(filtered))
            .order_by(ordering, MatchORM.external_id)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        count_stmt = select(func.count()).select_from(filtered.subquery())

        async with self._db.read_session() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(page_stmt)).scalars().all()
            return [_to_domain(row) for row in rows], int(total)

    @staticmethod
    def _filtered(stmt: Select[Any], query: MatchQuery, status: Optional[MatchStatus]) -> Select[Any]:
        home = aliased(TeamORM)
        away = aliased(TeamORM)
        stmt = (
            stmt.join(LeagueORM, MatchORM.league_id == LeagueORM.id)
            .join(home, MatchORM.home_team_id == home.id)
            .join(away, MatchORM.away_team_id == away.id)
        )
        if query.sport is not None:
            stmt = stmt.where(MatchORM.sport == query.sport.value)
        if status is not None:
            stmt = stmt.where(MatchORM.status == status.value)
        if query.league:
            stmt = stmt.where(func.lower(LeagueORM.name).contains(query.league.lower(), autoescape=True))
        if query.team:
            team = query.team.lower()
            stmt = stmt.where(or_(
                func.lower(home.name).contains(team, autoescape=True),
                func.lower(away.name).contains(team, autoescape=True),
            ))
        if query.search:
            text = query.search.lower()
            stmt = stmt.where(or_(
                func.lower(home.name).contains(text, autoescape=True),
                func.lower(away.name).contains(text, autoescape=True),
                func.lower(LeagueORM.name).contains(text, autoescape=True),
            ))
        if status != MatchStatus.LIVE or query.date_from or query.date_to:
            start, end = _day_bounds(query.with_status(status).date_range())
            stmt = stmt.where(MatchORM.scheduled_at >= start, MatchORM.scheduled_at <= end)
        return stmt

    async def get_match(self, external_id: str) -> Optional[CanonicalMatch]:
        stmt = (
            select(MatchORM)
            .options(*_LOAD_OPTIONS)
            .where(MatchORM.external_id == external_id)
            .limit(1)
        )
        async with self._db.read_session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_domain(row) if row is not None else None

    async def live_external_ids(self, sport: Sport) -> list[str]:
        stmt = select(MatchORM.external_id).where(
            MatchORM.sport == sport.value,
            MatchORM.status == MatchStatus.LIVE.value,
        )
        async with self._db.read_session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def count(self) -> int:
        async with self._db.read_session() as session:
            return int((await session.execute(select(func.count(MatchORM.id)))).scalar_one())


_LOAD_OPTIONS = (
    selectinload(MatchORM.league),
    selectinload(MatchORM.home_team),
    selectinload(MatchORM.away_team),
    selectinload(MatchORM.events),
)


def _day_bounds(date_range: DateRange) -> tuple[datetime, datetime]:
    tz = date_range.start.tzinfo
    return (
        datetime.combine(date_range.start.date(), time.min, tzinfo=tz),
        datetime.combine(date_range.end.date(), time.max, tzinfo=tz),
    )


def _event_rows(events: Iterable[MatchEvent]) -> list[MatchEventORM]:
    return [
        MatchEventORM(
            seq=seq,
            event_type=event.type.value,
            minute=event.minute,
            team_side=event.team.value if event.team else None,
            player_name=event.player,
            detail=event.description,
        )
        for seq, event in enumerate(events)
    ]


def _to_domain(row: MatchORM) -> CanonicalMatch:
    """ORM row (with league, teams and events loaded) -> CanonicalMatch."""
    return CanonicalMatch(
        external_id=row.external_id,
        provider=ProviderName(row.provider),
        id=row.id,
        sport=row.sport,
        league=LeagueInfo(
            name=row.league.name,
            country=row.league.country,
            logo_url=row.league.logo_url,
            provider_id=row.league.provider_id,
            sport=row.sport,
        ),
        home_team=TeamInfo(name=row.home_team.name, logo_url=row.home_team.logo_url),
        away_team=TeamInfo(name=row.away_team.name, logo_url=row.away_team.logo_url),
        venue=row.venue,
        scheduled_at=ensure_utc(row.scheduled_at),
        status=MatchStatus(row.status),
        period=row.period,
        minute=row.minute,
        home_score=row.home_score,
        away_score=row.away_score,
        odds=MatchOdds(**row.odds) if row.odds else None,
        statistics=row.statistics or {},
        events=[
            MatchEvent(
                type=EventType(e.event_type),
                minute=e.minute,
                team=TeamSide(e.team_side) if e.team_side else None,
                player=e.player_name,
                description=e.detail,
            )
            for e in row.events
        ],
        updated_at=ensure_utc(row.updated_at) if row.updated_at else utcnow(),
    )
