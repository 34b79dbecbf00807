"""
Query facade: the single surface the routing layer talks to.

Decides between the fresh path (aggregator, optionally cached in Redis) and
the cached path (persisted store), applies pagination after normalization
and exposes the scheduler's operational actions.
"""
from __future__ import annotations

import asyncio
import hashlib
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from shared.config import Settings, get_settings
from shared.errors import AllProvidersExhausted, ScoreFusionError, ValidationError
from shared.models.domain import CanonicalMatch, LeagueInfo, MatchPage, MatchQuery, ProviderHealth
from shared.models.enums import DataSource, MatchStatus, Sport
from shared.utils.logging import get_logger
from shared.utils.metrics import FACADE_QUERIES
from shared.utils.redis_manager import RedisManager

from ingest.aggregator import AggregationOutcome, AggregationResult, MatchAggregator
from ingest.normalization.pagination import build_page, pagination_info
from ingest.repository import MatchRepository
from scheduler.service import LiveUpdateScheduler, RefreshReport

logger = get_logger(__name__)

CACHE_NAMESPACE = "matches"

QueryInput = Union[MatchQuery, Mapping[str, Any]]


class QueryFacade:
    """Routes match queries to the aggregator or the repository."""

    def __init__(
        self,
        aggregator: MatchAggregator,
        repository: MatchRepository,
        scheduler: LiveUpdateScheduler,
        redis: RedisManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._aggregator = aggregator
        self._repository = repository
        self._scheduler = scheduler
        self._redis = redis if self._settings.redis_enabled else None
        self._timeout_s = self._settings.query_timeout_s

    def parse_query(self, params: QueryInput) -> MatchQuery:
        """Raw routing parameters -> MatchQuery (raises ValidationError)."""
        if isinstance(params, MatchQuery):
            return params
        params = dict(params)
        params.setdefault("limit", self._settings.default_page_size)
        return MatchQuery.from_params(params, max_limit=self._settings.max_page_size)

    # ── Match queries ───────────────────────────────────────────────────
    async def search_matches(self, params: QueryInput) -> MatchPage:
        """Free-text search; always served fresh from the providers."""
        query = self.parse_query(params)
        if not query.search:
            raise ValidationError(
                "Search text is required",
                errors=[{"loc": ["search"], "msg": "Field required", "type": "missing"}],
            )
        return await self._fresh("search", query, lambda: self._aggregator.search(query))

    async def get_live_matches(self, params: QueryInput) -> MatchPage:
        return await self._listing(self.parse_query(params), MatchStatus.LIVE)

    async def get_scheduled_matches(self, params: QueryInput) -> MatchPage:
        return await self._listing(self.parse_query(params), MatchStatus.SCHEDULED)

    async def get_finished_matches(self, params: QueryInput) -> MatchPage:
        return await self._listing(self.parse_query(params), MatchStatus.FINISHED)

    async def list_matches(self, params: QueryInput) -> MatchPage:
        """General listing: search text first, then by status; unscoped API listings show upcoming matches."""
        query = self.parse_query(params)
        if query.search:
            return await self.search_matches(query)
        return await self._listing(query, query.status)

    async def get_match(self, external_id: str) -> Optional[CanonicalMatch]:
        match = await self._repository.get_match(external_id)
        if match is not None:
            FACADE_QUERIES.labels(operation="get_match", source=DataSource.DATABASE.value).inc()
            return match
        result = await self._with_timeout(self._aggregator.fetch_match(external_id))
        result.raise_for_outcome()
        FACADE_QUERIES.labels(operation="get_match", source=DataSource.API.value).inc()
        return result.items[0] if result.items else None

    async def get_leagues(self, sport: Union[str, Sport, None] = None) -> list[LeagueInfo]:
        try:
            resolved = Sport.parse(sport or self._settings.default_sport)
        except ValueError as exc:
            raise ValidationError(
                str(exc), errors=[{"loc": ["sport"], "msg": str(exc), "type": "enum"}]
            ) from exc
        result = await self._with_timeout(self._aggregator.list_leagues(resolved))
        result.raise_for_outcome()
        FACADE_QUERIES.labels(operation="get_leagues", source=DataSource.API.value).inc()
        return result.items

    # ── Operations ──────────────────────────────────────────────────────
    def get_health_status(self) -> dict[str, ProviderHealth]:
        return self._aggregator.health.get_health_status()

    async def refresh(self) -> RefreshReport:
        return await self._scheduler.update_all_matches()

    async def start(self) -> None:
        await self._scheduler.start()

    async def stop(self) -> None:
        await self._scheduler.stop()

    def status(self) -> dict[str, Any]:
        return {
            "scheduler": self._scheduler.status(),
            "providers": {
                name: health.model_dump(mode="json")
                for name, health in self.get_health_status().items()
            },
        }

    # ── Source routing ──────────────────────────────────────────────────
    async def _listing(self, query: MatchQuery, status: Optional[MatchStatus]) -> MatchPage:
        query = query.with_status(status)
        if query.resolved_source() == DataSource.API:
            return await self._fresh_listing(query, status or MatchStatus.SCHEDULED)
        return await self._database_listing(query, status)

    async def _fresh_listing(self, query: MatchQuery, status: MatchStatus) -> MatchPage:
        return await self._fresh(
            f"list:{status.value}", query, lambda: self._aggregator.list_by_status(query, status)
        )

    async def _database_listing(self, query: MatchQuery, status: Optional[MatchStatus]) -> MatchPage:
        try:
            matches, total = await self._repository.find_matches(query, status)
        except Exception as exc:
            logger.warning("database_query_failed", error=str(exc), exc_info=True)
            matches, total = [], 0

        if total == 0 and query.source == DataSource.AUTO:
            try:
                return await self._fresh_listing(query, status or MatchStatus.SCHEDULED)
            except ScoreFusionError as exc:
                logger.info("database_fallback_failed", error=str(exc))

        FACADE_QUERIES.labels(operation="list", source=DataSource.DATABASE.value).inc()
        info = pagination_info(total, query.page, query.limit)
        return MatchPage(matches=matches, pagination=info, source=DataSource.DATABASE)

    async def _fresh(
        self,
        operation: str,
        query: MatchQuery,
        call: Callable[[], Awaitable[AggregationResult[CanonicalMatch]]],
    ) -> MatchPage:
        key = hashlib.sha1(f"{operation}:{query.cache_key()}".encode()).hexdigest()
        cached = await self._cache_get(key)
        if cached is not None:
            FACADE_QUERIES.labels(operation=operation, source="cache").inc()
            return MatchPage.model_validate(cached)

        result = await self._with_timeout(call())
        result.raise_for_outcome()
        page = build_page(result.items, query, DataSource.API)
        if result.outcome == AggregationOutcome.OK:
            await self._cache_set(key, page)
        FACADE_QUERIES.labels(operation=operation, source=DataSource.API.value).inc()
        return page

    async def _with_timeout(self, call: Awaitable[AggregationResult[Any]]) -> AggregationResult[Any]:
        """Bound a fresh-path call; on expiry the adapter calls are cancelled."""
        try:
            return await asyncio.wait_for(call, timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            logger.warning("query_timeout", timeout_s=self._timeout_s)
            raise AllProvidersExhausted({}, f"Query timed out after {self._timeout_s}s") from exc

    # ── Redis cache ─────────────────────────────────────────────────────
    async def _cache_get(self, key: str) -> Optional[Any]:
        if self._redis is None:
            return None
        try:
            return await self._redis.cache_get(CACHE_NAMESPACE, key)
        except Exception as exc:
            logger.warning("cache_get_failed", error=str(exc))
            return None

    async def _cache_set(self, key: str, page: MatchPage) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.cache_set(
                CACHE_NAMESPACE, key, page.model_dump(mode="json"), self._settings.api_cache_ttl_s
            )
        except Exception as exc:
            logger.warning("cache_set_failed", error=str(exc))
