"""
Aggregator / fallback router.

Chooses which adapters answer a request, runs them under a hard per-call
timeout, feeds every outcome into the health monitor and hands the raw
batches to the normalizer. Adapter failures never escape on their own: the
result is typed OK / NO_PROVIDER / EXHAUSTED and only the caller decides
whether EXHAUSTED becomes an exception.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Generic, Optional, TypeVar

from shared.config import Settings, get_settings
from shared.errors import AllProvidersExhausted, NoProviderForSport, ProviderError, ProviderUnavailable
from shared.models.domain import MAX_PAGE_SIZE, CanonicalMatch, LeagueInfo, MatchQuery
from shared.models.enums import MatchStatus, Sport
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_CALLS

from ingest.health import ProviderHealthMonitor
from ingest.normalization.normalizer import MatchNormalizer
from ingest.providers.base import BaseProvider
from ingest.providers.registry import ProviderRegistry

logger = get_logger(__name__)

T = TypeVar("T")


class AggregationOutcome(str, Enum):
    OK = "ok"
    NO_PROVIDER = "no_provider"
    EXHAUSTED = "exhausted"


@dataclass
class AggregationResult(Generic[T]):
    items: list[T] = field(default_factory=list)
    outcome: AggregationOutcome = AggregationOutcome.OK
    failures: dict[str, str] = field(default_factory=dict)
    providers_used: list[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.outcome == AggregationOutcome.EXHAUSTED

    def raise_for_outcome(self) -> "AggregationResult[T]":
        """Raise AllProvidersExhausted when every candidate failed."""
        if self.exhausted:
            raise AllProvidersExhausted(self.failures)
        return self


class MatchAggregator:
    """Health-aware multi-provider router."""

    def __init__(
        self,
        registry: ProviderRegistry,
        health: ProviderHealthMonitor,
        normalizer: MatchNormalizer | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._registry = registry
        self._health = health
        self._normalizer = normalizer or MatchNormalizer(self._settings)
        self._call_timeout_s = self._settings.provider_call_timeout_s
        self._default_sport = Sport.parse(self._settings.default_sport)
        for provider in registry:
            health.register(provider.name)

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def health(self) -> ProviderHealthMonitor:
        return self._health

    @property
    def normalizer(self) -> MatchNormalizer:
        return self._normalizer

    # ── Selection ───────────────────────────────────────────────────────
    def candidates(self, sport: Optional[Sport]) -> list[BaseProvider]:
        """Adapters for sport in health order. Raises NoProviderForSport."""
        return self._health.order(self._registry.require(sport))

    @staticmethod
    def _no_provider(exc: NoProviderForSport, operation: str) -> AggregationResult:
        logger.info("aggregate_no_provider", operation=operation, sport=exc.sport)
        return AggregationResult(outcome=AggregationOutcome.NO_PROVIDER, reason=str(exc))

    # ── Guarded adapter call ────────────────────────────────────────────
    async def _call(self, provider: BaseProvider, operation: str, call: Awaitable[T]) -> T:
        """Await one adapter call under the hard timeout and record its outcome."""
        name = provider.name
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(call, timeout=self._call_timeout_s)
        except asyncio.TimeoutError as exc:
            latency_ms = (time.perf_counter() - start) * 1000
            error = ProviderUnavailable(name.value, f"{operation} timed out after {self._call_timeout_s}s")
            self._health.record_failure(name, error, latency_ms)
            PROVIDER_CALLS.labels(provider=name.value, operation=operation, outcome="timeout").inc()
            logger.warning("provider_call_timeout", provider=name.value, operation=operation)
            raise error from exc
        except ProviderError as exc:
            self._health.record_failure(name, exc, (time.perf_counter() - start) * 1000)
            PROVIDER_CALLS.labels(provider=name.value, operation=operation, outcome="error").inc()
            logger.warning("provider_call_failed", provider=name.value, operation=operation, error=str(exc))
            raise
        except Exception as exc:
            self._health.record_failure(name, exc, (time.perf_counter() - start) * 1000)
            PROVIDER_CALLS.labels(provider=name.value, operation=operation, outcome="error").inc()
            logger.error("provider_call_crashed", provider=name.value, operation=operation, exc_info=True)
            raise ProviderError(name.value, f"{operation} crashed: {exc!r}") from exc

        self._health.record_success(name, (time.perf_counter() - start) * 1000)
        PROVIDER_CALLS.labels(provider=name.value, operation=operation, outcome="ok").inc()
        return result

    # ── Search (concurrent fan-out) ─────────────────────────────────────
    async def search(self, query: MatchQuery) -> AggregationResult[CanonicalMatch]:
        """
        Ask every eligible adapter at once and merge in candidate order.
        One adapter failing or hanging never hides the others' results.
        """
        try:
            candidates = self.candidates(query.sport)
        except NoProviderForSport as exc:
            return self._no_provider(exc, "search")

        results = await asyncio.gather(
            *(self._call(p, "search", p.search(query)) for p in candidates),
            return_exceptions=True,
        )

        batches: list[list[CanonicalMatch]] = []
        failures: dict[str, str] = {}
        used: list[str] = []
        for provider, result in zip(candidates, results):
            if isinstance(result, BaseException):
                failures[provider.name.value] = str(result)
                continue
            used.append(provider.name.value)
            batches.append(result)

        if not used:
            return AggregationResult(outcome=AggregationOutcome.EXHAUSTED, failures=failures)

        matches = self._normalizer.normalize(batches, query, date_range=query.date_range())
        logger.info(
            "aggregate_search_complete",
            search=query.search,
            providers=used,
            failed=list(failures),
            count=len(matches),
        )
        return AggregationResult(items=matches, failures=failures, providers_used=used)

    # ── Listings (health-ordered short-circuit) ─────────────────────────
    async def list_by_status(
        self,
        query: MatchQuery,
        status: MatchStatus,
    ) -> AggregationResult[CanonicalMatch]:
        """
        Try adapters one at a time in health order and stop at the first one
        whose normalized, filtered answer is non-empty.
        """
        sport = query.sport or self._default_sport
        query = query.model_copy(update={"sport": sport, "status": status})
        try:
            candidates = self.candidates(sport)
        except NoProviderForSport as exc:
            return self._no_provider(exc, "list")

        date_range = query.date_range()
        failures: dict[str, str] = {}
        used: list[str] = []
        for provider in candidates:
            try:
                batch = await self._call(
                    provider, "fetch_by_sport", provider.fetch_by_sport(sport, date_range, status)
                )
            except ProviderError as exc:
                failures[provider.name.value] = str(exc)
                continue
            used.append(provider.name.value)
            matches = self._normalizer.normalize([batch], query, status, date_range)
            if matches:
                logger.info(
                    "aggregate_list_complete",
                    sport=sport.value,
                    status=status.value,
                    provider=provider.name.value,
                    count=len(matches),
                )
                return AggregationResult(items=matches, failures=failures, providers_used=used)

        if not used:
            return AggregationResult(outcome=AggregationOutcome.EXHAUSTED, failures=failures)
        return AggregationResult(failures=failures, providers_used=used)

    async def fetch_live(self, sport: Sport) -> AggregationResult[CanonicalMatch]:
        """Live listing for the scheduler; no pagination."""
        query = MatchQuery(sport=sport, status=MatchStatus.LIVE, limit=MAX_PAGE_SIZE)
        return await self.list_by_status(query, MatchStatus.LIVE)

    # ── Single match & catalogue ────────────────────────────────────────
    async def fetch_match(self, external_id: str) -> AggregationResult[CanonicalMatch]:
        provider = self._registry.owner_of(external_id)
        if provider is None:
            return AggregationResult(outcome=AggregationOutcome.NO_PROVIDER, reason=f"No provider owns {external_id}")
        try:
            match = await self._call(provider, "fetch_match", provider.fetch_match(external_id))
        except ProviderError as exc:
            return AggregationResult(
                outcome=AggregationOutcome.EXHAUSTED,
                failures={provider.name.value: str(exc)},
            )
        items = []
        if match is not None:
            canonical = self._normalizer.canonicalize(match)
            items = [canonical] if canonical is not None else []
        return AggregationResult(items=items, providers_used=[provider.name.value])

    async def list_leagues(self, sport: Sport) -> AggregationResult[LeagueInfo]:
        """Catalogue from the first adapter (health order) that answers."""
        try:
            candidates = self.candidates(sport)
        except NoProviderForSport as exc:
            return self._no_provider(exc, "list_leagues")
        failures: dict[str, str] = {}
        for provider in candidates:
            try:
                leagues = await self._call(provider, "list_leagues", provider.list_leagues(sport))
            except ProviderError as exc:
                failures[provider.name.value] = str(exc)
                continue
            return AggregationResult(items=leagues, failures=failures, providers_used=[provider.name.value])
        return AggregationResult(outcome=AggregationOutcome.EXHAUSTED, failures=failures)

    # ── Recovery ────────────────────────────────────────────────────────
    async def probe_down_providers(self) -> list[str]:
        """Issue a cheap call to every DOWN adapter whose probe interval elapsed."""
        providers = [p for p in (self._registry.get(n) for n in self._health.due_for_probe()) if p is not None]
        if not providers:
            return []
        results = await asyncio.gather(
            *(self._call(p, "probe", p.probe()) for p in providers),
            return_exceptions=True,
        )
        recovered = [p.name.value for p, r in zip(providers, results) if not isinstance(r, BaseException)]
        logger.info(
            "provider_probe_complete",
            probed=[p.name.value for p in providers],
            recovered=recovered,
        )
        return recovered
