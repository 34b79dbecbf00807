"""
Live update scheduler for ScoreFusion.
Periodically pulls live matches for every configured sport through the
aggregator and upserts them into persistence. Passes never overlap: a tick
that fires while a pass is running is skipped, and an optional Redis lock
extends the guard across instances.
"""
from __future__ import annotations

import asyncio
import signal
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch, utcnow
from shared.models.enums import Sport
from shared.utils.database import DatabaseManager
from shared.utils.health_server import start_health_server
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import (
    LIVE_MATCHES,
    MATCHES_UPSERTED,
    SCHEDULER_PASS_DURATION,
    SCHEDULER_PASSES,
    atrack_latency,
    start_metrics_server,
)
from shared.utils.redis_manager import RedisManager

from ingest.aggregator import AggregationOutcome, MatchAggregator
from ingest.health import ProviderHealthMonitor
from ingest.providers.registry import build_registry
from ingest.repository import MatchRepository, SqlMatchRepository

logger = get_logger(__name__)

REFRESH_LOCK_NAME = "live-refresh"


@dataclass
class RefreshReport:
    """Outcome of one update_all_matches() pass."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    skipped: bool = False
    reason: Optional[str] = None
    upserted: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    recovered: list[str] = field(default_factory=list)
    duration_ms: Optional[float] = None

    @property
    def total_upserted(self) -> int:
        return sum(self.upserted.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "reason": self.reason,
            "upserted": dict(self.upserted),
            "total_upserted": self.total_upserted,
            "errors": dict(self.errors),
            "recovered": list(self.recovered),
            "duration_ms": self.duration_ms,
        }


class LiveUpdateScheduler:
    """
    Timer-driven live refresh.

    start()/stop() are idempotent. stop() sets the stop flag checked on every
    tick and cancels the timer; a pass already running is left to finish and
    write its results.
    """

    def __init__(
        self,
        aggregator: MatchAggregator,
        repository: MatchRepository,
        redis: RedisManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._aggregator = aggregator
        self._repository = repository
        self._redis = redis if self._settings.redis_enabled else None
        self._instance_id = self._settings.instance_id or str(uuid.uuid4())[:8]
        self._interval_s = self._settings.refresh_interval_s
        self._timer: Optional[asyncio.Task[None]] = None
        self._pass_task: Optional[asyncio.Task[RefreshReport]] = None
        self._stopping = False
        self._in_flight = False
        self._last_report: Optional[RefreshReport] = None
        self._counters = {"completed": 0, "skipped": 0, "failed_sports": 0}
        self._sports = self._parse_sports(self._settings.live_sports)

    @staticmethod
    def _parse_sports(raw_sports: list[str]) -> list[Sport]:
        sports: list[Sport] = []
        for raw in raw_sports:
            try:
                sport = Sport.parse(raw)
            except ValueError:
                logger.warning("live_sport_unknown", sport=raw)
                continue
            if sport not in sports:
                sports.append(sport)
        return sports

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # ── Lifecycle ───────────────────────────────────────────────────────
    async def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._timer = asyncio.create_task(self._run_timer(), name="live-refresh-timer")
        logger.info(
            "live_scheduler_started",
            interval_s=self._interval_s,
            sports=[s.value for s in self._sports],
            instance_id=self._instance_id,
        )

    async def stop(self) -> None:
        if self._timer is None:
            return
        self._stopping = True
        timer, self._timer = self._timer, None
        timer.cancel()
        logger.info("live_scheduler_stopped", pass_in_flight=self._in_flight)

    async def _run_timer(self) -> None:
        if self._settings.refresh_run_on_start:
            self._tick()
        while not self._stopping:
            await asyncio.sleep(self._interval_s)
            self._tick()

    def _tick(self) -> None:
        if self._stopping:
            return
        if self._in_flight:
            self._counters["skipped"] += 1
            SCHEDULER_PASSES.labels(result="skipped").inc()
            logger.info("live_refresh_tick_skipped", reason="pass_in_flight")
            return
        self._pass_task = asyncio.create_task(self.update_all_matches(), name="live-refresh-pass")

    # ── Refresh pass ────────────────────────────────────────────────────
    async def update_all_matches(self) -> RefreshReport:
        """
        Refresh live matches for every configured sport.

        Never raises: per-sport failures are recorded in the report.
        """
        if self._in_flight:
            self._counters["skipped"] += 1
            SCHEDULER_PASSES.labels(result="skipped").inc()
            return RefreshReport(skipped=True, reason="pass_in_flight", finished_at=utcnow())
        # Set before the first await so concurrent callers see it.
        self._in_flight = True
        token = uuid.uuid4().hex
        locked = False
        try:
            if self._redis is not None:
                locked = await self._acquire_lock(token)
                if not locked:
                    self._counters["skipped"] += 1
                    SCHEDULER_PASSES.labels(result="skipped").inc()
                    logger.info("live_refresh_skipped", reason="lock_held_elsewhere")
                    return RefreshReport(skipped=True, reason="lock_held_elsewhere", finished_at=utcnow())

            async with atrack_latency(SCHEDULER_PASS_DURATION):
                report = await self._run_pass()
            self._last_report = report
            self._counters["completed"] += 1
            self._counters["failed_sports"] += len(report.errors)
            SCHEDULER_PASSES.labels(result="partial" if report.errors else "ok").inc()
            logger.info(
                "live_refresh_complete",
                upserted=report.upserted,
                errors=list(report.errors),
                recovered=report.recovered,
                duration_ms=report.duration_ms,
            )
            return report
        finally:
            if locked:
                await self._release_lock(token)
            self._in_flight = False

    async def _run_pass(self) -> RefreshReport:
        report = RefreshReport()
        start = time.perf_counter()
        for sport in self._sports:
            try:
                result = await self._aggregator.fetch_live(sport)
                if result.outcome == AggregationOutcome.NO_PROVIDER:
                    logger.info("live_refresh_sport_unserved", sport=sport.value, reason=result.reason)
                    report.upserted[sport.value] = 0
                    continue
                result.raise_for_outcome()
                matches = self._aggregator.normalizer.merge([result.items], by_external_id=True)
                written = await self._repository.upsert_matches(matches)
                written += await self._settle_departed(sport, {m.external_id for m in matches})
                report.upserted[sport.value] = written
                LIVE_MATCHES.labels(sport=sport.value).set(len(matches))
                MATCHES_UPSERTED.labels(sport=sport.value).inc(written)
            except Exception as exc:
                report.errors[sport.value] = str(exc)
                logger.error("live_refresh_sport_failed", sport=sport.value, error=str(exc), exc_info=True)

        try:
            report.recovered = await self._aggregator.probe_down_providers()
        except Exception as exc:
            logger.error("provider_probe_failed", error=str(exc), exc_info=True)

        report.finished_at = utcnow()
        report.duration_ms = round((time.perf_counter() - start) * 1000, 2)
        return report

    async def _settle_departed(self, sport: Sport, fresh_ids: set[str]) -> int:
        """
        Re-fetch stored live matches that dropped out of the live feed.

        A match that ends leaves the feed, so without this its row would keep
        the last live score and minute. Each one is looked up by external id
        through its owning provider and written back with its current state.
        """
        departed = [i for i in await self._repository.live_external_ids(sport) if i not in fresh_ids]
        if not departed:
            return 0
        settled: list[CanonicalMatch] = []
        for external_id in departed:
            result = await self._aggregator.fetch_match(external_id)
            if result.items:
                settled.extend(result.items)
            else:
                logger.warning(
                    "live_match_unresolved",
                    sport=sport.value,
                    external_id=external_id,
                    outcome=result.outcome.value,
                    failures=result.failures,
                )
        if not settled:
            return 0
        written = await self._repository.upsert_matches(settled)
        logger.info("live_matches_settled", sport=sport.value, count=written)
        return written

    async def _acquire_lock(self, token: str) -> bool:
        """Cross-instance guard. A Redis outage does not block refreshing."""
        try:
            return await self._redis.try_acquire_lock(
                REFRESH_LOCK_NAME, token, self._settings.refresh_lock_ttl_s
            )
        except Exception as exc:
            logger.warning("refresh_lock_unavailable", error=str(exc))
            return True

    async def _release_lock(self, token: str) -> None:
        try:
            await self._redis.release_lock(REFRESH_LOCK_NAME, token)
        except Exception as exc:
            logger.warning("refresh_lock_release_failed", error=str(exc))

    # ── Introspection ───────────────────────────────────────────────────
    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "in_flight": self._in_flight,
            "interval_s": self._interval_s,
            "sports": [s.value for s in self._sports],
            "instance_id": self._instance_id,
            "passes": dict(self._counters),
            "last_pass": self._last_report.as_dict() if self._last_report else None,
        }


async def main() -> None:
    """Standalone scheduler worker entrypoint."""
    settings = get_settings()
    setup_logging("scheduler")
    start_metrics_server()

    db = DatabaseManager(settings)
    await db.connect()
    if settings.db_create_all:
        await db.create_all()

    redis: Optional[RedisManager] = None
    if settings.redis_enabled:
        redis = RedisManager(settings)
        await redis.connect()

    registry = build_registry(settings)
    await registry.start_all()
    health = ProviderHealthMonitor(registry.names, settings)
    aggregator = MatchAggregator(registry, health, settings=settings)
    scheduler = LiveUpdateScheduler(aggregator, SqlMatchRepository(db), redis, settings)
    start_health_server("scheduler", settings.health_port, status_fn=scheduler.status)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    await scheduler.start()
    logger.info("scheduler_service_started", instance_id=settings.instance_id)
    try:
        await shutdown.wait()
    finally:
        await scheduler.stop()
        await registry.close_all()
        if redis is not None:
            await redis.disconnect()
        await db.disconnect()
        logger.info("scheduler_service_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
