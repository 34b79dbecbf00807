"""
Provider health monitor.

Tracks consecutive failures and latency per adapter and derives a
HEALTHY / DEGRADED / DOWN state that drives selection order in the
aggregator. Updates are plain synchronous mutations, so they are atomic per
adapter on the event loop.
"""
from __future__ import annotations

import time
from collections import deque
from typing import Iterable, Optional, Sequence, TypeVar

from shared.config import Settings, get_settings
from shared.models.domain import ProviderHealth, utcnow
from shared.models.enums import HealthStatus, ProviderName
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_HEALTH_STATE

logger = get_logger(__name__)

_GAUGE_VALUES = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.DOWN: 2}
_RANK = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.DOWN: 2}

P = TypeVar("P")


class _ProviderRecord:
    """Mutable health history for one adapter."""

    def __init__(self, name: ProviderName, window: int) -> None:
        self.name = name
        self.status = HealthStatus.HEALTHY
        self.consecutive_failures = 0
        self.total_successes = 0
        self.total_failures = 0
        self.last_success = None
        self.last_failure = None
        self.last_error: Optional[str] = None
        self.latencies: deque[float] = deque(maxlen=window)
        self.last_probe: float = 0.0

    def snapshot(self) -> ProviderHealth:
        avg = round(sum(self.latencies) / len(self.latencies), 2) if self.latencies else None
        return ProviderHealth(
            provider=self.name,
            status=self.status,
            consecutive_failures=self.consecutive_failures,
            total_successes=self.total_successes,
            total_failures=self.total_failures,
            last_success=self.last_success,
            last_failure=self.last_failure,
            last_error=self.last_error,
            last_latency_ms=self.latencies[-1] if self.latencies else None,
            avg_latency_ms=avg,
        )


class ProviderHealthMonitor:
    """
    Per-adapter health state machine.

    HEALTHY -> DEGRADED after degraded_threshold consecutive failures,
    -> DOWN after down_threshold. Any success returns the adapter to HEALTHY.
    """

    def __init__(
        self,
        providers: Iterable[ProviderName] = (),
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._degraded_threshold = self._settings.health_degraded_threshold
        self._down_threshold = self._settings.health_down_threshold
        self._probe_interval_s = self._settings.health_probe_interval_s
        self._records: dict[ProviderName, _ProviderRecord] = {}
        for name in providers:
            self.register(name)

    def register(self, name: ProviderName) -> None:
        if name not in self._records:
            self._records[name] = _ProviderRecord(name, self._settings.health_latency_window)
            PROVIDER_HEALTH_STATE.labels(provider=name.value).set(0)

    def _record(self, name: ProviderName) -> _ProviderRecord:
        if name not in self._records:
            self.register(name)
        return self._records[name]

    # ── Updates ─────────────────────────────────────────────────────────
    def record_success(self, name: ProviderName, latency_ms: Optional[float] = None) -> None:
        record = self._record(name)
        if record.status != HealthStatus.HEALTHY:
            logger.info("provider_recovered", provider=name.value, previous=record.status.value)
        record.consecutive_failures = 0
        record.total_successes += 1
        record.last_success = utcnow()
        if latency_ms is not None:
            record.latencies.append(round(latency_ms, 2))
        self._set_status(record, HealthStatus.HEALTHY)

    def record_failure(
        self,
        name: ProviderName,
        error: BaseException | str,
        latency_ms: Optional[float] = None,
    ) -> None:
        record = self._record(name)
        record.consecutive_failures += 1
        record.total_failures += 1
        record.last_failure = utcnow()
        record.last_error = (str(error) or type(error).__name__)[:500]
        if latency_ms is not None:
            record.latencies.append(round(latency_ms, 2))

        if record.consecutive_failures >= self._down_threshold:
            new_status = HealthStatus.DOWN
        elif record.consecutive_failures >= self._degraded_threshold:
            new_status = HealthStatus.DEGRADED
        else:
            new_status = record.status
        if new_status != record.status:
            logger.warning(
                "provider_health_changed",
                provider=name.value,
                status=new_status.value,
                failures=record.consecutive_failures,
                error=record.last_error,
            )
            if new_status == HealthStatus.DOWN:
                record.last_probe = time.monotonic()
        self._set_status(record, new_status)

    def reset(self, name: ProviderName) -> None:
        """Manual re-enable: forget the failure streak."""
        record = self._record(name)
        record.consecutive_failures = 0
        record.last_error = None
        self._set_status(record, HealthStatus.HEALTHY)
        logger.info("provider_health_reset", provider=name.value)

    @staticmethod
    def _set_status(record: _ProviderRecord, status: HealthStatus) -> None:
        record.status = status
        PROVIDER_HEALTH_STATE.labels(provider=record.name.value).set(_GAUGE_VALUES[status])

    # ── Reads ───────────────────────────────────────────────────────────
    def status_of(self, name: ProviderName) -> HealthStatus:
        return self._record(name).status

    def get_health_status(self) -> dict[str, ProviderHealth]:
        return {name.value: record.snapshot() for name, record in self._records.items()}

    def order(self, providers: Sequence[P]) -> list[P]:
        """
        Healthiest first, registration order within a status.

        DOWN adapters are left out unless nothing else is available, in
        which case they are returned as a last resort.
        """
        ranked = sorted(providers, key=lambda p: _RANK[self.status_of(p.name)])
        usable = [p for p in ranked if self.status_of(p.name) != HealthStatus.DOWN]
        return usable or ranked

    def due_for_probe(self, now: Optional[float] = None) -> list[ProviderName]:
        """DOWN adapters whose probe interval elapsed; marks them as probed."""
        now = time.monotonic() if now is None else now
        due: list[ProviderName] = []
        for name, record in self._records.items():
            if record.status != HealthStatus.DOWN:
                continue
            if now - record.last_probe >= self._probe_interval_s:
                record.last_probe = now
                due.append(name)
        return due
