"""
Tests for the provider health state machine and selection order.

Run: pytest backend/tests/test_health.py -v
"""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from shared.models.enums import HealthStatus, ProviderName

from ingest.health import ProviderHealthMonitor

ALL = (ProviderName.API_FOOTBALL, ProviderName.SPORTMONKS, ProviderName.THESPORTSDB, ProviderName.ESPN)


@pytest.fixture
def monitor(settings) -> ProviderHealthMonitor:
    return ProviderHealthMonitor(ALL, settings)


def _adapters(*names: ProviderName) -> list[SimpleNamespace]:
    return [SimpleNamespace(name=n) for n in names]


# ── State transitions ───────────────────────────────────────────────────

class TestTransitions:
    def test_starts_healthy(self, monitor: ProviderHealthMonitor) -> None:
        assert all(monitor.status_of(n) == HealthStatus.HEALTHY for n in ALL)

    def test_degraded_after_three_failures(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(2):
            monitor.record_failure(ProviderName.ESPN, "timeout")
        assert monitor.status_of(ProviderName.ESPN) == HealthStatus.HEALTHY
        monitor.record_failure(ProviderName.ESPN, "timeout")
        assert monitor.status_of(ProviderName.ESPN) == HealthStatus.DEGRADED

    def test_down_after_six_failures(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(6):
            monitor.record_failure(ProviderName.ESPN, RuntimeError("boom"))
        assert monitor.status_of(ProviderName.ESPN) == HealthStatus.DOWN

    def test_single_success_recovers(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(6):
            monitor.record_failure(ProviderName.ESPN, "boom")
        monitor.record_success(ProviderName.ESPN, latency_ms=120.0)

        health = monitor.get_health_status()["espn"]
        assert health.status == HealthStatus.HEALTHY
        assert health.consecutive_failures == 0
        assert health.total_failures == 6
        assert health.total_successes == 1

    def test_failures_are_per_provider(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(3):
            monitor.record_failure(ProviderName.ESPN, "boom")
        assert monitor.status_of(ProviderName.SPORTMONKS) == HealthStatus.HEALTHY

    def test_reset(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(6):
            monitor.record_failure(ProviderName.ESPN, "boom")
        monitor.reset(ProviderName.ESPN)
        assert monitor.status_of(ProviderName.ESPN) == HealthStatus.HEALTHY
        assert monitor.get_health_status()["espn"].last_error is None


# ── Snapshot ────────────────────────────────────────────────────────────

def test_snapshot_latency(monitor: ProviderHealthMonitor) -> None:
    monitor.record_success(ProviderName.ESPN, latency_ms=100.0)
    monitor.record_success(ProviderName.ESPN, latency_ms=300.0)
    monitor.record_failure(ProviderName.ESPN, "read timeout", latency_ms=200.0)

    health = monitor.get_health_status()["espn"]
    assert health.last_latency_ms == 200.0
    assert health.avg_latency_ms == 200.0
    assert health.last_error == "read timeout"
    assert health.last_success is not None
    assert health.last_failure is not None


def test_unregistered_provider_is_added_on_first_update(settings) -> None:
    monitor = ProviderHealthMonitor(settings=settings)
    monitor.record_success(ProviderName.ESPN)
    assert list(monitor.get_health_status()) == ["espn"]


# ── Ordering & probing ──────────────────────────────────────────────────

class TestOrder:
    def test_healthy_before_degraded_keeps_registration_order(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(3):
            monitor.record_failure(ProviderName.API_FOOTBALL, "boom")
        ordered = monitor.order(_adapters(*ALL))
        assert [a.name for a in ordered] == [
            ProviderName.SPORTMONKS,
            ProviderName.THESPORTSDB,
            ProviderName.ESPN,
            ProviderName.API_FOOTBALL,
        ]

    def test_down_providers_skipped(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(6):
            monitor.record_failure(ProviderName.API_FOOTBALL, "boom")
        ordered = monitor.order(_adapters(ProviderName.API_FOOTBALL, ProviderName.ESPN))
        assert [a.name for a in ordered] == [ProviderName.ESPN]

    def test_down_providers_used_as_last_resort(self, monitor: ProviderHealthMonitor) -> None:
        for name in (ProviderName.API_FOOTBALL, ProviderName.ESPN):
            for _ in range(6):
                monitor.record_failure(name, "boom")
        ordered = monitor.order(_adapters(ProviderName.API_FOOTBALL, ProviderName.ESPN))
        assert [a.name for a in ordered] == [ProviderName.API_FOOTBALL, ProviderName.ESPN]

    def test_due_for_probe_respects_interval(self, monitor: ProviderHealthMonitor) -> None:
        for _ in range(6):
            monitor.record_failure(ProviderName.ESPN, "boom")
        went_down_at = monitor._records[ProviderName.ESPN].last_probe

        assert monitor.due_for_probe(now=went_down_at + 1) == []
        assert monitor.due_for_probe(now=went_down_at + 61) == [ProviderName.ESPN]
        # Marked as probed: not due again until another interval passes.
        assert monitor.due_for_probe(now=went_down_at + 62) == []

    def test_healthy_providers_never_probed(self, monitor: ProviderHealthMonitor) -> None:
        assert monitor.due_for_probe(now=10_000.0) == []
