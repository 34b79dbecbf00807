"""
Unit tests for the canonical domain models and inbound query validation.

Run: pytest backend/tests/test_domain.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError
from shared.models.domain import (
    CanonicalMatch,
    DateRange,
    MatchEvent,
    MatchQuery,
    TeamInfo,
)
from shared.models.enums import DataSource, MatchStatus, ProviderName, Sport

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


# ── Sport / MatchStatus ─────────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Soccer", Sport.FOOTBALL),
        ("football", Sport.FOOTBALL),
        ("Ice Hockey", Sport.HOCKEY),
        ("american-football", Sport.AMERICAN_FOOTBALL),
        ("NFL", Sport.AMERICAN_FOOTBALL),
        ("Fighting", Sport.MMA),
    ],
)
def test_sport_parse_aliases(raw: str, expected: Sport) -> None:
    assert Sport.parse(raw) == expected


def test_sport_parse_unknown_raises() -> None:
    with pytest.raises(ValueError):
        Sport.parse("quidditch")


def test_status_progress_order() -> None:
    assert MatchStatus.SCHEDULED.progress < MatchStatus.LIVE.progress < MatchStatus.FINISHED.progress
    assert MatchStatus.POSTPONED.progress == MatchStatus.SCHEDULED.progress


def test_provider_id_prefixes() -> None:
    assert ProviderName.THESPORTSDB.id_prefix == "tsdb"
    assert ProviderName.API_FOOTBALL.id_prefix == "apifootball"


# ── CanonicalMatch state rules ───────────────────────────────────────────

def _match(**overrides: object) -> CanonicalMatch:
    data: dict[str, object] = {
        "external_id": "espn-1",
        "provider": ProviderName.ESPN,
        "sport": "soccer",
        "home_team": {"name": "  Arsenal  "},
        "away_team": {"name": "Chelsea"},
        "scheduled_at": NOW,
        "status": MatchStatus.LIVE,
        "minute": 67,
        "home_score": 2,
        "away_score": 1,
    }
    data.update(overrides)
    return CanonicalMatch(**data)


def test_live_match_keeps_minute_and_score() -> None:
    m = _match()
    assert m.minute == 67
    assert (m.home_score, m.away_score) == (2, 1)
    assert m.sport == Sport.FOOTBALL
    assert m.home_team.name == "Arsenal"


def test_minute_dropped_unless_live() -> None:
    m = _match(status=MatchStatus.FINISHED)
    assert m.minute is None
    assert m.home_score == 2


def test_scores_dropped_for_scheduled() -> None:
    m = _match(status=MatchStatus.SCHEDULED)
    assert m.home_score is None
    assert m.away_score is None
    assert m.minute is None


def test_naive_kickoff_is_treated_as_utc() -> None:
    m = _match(scheduled_at=datetime(2025, 3, 15, 15, 0))
    assert m.scheduled_at.tzinfo is not None
    assert m.scheduled_at.utcoffset() == timedelta(0)


def test_aware_kickoff_converted_to_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    m = _match(scheduled_at=datetime(2025, 3, 15, 17, 0, tzinfo=plus_two))
    assert m.scheduled_at == datetime(2025, 3, 15, 15, 0, tzinfo=timezone.utc)


def test_empty_team_name_rejected() -> None:
    with pytest.raises(PydanticValidationError):
        _match(home_team={"name": "   "})


def test_match_is_frozen() -> None:
    m = _match()
    with pytest.raises(PydanticValidationError):
        m.status = MatchStatus.FINISHED  # type: ignore[misc]


def test_events_ordered_by_minute() -> None:
    m = _match(events=[MatchEvent(minute=80), MatchEvent(minute=None), MatchEvent(minute=12)])
    assert [e.minute for e in m.events] == [12, 80, None]


def test_team_info_strips_whitespace() -> None:
    assert TeamInfo(name="Real   Madrid ").name == "Real Madrid"


# ── DateRange ───────────────────────────────────────────────────────────

def test_listing_windows() -> None:
    scheduled = DateRange.for_listing(MatchStatus.SCHEDULED, NOW)
    assert (scheduled.start, scheduled.end) == (NOW, NOW + timedelta(days=7))
    finished = DateRange.for_listing(MatchStatus.FINISHED, NOW)
    assert (finished.start, finished.end) == (NOW - timedelta(days=7), NOW)
    live = DateRange.for_listing(MatchStatus.LIVE, NOW)
    assert live.contains(NOW - timedelta(hours=2))


def test_search_window() -> None:
    window = DateRange.for_search(NOW)
    assert window.start == NOW - timedelta(days=1)
    assert window.end == NOW + timedelta(days=7)


def test_range_days_inclusive() -> None:
    window = DateRange(start=NOW, end=NOW + timedelta(days=2))
    assert len(window.days()) == 3


def test_range_rejects_inverted_bounds() -> None:
    with pytest.raises(PydanticValidationError):
        DateRange(start=NOW, end=NOW - timedelta(seconds=1))


# ── MatchQuery.from_params ──────────────────────────────────────────────

def test_from_params_accepts_camel_case_aliases() -> None:
    q = MatchQuery.from_params({"sport": "soccer", "dateFrom": "2025-03-01", "dateTo": "2025-03-02"})
    assert q.sport == Sport.FOOTBALL
    assert q.date_from == datetime(2025, 3, 1, tzinfo=timezone.utc)
    # Date-only upper bound covers the whole day.
    assert q.date_to is not None
    assert q.date_to.date().isoformat() == "2025-03-02"
    assert q.date_to.hour == 23


def test_from_params_clamps_limit() -> None:
    q = MatchQuery.from_params({"limit": "500"}, max_limit=100)
    assert q.limit == 100


def test_from_params_honours_configured_page_size() -> None:
    assert MatchQuery.from_params({"limit": "250"}, max_limit=500).limit == 250
    assert MatchQuery.from_params({"limit": "900"}, max_limit=500).limit == 500


def test_from_params_ignores_empty_values() -> None:
    q = MatchQuery.from_params({"sport": "", "league": None, "page": "2"})
    assert q.sport is None
    assert q.page == 2


@pytest.mark.parametrize(
    "params, field",
    [
        ({"page": "0"}, "page"),
        ({"limit": "abc"}, "limit"),
        ({"status": "halftime"}, "status"),
        ({"source": "cache"}, "source"),
        ({"sport": "quidditch"}, "sport"),
        ({"unknown": "x"}, "unknown"),
    ],
)
def test_from_params_rejects_bad_fields(params: dict[str, str], field: str) -> None:
    with pytest.raises(ValidationError) as info:
        MatchQuery.from_params(params)
    assert any(field in err["loc"] for err in info.value.errors)


def test_from_params_rejects_inverted_dates() -> None:
    with pytest.raises(ValidationError):
        MatchQuery.from_params({"dateFrom": "2025-03-05", "dateTo": "2025-03-01"})


@pytest.mark.parametrize(
    "params, expected",
    [
        ({}, DataSource.DATABASE),
        ({"search": "arsenal"}, DataSource.API),
        ({"status": "live"}, DataSource.API),
        ({"status": "finished"}, DataSource.DATABASE),
        ({"source": "api"}, DataSource.API),
        ({"source": "database", "status": "live"}, DataSource.DATABASE),
    ],
)
def test_resolved_source(params: dict[str, str], expected: DataSource) -> None:
    assert MatchQuery.from_params(params).resolved_source() == expected


def test_date_range_prefers_explicit_bounds() -> None:
    q = MatchQuery.from_params({"status": "finished", "dateFrom": "2025-01-01", "dateTo": "2025-01-03"})
    window = q.date_range(NOW)
    assert window.start == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert window.end.date().isoformat() == "2025-01-03"


def test_date_range_single_bound_outside_default_window() -> None:
    q = MatchQuery.from_params({"status": "scheduled", "dateTo": "2025-01-01"})
    window = q.date_range(NOW)
    assert window.start < window.end
    assert window.end.date().isoformat() == "2025-01-01"


def test_cache_key_ignores_source() -> None:
    a = MatchQuery.from_params({"sport": "football", "source": "api"})
    b = MatchQuery.from_params({"sport": "football", "source": "auto"})
    assert a.cache_key() == b.cache_key()
