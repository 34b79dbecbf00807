"""
Pydantic v2 domain models shared across the ScoreFusion services.
These are the canonical wire/internal representations, NOT ORM models.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError
from shared.models.enums import (
    DataSource,
    EventType,
    HealthStatus,
    MatchStatus,
    ProviderName,
    Sport,
    TeamSide,
)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Reference entities ──────────────────────────────────────────────────
class LeagueInfo(DomainModel):
    name: str = "Unknown League"
    country: Optional[str] = None
    logo_url: Optional[str] = None
    provider_id: Optional[str] = None
    sport: Optional[Sport] = None

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> str:
        return _clean_text(value) or "Unknown League"


class TeamInfo(DomainModel):
    name: str
    logo_url: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _require_name(cls, value: Any) -> str:
        name = _clean_text(value)
        if not name:
            raise ValueError("team name is required")
        return name


class MatchOdds(DomainModel):
    home_win: Optional[float] = None
    draw: Optional[float] = None
    away_win: Optional[float] = None
    extra: dict[str, float] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.home_win is None and self.draw is None and self.away_win is None and not self.extra


class MatchEvent(DomainModel):
    """In-match event (goal, card, substitution...)."""
    type: EventType = EventType.GENERIC
    minute: Optional[int] = Field(default=None, ge=0)
    team: Optional[TeamSide] = None
    player: Optional[str] = None
    description: Optional[str] = None


# ── Canonical match ─────────────────────────────────────────────────────
class CanonicalMatch(DomainModel):
    """
    The unit of truth produced by every adapter.

    The model is frozen: scheduled_at never changes once set, and updates go
    through model_copy(). Minute and scores that contradict the status are
    dropped during validation rather than propagated.
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    external_id: str = Field(min_length=1)
    provider: ProviderName
    id: Optional[uuid.UUID] = None
    sport: Sport
    league: LeagueInfo = Field(default_factory=LeagueInfo)
    home_team: TeamInfo
    away_team: TeamInfo
    venue: Optional[str] = None
    scheduled_at: datetime
    status: MatchStatus = MatchStatus.SCHEDULED
    period: Optional[str] = None
    minute: Optional[int] = Field(default=None, ge=0)
    home_score: Optional[int] = Field(default=None, ge=0)
    away_score: Optional[int] = Field(default=None, ge=0)
    odds: Optional[MatchOdds] = None
    statistics: dict[str, Any] = Field(default_factory=dict)
    events: list[MatchEvent] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _normalize_state(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        status = MatchStatus(data.get("status") or MatchStatus.SCHEDULED)
        data["status"] = status
        if status != MatchStatus.LIVE:
            data["minute"] = None
        if not status.has_score:
            data["home_score"] = None
            data["away_score"] = None
        odds = data.get("odds")
        if isinstance(odds, MatchOdds) and odds.is_empty:
            data["odds"] = None
        return data

    @field_validator("sport", mode="before")
    @classmethod
    def _parse_sport(cls, value: Any) -> Sport:
        return Sport.parse(value)

    @field_validator("scheduled_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("venue", "period", mode="before")
    @classmethod
    def _clean_optional(cls, value: Any) -> Optional[str]:
        return _clean_text(value)

    @field_validator("events")
    @classmethod
    def _order_events(cls, value: list[MatchEvent]) -> list[MatchEvent]:
        return sorted(value, key=lambda e: (e.minute is None, e.minute or 0))

    @property
    def name(self) -> str:
        return f"{self.home_team.name} vs {self.away_team.name}"


# ── Query value objects ─────────────────────────────────────────────────
class DateRange(DomainModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self

    @classmethod
    def for_listing(cls, status: Optional[MatchStatus], now: Optional[datetime] = None) -> "DateRange":
        """Default window per listing kind: upcoming week, past week, or around now for live."""
        now = ensure_utc(now or utcnow())
        if status == MatchStatus.FINISHED:
            return cls(start=now - timedelta(days=7), end=now)
        if status == MatchStatus.LIVE:
            return cls(start=now - timedelta(days=1), end=now + timedelta(days=1))
        return cls(start=now, end=now + timedelta(days=7))

    @classmethod
    def for_search(cls, now: Optional[datetime] = None) -> "DateRange":
        now = ensure_utc(now or utcnow())
        return cls(start=now - timedelta(days=1), end=now + timedelta(days=7))

    def days(self) -> list[date]:
        first, last = self.start.date(), self.end.date()
        return [first + timedelta(days=i) for i in range((last - first).days + 1)]

    def contains(self, when: datetime) -> bool:
        return self.start <= ensure_utc(when) <= self.end


class MatchQuery(DomainModel):
    """
    Immutable description of an inbound request.

    Built from routing-layer parameters via from_params(), which converts
    validation failures into the engine's ValidationError.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    sport: Optional[Sport] = None
    status: Optional[MatchStatus] = None
    league: Optional[str] = None
    team: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = Field(default=None, alias="dateFrom")
    date_to: Optional[datetime] = Field(default=None, alias="dateTo")
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    source: DataSource = DataSource.AUTO

    @field_validator("sport", mode="before")
    @classmethod
    def _parse_sport(cls, value: Any) -> Optional[Sport]:
        if value is None or value == "":
            return None
        return Sport.parse(value)

    @field_validator("status", "source", mode="before")
    @classmethod
    def _lower_enum(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("league", "team", "search", mode="before")
    @classmethod
    def _clean(cls, value: Any) -> Optional[str]:
        return _clean_text(value)

    @field_validator("date_from", mode="before")
    @classmethod
    def _start_of_day(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value.strip()) == 10:
            return datetime.combine(date.fromisoformat(value.strip()), time.min)
        return value

    @field_validator("date_to", mode="before")
    @classmethod
    def _end_of_day(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value.strip()) == 10:
            return datetime.combine(date.fromisoformat(value.strip()), time.max)
        return value

    @field_validator("date_from", "date_to")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_dates(self) -> "MatchQuery":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("dateFrom must not be after dateTo")
        return self

    @classmethod
    def from_params(cls, params: Mapping[str, Any], *, max_limit: int = MAX_PAGE_SIZE) -> "MatchQuery":
        """
        Validate raw routing parameters.

        Raises:
            ValidationError: If any parameter is malformed.
        """
        cleaned = {k: v for k, v in params.items() if v is not None and v != ""}
        limit = cleaned.get("limit")
        try:
            if limit is not None and int(limit) > max_limit:
                cleaned["limit"] = max_limit
        except (TypeError, ValueError):
            pass
        try:
            return cls.model_validate(cleaned)
        except PydanticValidationError as exc:
            errors = [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
                for err in exc.errors()
            ]
            raise ValidationError("Invalid match query", errors=errors) from exc

    def resolved_source(self) -> DataSource:
        """auto → api for free-text search or live status, database otherwise."""
        if self.source != DataSource.AUTO:
            return self.source
        if self.search or self.status == MatchStatus.LIVE:
            return DataSource.API
        return DataSource.DATABASE

    def date_range(self, now: Optional[datetime] = None) -> DateRange:
        """Explicit dates win; missing bounds come from the listing defaults."""
        default = DateRange.for_search(now) if self.search else DateRange.for_listing(self.status, now)
        start = self.date_from or default.start
        end = self.date_to or default.end
        if start > end:
            # Only one bound was explicit and it lies outside the default window.
            span = default.end - default.start
            if self.date_from:
                end = start + span
            else:
                start = end - span
        return DateRange(start=start, end=end)

    def with_status(self, status: Optional[MatchStatus]) -> "MatchQuery":
        return self.model_copy(update={"status": status})

    def cache_key(self) -> str:
        return self.model_dump_json(exclude={"source"})


# ── Results ─────────────────────────────────────────────────────────────
class PaginationInfo(DomainModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")
    has_more: bool = Field(serialization_alias="hasMore")


class MatchPage(DomainModel):
    matches: list[CanonicalMatch] = Field(default_factory=list)
    pagination: PaginationInfo
    source: DataSource


# ── Provider health ─────────────────────────────────────────────────────
class ProviderHealth(DomainModel):
    provider: ProviderName
    status: HealthStatus = HealthStatus.HEALTHY
    consecutive_failures: int = 0
    total_successes: int = 0
    total_failures: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_error: Optional[str] = None
    last_latency_ms: Optional[float] = None
    avg_latency_ms: Optional[float] = None
