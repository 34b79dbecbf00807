"""
Abstract base class for all sports data providers.
Defines the contract that every provider adapter must implement.
"""
from __future__ import annotations

import abc
import time
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from shared.errors import ProviderError, ProviderMalformedData
from shared.models.domain import CanonicalMatch, DateRange, LeagueInfo, MatchQuery
from shared.models.enums import MatchStatus, ProviderName, Sport
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import MALFORMED_RECORDS

logger = get_logger(__name__)

T = TypeVar("T")

# Errors raised while reading a provider payload that mean "this shape is wrong".
_PARSE_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError)


# ── Parsing helpers shared by adapters ──────────────────────────────────
def to_int(value: Any) -> Optional[int]:
    """Lenient int conversion: '2' -> 2, None/'' -> None."""
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 (with 'Z' or offset) or a unix timestamp into UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00").replace(" ", "T", 1))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def day_str(value: date | datetime) -> str:
    return value.strftime("%Y-%m-%d")


class BaseProvider(abc.ABC):
    """
    Abstract base class for sports data providers.

    Public methods wrap the abstract _-prefixed hooks with timing, logging
    and error typing: whatever escapes a hook is a ProviderError. Single bad
    records never escape; _convert_batch skips and counts them.
    """

    def __init__(
        self,
        name: ProviderName,
        http_client: ProviderHTTPClient,
        supported_sports: set[Sport],
    ) -> None:
        self._name = name
        self._http = http_client
        self._supported_sports = frozenset(supported_sports)

    @property
    def name(self) -> ProviderName:
        return self._name

    @property
    def supported_sports(self) -> frozenset[Sport]:
        return self._supported_sports

    def supports(self, sport: Sport) -> bool:
        return sport in self._supported_sports

    async def start(self) -> None:
        """Initialize the provider HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the provider HTTP client."""
        await self._http.close()

    # ── Identity ────────────────────────────────────────────────────────
    def qualify(self, provider_id: Any) -> str:
        """Provider-local id -> CanonicalMatch.external_id."""
        return f"{self._name.id_prefix}-{provider_id}"

    def owns(self, external_id: str) -> bool:
        return external_id.startswith(f"{self._name.id_prefix}-")

    def local_id(self, external_id: str) -> str:
        return external_id[len(self._name.id_prefix) + 1 :]

    # ── Public contract ─────────────────────────────────────────────────
    async def search(self, query: MatchQuery) -> list[CanonicalMatch]:
        """Free-text search; the adapter may over-fetch, callers filter locally."""
        return await self._run("search", self._search(query, query.date_range()))

    async def fetch_by_sport(
        self,
        sport: Sport,
        date_range: DateRange,
        status: Optional[MatchStatus] = None,
    ) -> list[CanonicalMatch]:
        if not self.supports(sport):
            return []
        return await self._run("fetch_by_sport", self._fetch_by_sport(sport, date_range, status))

    async def fetch_match(self, external_id: str) -> Optional[CanonicalMatch]:
        if not self.owns(external_id):
            return None
        return await self._run("fetch_match", self._fetch_match(self.local_id(external_id)))

    async def list_leagues(self, sport: Sport) -> list[LeagueInfo]:
        if not self.supports(sport):
            return []
        return await self._run("list_leagues", self._list_leagues(sport))

    async def probe(self) -> None:
        """Cheap call used to test whether a DOWN provider has recovered."""
        if not self._supported_sports:
            return
        sport = sorted(self._supported_sports, key=lambda s: s.value)[0]
        await self.fetch_by_sport(sport, DateRange.for_listing(MatchStatus.LIVE), MatchStatus.LIVE)

    # ── Internals ───────────────────────────────────────────────────────
    async def _run(self, operation: str, call: Awaitable[T]) -> T:
        start = time.perf_counter()
        try:
            result = await call
        except ProviderError:
            raise
        except _PARSE_ERRORS as exc:
            raise ProviderMalformedData(self._name.value, f"{operation}: {exc!r}") from exc
        logger.debug(
            "provider_call_complete",
            provider=self._name.value,
            operation=operation,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            count=len(result) if isinstance(result, list) else None,
        )
        return result

    def _convert_batch(
        self,
        records: Iterable[Any],
        convert: Callable[[Any], Optional[CanonicalMatch]],
    ) -> list[CanonicalMatch]:
        """Convert raw records, skipping (and counting) the ones that do not fit."""
        matches: list[CanonicalMatch] = []
        for record in records or ():
            try:
                match = convert(record)
            except (ProviderMalformedData, *_PARSE_ERRORS) as exc:
                MALFORMED_RECORDS.labels(provider=self._name.value).inc()
                logger.warning(
                    "provider_record_skipped",
                    provider=self._name.value,
                    record_id=_record_id(record),
                    error=str(exc)[:300],
                )
                continue
            if match is not None:
                matches.append(match)
        return matches

    # ── Abstract methods (each provider implements these) ───────────────
    @abc.abstractmethod
    async def _search(self, query: MatchQuery, date_range: DateRange) -> list[CanonicalMatch]:
        ...

    @abc.abstractmethod
    async def _fetch_by_sport(
        self, sport: Sport, date_range: DateRange, status: Optional[MatchStatus]
    ) -> list[CanonicalMatch]:
        ...

    @abc.abstractmethod
    async def _fetch_match(self, provider_id: str) -> Optional[CanonicalMatch]:
        ...

    @abc.abstractmethod
    async def _list_leagues(self, sport: Sport) -> list[LeagueInfo]:
        ...


def _record_id(record: Any) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    for key in ("id", "idEvent"):
        if record.get(key) is not None:
            return str(record[key])
    fixture = record.get("fixture")
    if isinstance(fixture, dict) and fixture.get("id") is not None:
        return str(fixture["id"])
    return None
