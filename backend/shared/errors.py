"""
Error taxonomy for the aggregation engine.

Adapter-level errors (ProviderError subclasses) never reach callers directly:
the aggregator converts them into health updates and only escalates
AllProvidersExhausted when no adapter could answer.
"""
from __future__ import annotations

from typing import Any, Optional


class ScoreFusionError(Exception):
    """Base class for all errors raised by the engine."""


class ProviderError(ScoreFusionError):
    """An adapter could not produce a usable answer."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderUnavailable(ProviderError):
    """Network failure, timeout, rate-limit exhaustion or non-2xx response."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        rate_limited: bool = False,
    ) -> None:
        self.status_code = status_code
        self.rate_limited = rate_limited
        super().__init__(provider, message)


class ProviderMalformedData(ProviderError):
    """The provider answered but the payload could not be interpreted."""

    def __init__(self, provider: str, message: str, record_id: Optional[str] = None) -> None:
        self.record_id = record_id
        super().__init__(provider, message)


class NoProviderForSport(ScoreFusionError):
    """No registered adapter declares support for the requested sport."""

    def __init__(self, sport: str) -> None:
        self.sport = sport
        super().__init__(f"No provider supports sport={sport}")


class AllProvidersExhausted(ScoreFusionError):
    """Every eligible adapter failed; distinct from a valid empty result."""

    def __init__(self, failures: dict[str, str], message: str = "All providers failed") -> None:
        self.failures = dict(failures)
        detail = ", ".join(f"{name}: {err}" for name, err in self.failures.items())
        super().__init__(f"{message} ({detail})" if detail else message)


class ValidationError(ScoreFusionError):
    """Malformed inbound query, rejected before any provider call."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None) -> None:
        self.errors = errors or []
        super().__init__(message)
