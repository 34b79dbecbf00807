"""
Provider registry: builds the configured adapters and keeps them in
registration order. Health-based ordering lives in ingest.health.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import NoProviderForSport
from shared.models.enums import ProviderName, Sport
from shared.utils.logging import get_logger

from ingest.providers.api_football import ApiFootballProvider
from ingest.providers.base import BaseProvider
from ingest.providers.espn import ESPNProvider
from ingest.providers.sportmonks import SportMonksProvider
from ingest.providers.thesportsdb import TheSportsDBProvider

logger = get_logger(__name__)

_FACTORIES: dict[ProviderName, Callable[..., BaseProvider]] = {
    ProviderName.API_FOOTBALL: ApiFootballProvider,
    ProviderName.SPORTMONKS: SportMonksProvider,
    ProviderName.THESPORTSDB: TheSportsDBProvider,
    ProviderName.ESPN: ESPNProvider,
}

# Adapters that cannot work without a key; the others have a free tier.
_REQUIRED_KEYS: dict[ProviderName, str] = {
    ProviderName.API_FOOTBALL: "api_football_api_key",
    ProviderName.SPORTMONKS: "sportmonks_api_key",
}


class ProviderRegistry:
    """Ordered collection of provider adapters with lifecycle helpers."""

    def __init__(self, providers: Iterable[BaseProvider]) -> None:
        self._providers: dict[ProviderName, BaseProvider] = {}
        for provider in providers:
            if provider.name in self._providers:
                raise ValueError(f"Provider registered twice: {provider.name.value}")
            self._providers[provider.name] = provider

    def __iter__(self):
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def names(self) -> list[ProviderName]:
        return list(self._providers)

    def get(self, name: ProviderName) -> Optional[BaseProvider]:
        return self._providers.get(name)

    def supporting(self, sport: Optional[Sport]) -> list[BaseProvider]:
        """Adapters declaring support for sport (all adapters when sport is None)."""
        return [p for p in self._providers.values() if sport is None or p.supports(sport)]

    def require(self, sport: Optional[Sport]) -> list[BaseProvider]:
        """Like supporting(), but raises NoProviderForSport instead of returning nothing."""
        providers = self.supporting(sport)
        if not providers:
            raise NoProviderForSport(sport.value if sport is not None else "any")
        return providers

    def owner_of(self, external_id: str) -> Optional[BaseProvider]:
        return next((p for p in self._providers.values() if p.owns(external_id)), None)

    async def start_all(self) -> None:
        await asyncio.gather(*(p.start() for p in self._providers.values()))
        logger.info("providers_started", providers=[n.value for n in self._providers])

    async def close_all(self) -> None:
        results = await asyncio.gather(*(p.close() for p in self._providers.values()), return_exceptions=True)
        for name, result in zip(self._providers, results):
            if isinstance(result, Exception):
                logger.warning("provider_close_failed", provider=name.value, error=str(result))


def build_registry(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderRegistry:
    """Instantiate the adapters named in settings.provider_order."""
    settings = settings or get_settings()
    providers: list[BaseProvider] = []
    for raw in settings.provider_order:
        try:
            name = ProviderName(raw)
        except ValueError:
            logger.warning("provider_unknown", provider=raw)
            continue
        key_field = _REQUIRED_KEYS.get(name)
        if key_field and not getattr(settings, key_field):
            logger.info("provider_disabled_no_key", provider=name.value)
            continue
        providers.append(_FACTORIES[name](settings=settings, transport=transport))
    return ProviderRegistry(providers)
