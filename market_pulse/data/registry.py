"""Maps ProviderType to registered providers."""

from __future__ import annotations

from market_pulse.data.providers.base import ProviderClient
from market_pulse.models.data import ProviderType


class ProviderRegistry:
    """Registry of provider clients, looked up by type or priority list."""

    def __init__(self) -> None:
        self._providers: dict[ProviderType, ProviderClient] = {}

    def register(self, provider: ProviderClient) -> None:
        """Register a data provider. Replaces any provider of the same type."""
        self._providers[provider.provider_type] = provider

    def get(self, provider_type: ProviderType) -> ProviderClient | None:
        return self._providers.get(provider_type)

    def ordered(self, order: list[ProviderType]) -> list[ProviderClient]:
        """Registered providers in the given priority order. Unknown types are skipped."""
        return [self._providers[pt] for pt in order if pt in self._providers]

    def __iter__(self):
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)
