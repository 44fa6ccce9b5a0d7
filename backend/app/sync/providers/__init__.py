"""
Connection provider implementations

Supported providers:
- manual: Already-normalized entries uploaded with the connection config
"""

from typing import Dict, List, Optional, Type

from ..exceptions import UnknownProviderError
from .base import ProviderAdapter, ProviderContext, ProviderInfo, ProviderField, ConnectResult, SyncResult
from .manual import ManualProvider


class ProviderRegistry:
    """Adapter classes by provider id."""

    def __init__(self, adapters: Optional[List[Type[ProviderAdapter]]] = None):
        adapters = adapters if adapters is not None else [ManualProvider]
        self._adapters: Dict[str, Type[ProviderAdapter]] = {
            adapter.info.provider_id: adapter for adapter in adapters
        }

    def register(self, adapter: Type[ProviderAdapter]):
        self._adapters[adapter.info.provider_id] = adapter

    def require(self, provider_id: str) -> Type[ProviderAdapter]:
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise UnknownProviderError(f"Unknown provider: {provider_id}")
        return adapter

    def create(self, provider_id: str, context: ProviderContext) -> ProviderAdapter:
        return self.require(provider_id)(context)

    def list(self) -> List[ProviderInfo]:
        return [adapter.info for adapter in self._adapters.values()]


__all__ = [
    'ProviderAdapter',
    'ProviderContext',
    'ProviderInfo',
    'ProviderField',
    'ProviderRegistry',
    'ConnectResult',
    'SyncResult',
    'ManualProvider',
]
