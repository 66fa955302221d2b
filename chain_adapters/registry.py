"""
Chain Adapter Registry - One adapter per chain, chosen at configuration time.

The retrieval strategy for a chain is decided once from its settings
(create_adapter); the scan loop only ever sees the BaseChainAdapter
interface.
"""

import logging
from typing import Optional

import aiohttp

from chain_adapters.base import BaseChainAdapter
from chain_adapters.exceptions import ChainNotSupportedError
from chain_adapters.models import Chain, ChainFamily
from chain_adapters.providers import EvmLogAdapter, TronBlockAdapter, TronTokenFeedAdapter
from core.config import STRATEGY_BLOCK, STRATEGY_LOGS, STRATEGY_TOKEN, ChainSettings
from core.exceptions import ConfigurationError
from core.retry import RetryPolicy


logger = logging.getLogger(__name__)


def create_adapter(
    settings: ChainSettings,
    timeout: float = BaseChainAdapter.DEFAULT_TIMEOUT,
    retry_policy: Optional[RetryPolicy] = None,
    max_concurrency: int = BaseChainAdapter.DEFAULT_CONCURRENCY,
    session: Optional[aiohttp.ClientSession] = None,
) -> BaseChainAdapter:
    """
    Build the adapter for one chain from its settings.
    
    Raises:
        ConfigurationError: If the strategy does not apply to the chain
    """
    try:
        chain = Chain.from_value(settings.chain)
    except ValueError as e:
        raise ConfigurationError(str(e), config_key="chain", actual_value=settings.chain)
    
    if chain.family == ChainFamily.TRON:
        if settings.strategy == STRATEGY_BLOCK:
            return TronBlockAdapter(
                settings.endpoint_url,
                api_key=settings.api_key,
                timeout=timeout,
                retry_policy=retry_policy,
                blocks_per_request=settings.blocks_per_request,
                session=session,
            )
        if settings.strategy == STRATEGY_TOKEN:
            return TronTokenFeedAdapter(
                Chain.TRON,
                settings.endpoint_url,
                api_key=settings.api_key,
                timeout=timeout,
                retry_policy=retry_policy,
                max_concurrency=max_concurrency,
                session=session,
            )
    elif settings.strategy == STRATEGY_LOGS:
        return EvmLogAdapter(
            chain,
            settings.endpoint_url,
            api_key=settings.api_key,
            timeout=timeout,
            retry_policy=retry_policy,
            max_concurrency=max_concurrency,
            session=session,
        )
    
    raise ConfigurationError(
        f"Strategy '{settings.strategy}' is not available for {chain.value}",
        config_key=f"{chain.value.upper()}_SCAN_STRATEGY",
        actual_value=settings.strategy,
    )


class AdapterRegistry:
    """
    Registry of the active adapter for each chain.
    
    Usage:
        registry = AdapterRegistry()
        registry.register(create_adapter(settings))
        adapter = registry.get(Chain.TRON)
    """
    
    def __init__(self) -> None:
        self._adapters: dict[Chain, BaseChainAdapter] = {}
    
    def register(self, adapter: BaseChainAdapter) -> None:
        """Register the adapter for its chain, replacing any previous one."""
        if adapter.chain in self._adapters:
            logger.warning(f"Adapter for '{adapter.chain.value}' already registered, replacing")
        self._adapters[adapter.chain] = adapter
        logger.info(
            f"Registered chain adapter '{adapter.name}' for {adapter.chain.value} "
            f"({adapter.range_unit.value} ranges)"
        )
    
    def unregister(self, chain: Chain) -> Optional[BaseChainAdapter]:
        adapter = self._adapters.pop(chain, None)
        if adapter:
            logger.info(f"Unregistered adapter '{adapter.name}'")
        return adapter
    
    def get(self, chain: Chain) -> BaseChainAdapter:
        adapter = self._adapters.get(chain)
        if adapter is None:
            raise ChainNotSupportedError(
                f"No adapter registered for {chain.value}",
                chain=chain.value,
                supported_chains=[c.value for c in self._adapters],
            )
        return adapter
    
    def chains(self) -> list[Chain]:
        return list(self._adapters)
    
    async def close_all(self) -> None:
        """Close every registered adapter's HTTP session."""
        for adapter in self._adapters.values():
            await adapter.close()
    
    @classmethod
    def from_settings(
        cls,
        chains: dict[str, ChainSettings],
        timeout: float = BaseChainAdapter.DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = BaseChainAdapter.DEFAULT_CONCURRENCY,
    ) -> "AdapterRegistry":
        registry = cls()
        for settings in chains.values():
            registry.register(create_adapter(
                settings,
                timeout=timeout,
                retry_policy=retry_policy,
                max_concurrency=max_concurrency,
            ))
        return registry
