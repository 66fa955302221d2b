"""
Providers package - Chain adapter implementations.
"""

from chain_adapters.providers.evm_rpc import EvmLogAdapter
from chain_adapters.providers.tron_grid import TronBlockAdapter, TronTokenFeedAdapter


__all__ = [
    "EvmLogAdapter",
    "TronBlockAdapter",
    "TronTokenFeedAdapter",
]
