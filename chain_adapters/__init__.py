"""
Chain Adapters Package - Chain data retrieval and transfer decoding.

Turns raw chain data into chain-agnostic RawTransfer values.

Features:
- One capability interface for every retrieval strategy
- Full-block scanning (Tron) and token-indexed feeds (Tron events, EVM logs)
- Upstream failures reported as FetchOutcome values, never raised
- Hex/base58 address conversion for Tron

Quick Start:
    from chain_adapters import Chain, ScanRange, create_adapter
    from core.config import EngineConfig
    
    async def scan_once():
        config = EngineConfig.from_env()
        adapter = create_adapter(config.chains["tron"])
        
        head = await adapter.latest_position()
        batch = await adapter.fetch(ScanRange(head - 5, head), contracts=[])
        
        for transfer in batch.transfers:
            print(transfer.tx_id, transfer.to_address, transfer.raw_amount)
        
        await adapter.close()

Adding New Strategies:
    class NewAdapter(BaseChainAdapter):
        @property
        def name(self) -> str:
            return "new_adapter"
        
        async def latest_position(self) -> int: ...
        async def fetch(self, scan_range, contracts) -> FetchBatch: ...
"""

from chain_adapters.addresses import (
    is_valid_tron_address,
    normalize_address,
    to_canonical_tron,
    tron_base58_to_hex,
    tron_hex_to_base58,
)
from chain_adapters.base import BaseChainAdapter
from chain_adapters.decoding import (
    decode_evm_log,
    decode_transfer_call,
    decode_tron_block,
    decode_tron_event,
    decode_tron_transaction,
    parse_tron_block,
)
from chain_adapters.exceptions import (
    AddressEncodingError,
    ChainAdapterError,
    ChainNotSupportedError,
    DecodeError,
    FetchError,
    RateLimitError,
)
from chain_adapters.models import (
    AdapterHealth,
    AdapterStatus,
    BlockPayload,
    Chain,
    ChainFamily,
    FetchBatch,
    FetchOutcome,
    FetchStatus,
    RangeUnit,
    RawTransfer,
    ScanRange,
    TransferPage,
)
from chain_adapters.providers import EvmLogAdapter, TronBlockAdapter, TronTokenFeedAdapter
from chain_adapters.registry import AdapterRegistry, create_adapter


__version__ = "1.0.0"

__all__ = [
    # Base
    "BaseChainAdapter",
    # Providers
    "EvmLogAdapter",
    "TronBlockAdapter",
    "TronTokenFeedAdapter",
    # Registry
    "AdapterRegistry",
    "create_adapter",
    # Models
    "AdapterHealth",
    "AdapterStatus",
    "BlockPayload",
    "Chain",
    "ChainFamily",
    "FetchBatch",
    "FetchOutcome",
    "FetchStatus",
    "RangeUnit",
    "RawTransfer",
    "ScanRange",
    "TransferPage",
    # Decoding
    "decode_evm_log",
    "decode_transfer_call",
    "decode_tron_block",
    "decode_tron_event",
    "decode_tron_transaction",
    "parse_tron_block",
    # Addresses
    "is_valid_tron_address",
    "normalize_address",
    "to_canonical_tron",
    "tron_base58_to_hex",
    "tron_hex_to_base58",
    # Exceptions
    "AddressEncodingError",
    "ChainAdapterError",
    "ChainNotSupportedError",
    "DecodeError",
    "FetchError",
    "RateLimitError",
]
