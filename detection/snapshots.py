"""
Watchlist Snapshots - Token Registry and Address Set.

Both structures are built once from the persistence layer and never
mutated afterwards. A refresh builds a new WatchlistSnapshot and swaps it
into the SnapshotHolder with a single reference assignment, so a scan
cycle that grabbed the previous snapshot keeps a consistent view.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Optional, Tuple

from chain_adapters.addresses import normalize_address
from chain_adapters.models import Chain, ChainFamily
from detection.models import TrackedToken


logger = logging.getLogger(__name__)


# ============================================================
# TOKEN REGISTRY
# ============================================================

class TokenRegistry:
    """Lookup of tracked tokens by (chain, contract address)."""
    
    def __init__(self, tokens: Iterable[TrackedToken] = ()) -> None:
        by_contract: dict[Tuple[Chain, str], TrackedToken] = {}
        contracts: dict[Chain, list[str]] = {}
        
        for token in tokens:
            for chain, contract in token.contracts_by_chain.items():
                key = (chain, normalize_address(chain, contract))
                existing = by_contract.get(key)
                if existing is not None and existing.token_id != token.token_id:
                    logger.warning(
                        f"Contract {contract} on {chain.value} claimed by both "
                        f"{existing.symbol} and {token.symbol}; keeping {existing.symbol}"
                    )
                    continue
                by_contract[key] = token
                contracts.setdefault(chain, []).append(contract)
        
        self._by_contract = MappingProxyType(by_contract)
        self._contracts = MappingProxyType({c: tuple(v) for c, v in contracts.items()})
        self._tokens = tuple({t.token_id: t for t in by_contract.values()}.values())
    
    def lookup(self, chain: Chain, contract_address: str) -> Optional[TrackedToken]:
        return self._by_contract.get((chain, normalize_address(chain, contract_address)))
    
    def contracts_for(self, chain: Chain) -> Tuple[str, ...]:
        """Tracked contracts on a chain, in their original spelling."""
        return self._contracts.get(chain, ())
    
    @property
    def tokens(self) -> Tuple[TrackedToken, ...]:
        return self._tokens
    
    def __len__(self) -> int:
        return len(self._tokens)


# ============================================================
# ADDRESS SET
# ============================================================

class AddressSet:
    """
    Watched wallet addresses, partitioned by chain family.
    
    Each address maps to the accounts (companies) watching it.
    """
    
    def __init__(self, entries: Iterable[Tuple[Chain, str, int]] = ()) -> None:
        partitions: dict[ChainFamily, dict[str, set[int]]] = {}
        for chain, address, account_id in entries:
            normalized = normalize_address(chain, address)
            if not normalized:
                continue
            partitions.setdefault(chain.family, {}).setdefault(normalized, set()).add(account_id)
        
        self._partitions = MappingProxyType({
            family: MappingProxyType({a: tuple(sorted(ids)) for a, ids in addresses.items()})
            for family, addresses in partitions.items()
        })
    
    def contains(self, chain: Chain, address: str) -> bool:
        return bool(self.accounts_for(chain, address))
    
    def accounts_for(self, chain: Chain, address: str) -> Tuple[int, ...]:
        partition = self._partitions.get(chain.family)
        if not partition or not address:
            return ()
        return partition.get(normalize_address(chain, address), ())
    
    def size(self, family: Optional[ChainFamily] = None) -> int:
        if family is not None:
            return len(self._partitions.get(family, {}))
        return sum(len(p) for p in self._partitions.values())


# ============================================================
# SNAPSHOT
# ============================================================

@dataclass(frozen=True)
class WatchlistSnapshot:
    """Token registry and address set taken together at one point in time."""
    tokens: TokenRegistry = field(default_factory=TokenRegistry)
    addresses: AddressSet = field(default_factory=AddressSet)
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SnapshotHolder:
    """Holds the current snapshot; readers take a reference, writers swap."""
    
    def __init__(self, initial: Optional[WatchlistSnapshot] = None) -> None:
        self._current = initial or WatchlistSnapshot()
        self._version = 0
    
    @property
    def current(self) -> WatchlistSnapshot:
        return self._current
    
    @property
    def version(self) -> int:
        return self._version
    
    def swap(self, snapshot: WatchlistSnapshot) -> WatchlistSnapshot:
        """Install a new snapshot; returns the previous one."""
        previous = self._current
        self._current = snapshot
        self._version += 1
        logger.info(
            f"Watchlist snapshot v{self._version} installed: "
            f"{len(snapshot.tokens)} tokens, {snapshot.addresses.size()} addresses"
        )
        return previous
