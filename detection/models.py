"""
Detection Models - Values flowing through the detection pipeline.

RawTransfer (chain_adapters) -> RelevantTransfer -> EvaluatedTransfer
-> AlertEvent. Every stage derives a new frozen value; nothing upstream
is mutated.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from chain_adapters.models import Chain, RawTransfer


class Direction(Enum):
    """Transfer direction relative to the watched wallet."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class DecisionReason(Enum):
    """Why an alert decision came out the way it did."""
    ABOVE_THRESHOLD = "above_threshold"
    BELOW_THRESHOLD = "below_threshold"
    UNPRICED = "unpriced"
    NO_THRESHOLD = "no_threshold"


@dataclass(frozen=True)
class TrackedToken:
    """A token watched across chains, with its current USD price."""
    token_id: int
    symbol: str
    decimals: int
    usd_price: Optional[Decimal]
    contracts_by_chain: Mapping[Chain, str] = field(default_factory=dict)
    price_updated_at: Optional[datetime] = None
    
    def __post_init__(self) -> None:
        if not 0 <= self.decimals <= 255:
            raise ValueError(f"{self.symbol}: decimals must be within 0..255, got {self.decimals}")
        # dict keys already guarantee one contract per chain
        object.__setattr__(self, "contracts_by_chain", MappingProxyType(dict(self.contracts_by_chain)))


@dataclass(frozen=True)
class RelevantTransfer:
    """A transfer of a tracked token touching a watched wallet, for one account."""
    transfer: RawTransfer
    token: TrackedToken
    direction: Direction
    account_id: int
    wallet_address: str


@dataclass(frozen=True)
class EvaluatedTransfer:
    """A relevant transfer with its normalized quantity and USD value."""
    transfer: RawTransfer
    token: TrackedToken
    direction: Direction
    account_id: int
    wallet_address: str
    quantity: Decimal
    usd_value: Optional[Decimal]
    
    @property
    def unpriced(self) -> bool:
        return self.usd_value is None
    
    @property
    def token_id(self) -> int:
        return self.token.token_id
    
    @property
    def decision_key(self) -> Tuple[str, str, int]:
        return (self.transfer.chain.value, self.transfer.tx_id, self.account_id)


@dataclass(frozen=True)
class AlertEvent:
    """Emitted exactly once per (chain, tx, account) that crossed its threshold."""
    account_id: int
    transfer: EvaluatedTransfer
    usd_value: Decimal
    threshold: Decimal
    decided_at: datetime
    
    def to_dict(self) -> dict[str, Any]:
        raw = self.transfer.transfer
        return {
            "account_id": self.account_id,
            "chain": raw.chain.value,
            "tx_id": raw.tx_id,
            "token": self.transfer.token.symbol,
            "direction": self.transfer.direction.value,
            "wallet": self.transfer.wallet_address,
            "quantity": str(self.transfer.quantity),
            "usd_value": str(self.usd_value),
            "threshold": str(self.threshold),
            "decided_at": self.decided_at.isoformat(),
        }
