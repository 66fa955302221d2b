"""
Chain Data Models - Chain-agnostic transfer representation.

Upstream payloads are decoded into these strict shapes at the adapter
edge so every downstream stage works on a fixed structure.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class AdapterStatus(Enum):
    """Health status of a chain adapter."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class ChainFamily(Enum):
    """Address and payload conventions shared by a group of chains."""
    TRON = "tron"
    EVM = "evm"


class Chain(Enum):
    """Explicitly registered blockchain networks."""
    TRON = "tron"
    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    BSC = "bsc"
    
    @property
    def family(self) -> ChainFamily:
        if self is Chain.TRON:
            return ChainFamily.TRON
        return ChainFamily.EVM
    
    @classmethod
    def from_value(cls, value: str) -> "Chain":
        """Resolve a chain from its configured name (case-insensitive)."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            supported = ", ".join(c.value for c in cls)
            raise ValueError(f"Unknown chain '{value}' (supported: {supported})")


class RangeUnit(Enum):
    """What a scan range and watermark count."""
    HEIGHT = "height"
    TIMESTAMP_MS = "timestamp_ms"


class FetchStatus(Enum):
    """Result of fetching one unit of chain data."""
    OK = "ok"
    FAILED = "failed"


@dataclass(frozen=True)
class ScanRange:
    """Half-open scan range (start, end]."""
    start: int
    end: int
    unit: RangeUnit = RangeUnit.HEIGHT
    
    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Invalid scan range ({self.start}, {self.end}]")
    
    @property
    def first(self) -> int:
        """First position included in the range."""
        return self.start + 1
    
    @property
    def width(self) -> int:
        return self.end - self.start
    
    @property
    def is_empty(self) -> bool:
        return self.end == self.start
    
    def __str__(self) -> str:
        return f"({self.start}, {self.end}] {self.unit.value}"


@dataclass(frozen=True)
class RawTransfer:
    """
    A single on-chain token transfer, as observed.
    
    Immutable; later stages derive new values from it.
    """
    chain: Chain
    tx_id: str
    contract_address: str
    from_address: str
    to_address: str
    raw_amount: int
    block_height: Optional[int] = None
    block_timestamp: Optional[datetime] = None
    
    address_fallback: bool = False
    """True when an address could not be converted to its canonical encoding."""
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "chain": self.chain.value,
            "tx_id": self.tx_id,
            "contract_address": self.contract_address,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "raw_amount": str(self.raw_amount),
            "block_height": self.block_height,
            "block_timestamp": self.block_timestamp.isoformat() if self.block_timestamp else None,
            "address_fallback": self.address_fallback,
        }


@dataclass(frozen=True)
class BlockPayload:
    """A full block as returned by a block-based endpoint."""
    height: int
    block_id: str
    timestamp: Optional[datetime]
    transactions: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class TransferPage:
    """One page of a token-indexed transfer feed."""
    items: tuple[dict[str, Any], ...]
    next_cursor: Optional[str] = None


@dataclass(frozen=True)
class FetchOutcome:
    """
    Result of fetching one unit (a block or one token's feed).
    
    Failures are values, not exceptions: the scan loop decides what a
    failure means for the watermark.
    """
    unit: str
    status: FetchStatus
    transfers: tuple[RawTransfer, ...] = ()
    attempts: int = 1
    reason: Optional[str] = None
    
    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK
    
    @classmethod
    def success(
        cls,
        unit: str,
        transfers: list[RawTransfer],
        attempts: int = 1,
    ) -> "FetchOutcome":
        return cls(unit=unit, status=FetchStatus.OK, transfers=tuple(transfers), attempts=attempts)
    
    @classmethod
    def failure(cls, unit: str, reason: str, attempts: int = 1) -> "FetchOutcome":
        return cls(unit=unit, status=FetchStatus.FAILED, attempts=attempts, reason=reason)


@dataclass
class FetchBatch:
    """All outcomes gathered for one scan range."""
    scan_range: ScanRange
    outcomes: list[FetchOutcome] = field(default_factory=list)
    
    confirmed_through: Optional[int] = None
    """Highest position through which every unit was fetched successfully."""
    
    request_count: int = 0
    """Upstream calls made while gathering the batch."""
    
    @property
    def transfers(self) -> list[RawTransfer]:
        result: list[RawTransfer] = []
        for outcome in self.outcomes:
            if outcome.ok:
                result.extend(outcome.transfers)
        return result
    
    @property
    def failures(self) -> list[FetchOutcome]:
        return [o for o in self.outcomes if not o.ok]
    
    @property
    def fully_succeeded(self) -> bool:
        return not self.failures
    
    @property
    def effective_confirmed(self) -> int:
        """Confirmed position, defaulting to all-or-nothing for the range."""
        if self.confirmed_through is not None:
            return self.confirmed_through
        return self.scan_range.end if self.fully_succeeded else self.scan_range.start


@dataclass
class AdapterHealth:
    """Health status of a chain adapter."""
    status: AdapterStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0
    
    def is_usable(self) -> bool:
        """Check if adapter can still be used."""
        return self.status in (AdapterStatus.HEALTHY, AdapterStatus.DEGRADED)
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "requests_total": self.requests_total,
        }
