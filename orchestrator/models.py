"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the scan orchestrator.

- Loop status per chain (running, halted, stopped)
- Result of one scan cycle

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# LOOP STATUS
# ============================================================

class LoopStatus(Enum):
    """State of one chain's scan loop."""

    IDLE = "idle"
    """Created, not started."""

    RUNNING = "running"
    """Scanning on its cadence."""

    HALTED = "halted"
    """Persistence unavailable; retrying from the last watermark."""

    STOPPED = "stopped"
    """Shut down."""


# ============================================================
# CYCLE RESULT
# ============================================================

@dataclass
class CycleResult:
    """Result of one scan cycle on one chain."""

    chain: str
    started_at: datetime
    completed_at: Optional[datetime] = None

    range_start: Optional[int] = None
    range_end: Optional[int] = None
    head: Optional[int] = None

    fetched: int = 0
    relevant: int = 0
    decided: int = 0
    alerts: int = 0
    delivered: int = 0
    requests: int = 0
    failures: List[str] = field(default_factory=list)

    watermark_before: Optional[int] = None
    watermark_after: Optional[int] = None
    abandoned: bool = False
    """True when a persistently failing range was skipped past."""

    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and not self.failures

    @property
    def advanced(self) -> bool:
        return (
            self.watermark_after is not None
            and (self.watermark_before is None or self.watermark_after > self.watermark_before)
        )

    @property
    def duration_seconds(self) -> float:
        """Get total duration in seconds."""
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def summary(self) -> str:
        """One-line summary for the cycle log."""
        return (
            f"[{self.chain}] range=({self.range_start}, {self.range_end}] head={self.head} "
            f"fetched={self.fetched} relevant={self.relevant} decided={self.decided} "
            f"alerts={self.alerts} requests={self.requests} failures={len(self.failures)} "
            f"watermark={self.watermark_before}->{self.watermark_after} "
            f"({self.duration_seconds:.2f}s)"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "chain": self.chain,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "duration_seconds": self.duration_seconds,
            "range": [self.range_start, self.range_end],
            "head": self.head,
            "fetched": self.fetched,
            "relevant": self.relevant,
            "decided": self.decided,
            "alerts": self.alerts,
            "delivered": self.delivered,
            "requests": self.requests,
            "failures": list(self.failures),
            "watermark_before": self.watermark_before,
            "watermark_after": self.watermark_after,
            "abandoned": self.abandoned,
            "error": self.error,
        }
