"""
Bounded exponential backoff.

Retry decisions are carried as explicit state so callers can tell
"give up" apart from "try again after N seconds" without exceptions.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration for one unit of upstream work."""
    
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    multiplier: float = 2.0
    
    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("delays must be >= 0")
    
    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based), capped."""
        delay = self.base_delay_seconds * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay_seconds)
    
    def start(self) -> "RetryState":
        return RetryState(policy=self)


@dataclass
class RetryState:
    """Attempt counter for a single unit of work."""
    
    policy: RetryPolicy
    attempts: int = 0
    last_error: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    
    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.policy.max_attempts
    
    def record_failure(self, reason: str) -> Optional[float]:
        """
        Record a failed attempt.
        
        Returns:
            Seconds to wait before the next attempt, or None when the
            attempt ceiling has been reached.
        """
        self.attempts += 1
        self.last_error = reason
        self.errors.append(reason)
        if self.exhausted:
            return None
        return self.policy.delay_for(self.attempts)
    
    def record_success(self) -> None:
        self.attempts += 1
