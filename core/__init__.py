"""
Core Module Package.

Shared infrastructure used by every other package of the transfer
detection engine.

Components:
- clock: Unified time abstraction
- config: Environment-driven engine configuration
- constants: Chain protocol constants (selectors, topics, prefixes)
- exceptions: Engine-level exception hierarchy
- retry: Bounded exponential backoff state
"""

from core.clock import ClockProtocol, MockClock, SystemClock, get_clock, now_utc
from core.exceptions import (
    ConfigurationError,
    EngineError,
    PersistenceUnavailableError,
)
from core.retry import RetryPolicy, RetryState


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "get_clock",
    "now_utc",
    "EngineError",
    "ConfigurationError",
    "PersistenceUnavailableError",
    "RetryPolicy",
    "RetryState",
]
