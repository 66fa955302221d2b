"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Engine-level exceptions that cross package boundaries.

- Configuration problems detected at startup
- Persistence outages surfaced to the scan orchestrator

Adapter and repository errors have their own hierarchies in
chain_adapters.exceptions and storage.repositories.exceptions.

============================================================
EXCEPTION HIERARCHY
============================================================
EngineError (base)
├── ConfigurationError
└── PersistenceUnavailableError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""
    
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# BASE EXCEPTION
# ============================================================

class EngineError(Exception):
    """
    Base exception for engine errors.
    
    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - timestamp: when the error occurred
    """
    
    default_severity: Severity = Severity.MEDIUM
    
    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        
        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        
        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)
    
    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(EngineError):
    """Invalid or missing configuration value."""
    
    default_severity = Severity.HIGH
    
    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]
        
        super().__init__(message, context=context, **kwargs)
        self.config_key = config_key


# ============================================================
# PERSISTENCE ERRORS
# ============================================================

class PersistenceUnavailableError(EngineError):
    """
    A commit point (decision record or watermark) could not be written.
    
    Raised by the scan loop so the chain halts until the store recovers.
    """
    
    default_severity = Severity.CRITICAL
    
    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        commit_point: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if chain:
            context["chain"] = chain
        if commit_point:
            context["commit_point"] = commit_point
        
        super().__init__(message, context=context, **kwargs)
        self.chain = chain
        self.commit_point = commit_point
