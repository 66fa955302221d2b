"""
Core Module - Engine Configuration.

============================================================
RESPONSIBILITY
============================================================
Loads all runtime settings from the environment (and an optional
.env file) into immutable dataclasses.

- One ChainSettings per registered chain
- Retry, pricing, snapshot and fan-out settings shared by all loops
- Validation reports every problem at once

============================================================
ENVIRONMENT
============================================================
Per chain (prefix = TRON, ETHEREUM, POLYGON, BSC):
- <PREFIX>_POLL_INTERVAL_SECONDS
- <PREFIX>_BATCH_SIZE
- <PREFIX>_CONFIRMATIONS
- <PREFIX>_LOOKBACK_WINDOW
- <PREFIX>_INITIAL_LOOKBACK
- <PREFIX>_BLOCKS_PER_REQUEST

Endpoints:
- TRONGRID_API_URL, TRONGRID_API_KEY, TRON_SCAN_STRATEGY (block|token)
- ETHEREUM_RPC_URL, POLYGON_RPC_URL, BSC_RPC_URL
- ETHEREUM_RPC_API_KEY, POLYGON_RPC_API_KEY, BSC_RPC_API_KEY (sent as x-api-key)

Shared:
- REQUEST_TIMEOUT_SECONDS, FETCH_CONCURRENCY
- RETRY_MAX_ATTEMPTS, RETRY_BASE_DELAY_SECONDS, RETRY_MAX_DELAY_SECONDS
- MAX_PRICE_AGE_SECONDS, SNAPSHOT_REFRESH_SECONDS
- SLACK_ALERT_WEBHOOK_URL, LOG_LEVEL, LOG_FORMAT

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from core.retry import RetryPolicy


load_dotenv()


# ============================================================
# STRATEGIES
# ============================================================

STRATEGY_BLOCK = "block"
STRATEGY_TOKEN = "token"
STRATEGY_LOGS = "logs"

DEFAULT_TRONGRID_URL = "https://api.trongrid.io"


# ============================================================
# CHAIN SETTINGS
# ============================================================

@dataclass(frozen=True)
class ChainSettings:
    """Scan settings for a single chain."""
    
    chain: str
    endpoint_url: str
    strategy: str
    api_key: Optional[str] = None
    
    poll_interval_seconds: float = 5.0
    """Delay between scan cycles."""
    
    batch_size: int = 20
    """Width of one scan range (blocks, or milliseconds for timestamp feeds)."""
    
    confirmations: int = 0
    """Distance kept behind the chain head, in range units."""
    
    lookback_window: int = 1000
    """How far the watermark may trail the head before a failing range is abandoned."""
    
    initial_lookback: int = 100
    """Start offset behind the head when no watermark is persisted."""
    
    blocks_per_request: int = 1
    """Blocks fetched per call by block-based strategies (max 100 on Tron)."""
    
    def validate(self) -> List[str]:
        errors = []
        if not self.endpoint_url:
            errors.append(f"{self.chain}: endpoint_url is required")
        if self.strategy not in (STRATEGY_BLOCK, STRATEGY_TOKEN, STRATEGY_LOGS):
            errors.append(f"{self.chain}: unknown strategy '{self.strategy}'")
        if self.poll_interval_seconds <= 0:
            errors.append(f"{self.chain}: poll_interval_seconds must be positive")
        if self.batch_size < 1:
            errors.append(f"{self.chain}: batch_size must be at least 1")
        if self.confirmations < 0:
            errors.append(f"{self.chain}: confirmations must be >= 0")
        if self.blocks_per_request < 1:
            errors.append(f"{self.chain}: blocks_per_request must be at least 1")
        if self.lookback_window < self.batch_size:
            errors.append(f"{self.chain}: lookback_window must be >= batch_size")
        return errors


# ============================================================
# ENGINE CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class EngineConfig:
    """Top-level configuration for the detection engine."""
    
    chains: Dict[str, ChainSettings] = field(default_factory=dict)
    
    request_timeout_seconds: float = 15.0
    fetch_concurrency: int = 4
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    
    max_price_age_seconds: int = 300
    """Prices older than this are treated as unavailable."""
    
    snapshot_refresh_seconds: int = 60
    """Token registry and address set refresh cadence."""
    
    slack_webhook_url: Optional[str] = None
    log_level: str = "INFO"
    log_format: str = "text"
    
    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        timeout = _get_float("REQUEST_TIMEOUT_SECONDS", 15.0)
        
        chains: Dict[str, ChainSettings] = {}
        
        tron_strategy = os.getenv("TRON_SCAN_STRATEGY", STRATEGY_BLOCK).lower()
        if tron_strategy == STRATEGY_TOKEN:
            # Token feeds are windowed by block timestamp (milliseconds)
            chains["tron"] = _chain_from_env(
                "tron",
                os.getenv("TRONGRID_API_URL", DEFAULT_TRONGRID_URL),
                STRATEGY_TOKEN,
                api_key=os.getenv("TRONGRID_API_KEY"),
                interval=10.0,
                batch_size=60_000,
                confirmations=3_000,
                lookback_window=3_600_000,
                initial_lookback=300_000,
            )
        else:
            chains["tron"] = _chain_from_env(
                "tron",
                os.getenv("TRONGRID_API_URL", DEFAULT_TRONGRID_URL),
                tron_strategy,
                api_key=os.getenv("TRONGRID_API_KEY"),
                interval=3.0,
                batch_size=20,
                confirmations=0,
                lookback_window=1000,
                initial_lookback=100,
            )
        
        evm_defaults = {
            "ethereum": 8.0,
            "polygon": 2.0,
            "bsc": 3.0,
        }
        for chain, interval in evm_defaults.items():
            url = os.getenv(f"{chain.upper()}_RPC_URL")
            if not url:
                continue
            chains[chain] = _chain_from_env(
                chain,
                url,
                STRATEGY_LOGS,
                api_key=os.getenv(f"{chain.upper()}_RPC_API_KEY"),
                interval=interval,
                batch_size=50,
                confirmations=1,
                lookback_window=2000,
                initial_lookback=100,
            )
        
        config = cls(
            chains=chains,
            request_timeout_seconds=timeout,
            fetch_concurrency=_get_int("FETCH_CONCURRENCY", 4),
            retry=RetryPolicy(
                max_attempts=_get_int("RETRY_MAX_ATTEMPTS", 3),
                base_delay_seconds=_get_float("RETRY_BASE_DELAY_SECONDS", 1.0),
                max_delay_seconds=_get_float("RETRY_MAX_DELAY_SECONDS", 10.0),
            ),
            max_price_age_seconds=_get_int("MAX_PRICE_AGE_SECONDS", 300),
            snapshot_refresh_seconds=_get_int("SNAPSHOT_REFRESH_SECONDS", 60),
            slack_webhook_url=os.getenv("SLACK_ALERT_WEBHOOK_URL") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
        )
        
        errors = config.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(errors)}",
                context={"errors": errors},
            )
        return config
    
    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []
        for settings in self.chains.values():
            errors.extend(settings.validate())
        if self.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be positive")
        if self.fetch_concurrency < 1:
            errors.append("fetch_concurrency must be at least 1")
        if self.max_price_age_seconds < 1:
            errors.append("max_price_age_seconds must be at least 1")
        if self.snapshot_refresh_seconds < 1:
            errors.append("snapshot_refresh_seconds must be at least 1")
        if self.log_format not in ("json", "text"):
            errors.append(f"log_format must be 'json' or 'text', got '{self.log_format}'")
        return errors
    
    def select_chains(self, names: Optional[List[str]]) -> "EngineConfig":
        """Return a copy restricted to the given chain names."""
        if not names:
            return self
        unknown = [n for n in names if n not in self.chains]
        if unknown:
            raise ConfigurationError(
                f"Chains not configured: {', '.join(unknown)}",
                config_key="chains",
                actual_value=unknown,
            )
        return EngineConfig(
            chains={n: self.chains[n] for n in names},
            request_timeout_seconds=self.request_timeout_seconds,
            fetch_concurrency=self.fetch_concurrency,
            retry=self.retry,
            max_price_age_seconds=self.max_price_age_seconds,
            snapshot_refresh_seconds=self.snapshot_refresh_seconds,
            slack_webhook_url=self.slack_webhook_url,
            log_level=self.log_level,
            log_format=self.log_format,
        )


# ============================================================
# HELPERS
# ============================================================

def _chain_from_env(
    chain: str,
    endpoint_url: str,
    strategy: str,
    api_key: Optional[str] = None,
    interval: float = 5.0,
    batch_size: int = 20,
    confirmations: int = 0,
    lookback_window: int = 1000,
    initial_lookback: int = 100,
) -> ChainSettings:
    prefix = chain.upper()
    return ChainSettings(
        chain=chain,
        endpoint_url=endpoint_url.rstrip("/"),
        strategy=strategy,
        api_key=api_key or None,
        poll_interval_seconds=_get_float(f"{prefix}_POLL_INTERVAL_SECONDS", interval),
        batch_size=_get_int(f"{prefix}_BATCH_SIZE", batch_size),
        confirmations=_get_int(f"{prefix}_CONFIRMATIONS", confirmations),
        lookback_window=_get_int(f"{prefix}_LOOKBACK_WINDOW", lookback_window),
        initial_lookback=_get_int(f"{prefix}_INITIAL_LOOKBACK", initial_lookback),
        blocks_per_request=_get_int(f"{prefix}_BLOCKS_PER_REQUEST", 1),
    )


def _get_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{key} must be an integer",
            config_key=key,
            actual_value=raw,
        )


def _get_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{key} must be a number",
            config_key=key,
            actual_value=raw,
        )
