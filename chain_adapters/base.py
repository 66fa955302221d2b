"""
Base Chain Adapter - Capability interface for all chain data strategies.

Every strategy (full-block scan, token-indexed feed, log filter) exposes
the same two operations:

- latest_position(): current head in the adapter's range unit
- fetch(scan_range, contracts): all transfers in the range, as a FetchBatch

Upstream calls never raise out of fetch(). Each unit of work (a block or
one contract's feed) is retried with bounded backoff and reported as a
FetchOutcome value.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

import aiohttp

from chain_adapters.exceptions import (
    ChainAdapterError,
    DecodeError,
    FetchError,
    RateLimitError,
)
from chain_adapters.models import (
    AdapterHealth,
    AdapterStatus,
    Chain,
    FetchBatch,
    FetchOutcome,
    RangeUnit,
    RawTransfer,
    ScanRange,
)
from core.retry import RetryPolicy


logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]


class BaseChainAdapter(ABC):
    """
    Abstract base class for chain adapters.
    
    Features:
    - Shared aiohttp session with default headers
    - Fixed per-unit timeout; a timeout counts as a fetch failure
    - Bounded exponential backoff per unit (RetryPolicy)
    - Bounded fan-out for per-contract work
    - Health tracking
    """
    
    DEFAULT_TIMEOUT = 15.0
    DEFAULT_CONCURRENCY = 4
    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5
    
    range_unit: RangeUnit = RangeUnit.HEIGHT
    
    def __init__(
        self,
        chain: Chain,
        endpoint_url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = DEFAULT_CONCURRENCY,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self.chain = chain
        self._endpoint_url = endpoint_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._max_concurrency = max(1, max_concurrency)
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep or asyncio.sleep
        self._request_count = 0
        
        self._health = AdapterHealth(
            status=AdapterStatus.UNKNOWN,
            last_check=datetime.now(timezone.utc),
        )
    
    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this adapter."""
        pass
    
    @abstractmethod
    async def latest_position(self) -> int:
        """
        Current chain head in this adapter's range unit.
        
        Raises:
            FetchError: If the head cannot be read
        """
        pass
    
    @abstractmethod
    async def fetch(
        self,
        scan_range: ScanRange,
        contracts: Sequence[str],
    ) -> FetchBatch:
        """
        Gather all transfers in a scan range.
        
        Args:
            scan_range: Half-open range (start, end] in range_unit
            contracts: Tracked contract addresses for this chain
            
        Returns:
            FetchBatch with one outcome per unit of work. Never raises for
            upstream failures.
        """
        pass
    
    @property
    def request_count(self) -> int:
        """Upstream HTTP calls made so far."""
        return self._request_count
    
    # ─────────────────────────────────────────────────────────────
    # Retry & Fan-out
    # ─────────────────────────────────────────────────────────────
    
    async def _run_unit(
        self,
        unit: str,
        operation: Callable[[], Awaitable[list[RawTransfer]]],
    ) -> FetchOutcome:
        """Run one unit of work under timeout and retry policy."""
        state = self._retry_policy.start()
        
        while True:
            retry_after: Optional[int] = None
            try:
                transfers = await asyncio.wait_for(operation(), timeout=self._timeout)
                
            except asyncio.TimeoutError:
                error: ChainAdapterError = FetchError(
                    f"Timed out after {self._timeout}s",
                    adapter_name=self.name,
                    chain=self.chain.value,
                )
            except RateLimitError as e:
                error = e
                retry_after = e.retry_after_seconds
            except FetchError as e:
                error = e
                if e.is_client_error:
                    state.record_failure(str(e))
                    self._on_error(e)
                    break
            except DecodeError as e:
                error = e
            else:
                state.record_success()
                self._on_success()
                return FetchOutcome.success(unit, transfers, attempts=state.attempts)
            
            self._on_error(error)
            delay = state.record_failure(str(error))
            if delay is None:
                break
            if retry_after:
                delay = max(delay, min(float(retry_after), self._retry_policy.max_delay_seconds))
            
            logger.debug(
                f"[{self.name}] Retry {state.attempts}/{self._retry_policy.max_attempts} "
                f"for {unit} in {delay:.1f}s: {error}"
            )
            await self._sleep(delay)
        
        logger.warning(
            f"[{self.name}] Giving up on {unit} after {state.attempts} attempt(s): "
            f"{state.last_error}"
        )
        return FetchOutcome.failure(unit, state.last_error or "unknown error", attempts=state.attempts)
    
    async def _fetch_contracts(
        self,
        contracts: Sequence[str],
        collect: Callable[[str], Awaitable[list[RawTransfer]]],
    ) -> list[FetchOutcome]:
        """Run one unit per contract with bounded concurrency, then join."""
        semaphore = asyncio.Semaphore(self._max_concurrency)
        
        async def run(contract: str) -> FetchOutcome:
            async with semaphore:
                return await self._run_unit(contract, lambda: collect(contract))
        
        return list(await asyncio.gather(*(run(c) for c in contracts)))
    
    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────
    
    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session
    
    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "TransferWatch/1.0",
        }
    
    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """Make HTTP request with error handling."""
        session = await self._get_session()
        self._request_count += 1
        self._health.requests_total += 1
        
        start_time = time.time()
        try:
            async with session.request(method, url, params=params, json=json_body) as response:
                self._health.latency_ms = (time.time() - start_time) * 1000
                
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        "Rate limit exceeded",
                        adapter_name=self.name,
                        chain=self.chain.value,
                        retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                        request_url=url,
                    )
                
                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        f"HTTP {response.status}",
                        adapter_name=self.name,
                        chain=self.chain.value,
                        status_code=response.status,
                        response_body=body[:500],
                        request_url=url,
                    )
                
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise FetchError(
                        "Malformed JSON response",
                        adapter_name=self.name,
                        chain=self.chain.value,
                        request_url=url,
                        original_error=e,
                    )
                
        except aiohttp.ClientError as e:
            raise FetchError(
                f"Connection error: {e}",
                adapter_name=self.name,
                chain=self.chain.value,
                request_url=url,
                original_error=e,
            )
    
    # ─────────────────────────────────────────────────────────────
    # Health Tracking
    # ─────────────────────────────────────────────────────────────
    
    def _on_success(self) -> None:
        self._health.consecutive_failures = 0
        self._health.last_check = datetime.now(timezone.utc)
        
        if self._health.status != AdapterStatus.HEALTHY:
            if self._health.status != AdapterStatus.UNKNOWN:
                logger.info(f"[{self.name}] Recovered to HEALTHY status")
            self._health.status = AdapterStatus.HEALTHY
    
    def _on_error(self, error: ChainAdapterError) -> None:
        now = datetime.now(timezone.utc)
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = now
        self._health.last_check = now
        
        if isinstance(error, RateLimitError):
            self._health.status = AdapterStatus.RATE_LIMITED
        elif self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != AdapterStatus.UNAVAILABLE:
                self._health.status = AdapterStatus.UNAVAILABLE
                logger.error(f"[{self.name}] Marked UNAVAILABLE")
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != AdapterStatus.DEGRADED:
                self._health.status = AdapterStatus.DEGRADED
                logger.warning(f"[{self.name}] Marked DEGRADED")
    
    def get_health(self) -> AdapterHealth:
        """Get current health status."""
        return self._health
    
    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────
    
    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
    
    async def __aenter__(self) -> "BaseChainAdapter":
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
    
    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(name={self.name}, chain={self.chain.value}, "
            f"status={self._health.status.value})>"
        )
