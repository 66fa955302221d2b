"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Runs the detection engine as one process.

- One ChainScanLoop per configured chain, running concurrently
- A snapshot refresher rebuilding the watchlist on its own cadence
- Startup (initial snapshot) and graceful shutdown
- Handles signals (SIGINT, SIGTERM)

============================================================
ARCHITECTURAL POSITION
============================================================
- The orchestrator has NO detection logic
- It does NOT touch watermarks or decisions itself
- It ONLY wires components and coordinates their lifetimes

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from chain_adapters.models import Chain, ChainFamily
from chain_adapters.registry import AdapterRegistry
from core.clock import ClockProtocol, get_clock
from core.config import EngineConfig
from detection.pricing import Pricer
from detection.snapshots import AddressSet, SnapshotHolder, TokenRegistry, WatchlistSnapshot
from notifications.dispatcher import AlertDispatcher
from notifications.slack import SlackWebhookNotifier
from orchestrator.models import CycleResult, LoopStatus
from orchestrator.scanner import ChainScanLoop
from storage.database import session_scope
from storage.repositories.exceptions import RepositoryException
from storage.repositories.watchlist import WatchlistRepository


# ============================================================
# LOGGING SETUP
# ============================================================

class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def __init__(self, correlation_id: Optional[str] = None):
        super().__init__()
        self._correlation_id = correlation_id or ""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": self._correlation_id,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(correlation_id)
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # aiohttp access noise
    logging.getLogger("aiohttp").setLevel(max(log_level, logging.WARNING))

    return logging.getLogger("orchestrator")


logger = logging.getLogger(__name__)


# ============================================================
# SNAPSHOT BUILDING
# ============================================================

def build_snapshot(
    session_factory: sessionmaker,
    clock: Optional[ClockProtocol] = None,
) -> WatchlistSnapshot:
    """
    Build a fresh watchlist snapshot from the store.

    Addresses are stored per chain family, so one query per family
    covers every chain in it.
    """
    clock = clock or get_clock()
    entries = []
    with session_scope(session_factory) as session:
        repo = WatchlistRepository(session)
        tokens = repo.list_tracked_tokens()
        for family in ChainFamily:
            chain = next(c for c in Chain if c.family == family)
            entries.extend((chain, address, account_id) for address, account_id in repo.list_tracked_addresses(chain))

    return WatchlistSnapshot(
        tokens=TokenRegistry(tokens),
        addresses=AddressSet(entries),
        built_at=clock.now(),
    )


# ============================================================
# SCAN ORCHESTRATOR
# ============================================================

class ScanOrchestrator:
    """
    Runs every chain's scan loop and the snapshot refresher.

    Loops are independent: a halted chain never blocks another.
    """

    def __init__(
        self,
        config: EngineConfig,
        registry: AdapterRegistry,
        session_factory: sessionmaker,
        dispatcher: Optional[AlertDispatcher] = None,
        notifier: Optional[SlackWebhookNotifier] = None,
        holder: Optional[SnapshotHolder] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Engine configuration
            registry: One adapter per chain to scan
            session_factory: Factory for persistence sessions
            dispatcher: Alert delivery; alerts are only logged when None
            notifier: Notifier owned by the orchestrator, closed on close()
            holder: Snapshot holder shared by all loops
            clock: Time source
        """
        self._config = config
        self._registry = registry
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._holder = holder or SnapshotHolder()
        self._clock = clock or get_clock()

        pricer = Pricer(config.max_price_age_seconds, clock=self._clock)
        self._loops: Dict[str, ChainScanLoop] = {}
        for chain in registry.chains():
            settings = config.chains[chain.value]
            self._loops[chain.value] = ChainScanLoop(
                adapter=registry.get(chain),
                settings=settings,
                holder=self._holder,
                session_factory=session_factory,
                pricer=pricer,
                dispatcher=dispatcher,
                clock=self._clock,
            )

        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._started_at: Optional[datetime] = None

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def loops(self) -> Dict[str, ChainScanLoop]:
        return dict(self._loops)

    @property
    def holder(self) -> SnapshotHolder:
        return self._holder

    @property
    def is_running(self) -> bool:
        return bool(self._tasks) and not self._stop_event.is_set()

    # --------------------------------------------------------
    # Snapshot
    # --------------------------------------------------------

    def refresh_snapshot(self) -> bool:
        """
        Rebuild and swap in the watchlist snapshot.

        On failure the previous snapshot stays installed.
        """
        try:
            snapshot = build_snapshot(self._session_factory, self._clock)
        except RepositoryException as e:
            logger.error(f"Snapshot refresh failed, keeping v{self._holder.version}: {e}")
            return False
        self._holder.swap(snapshot)
        return True

    async def _refresh_loop(self) -> None:
        interval = self._config.snapshot_refresh_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.refresh_snapshot()

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def run_once(self) -> Dict[str, CycleResult]:
        """Refresh the snapshot and run a single cycle on every chain."""
        self.refresh_snapshot()
        results: Dict[str, CycleResult] = {}
        outcomes = await asyncio.gather(
            *(loop.run_cycle() for loop in self._loops.values()),
            return_exceptions=True,
        )
        for chain, outcome in zip(self._loops, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[{chain}] Cycle failed: {outcome}")
                result = CycleResult(chain=chain, started_at=self._clock.now(), completed_at=self._clock.now())
                result.error = str(outcome)
                results[chain] = result
            else:
                results[chain] = outcome
        return results

    async def run(self) -> None:
        """Run all loops until stop() is called or a signal arrives."""
        if not self._loops:
            logger.warning("No chains configured; nothing to scan")
            return

        self._started_at = self._clock.now()
        self._stop_event.clear()
        self.refresh_snapshot()
        self._install_signal_handlers()

        logger.info(f"Scanning {', '.join(self._loops)}")
        self._tasks = [
            asyncio.create_task(loop.run(self._stop_event), name=f"scan-{chain}")
            for chain, loop in self._loops.items()
        ]
        self._tasks.append(asyncio.create_task(self._refresh_loop(), name="snapshot-refresh"))

        try:
            await asyncio.gather(*self._tasks)
        finally:
            self._restore_signal_handlers()
            self._tasks = []

    async def stop(self) -> None:
        """Signal every loop to finish its current cycle and exit."""
        if not self._stop_event.is_set():
            logger.info("Stopping scan loops")
        self._stop_event.set()

    async def close(self) -> None:
        """Release adapter and notifier sessions."""
        await self._registry.close_all()
        if self._notifier is not None:
            await self._notifier.close()

    # --------------------------------------------------------
    # Signals
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(self._async_signal_handler(s)))
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform / not the main thread
                pass

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    async def _async_signal_handler(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}")
        await self.stop()

    # --------------------------------------------------------
    # Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get orchestrator status."""
        return {
            "running": self.is_running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "snapshot_version": self._holder.version,
            "snapshot_built_at": self._holder.current.built_at.isoformat(),
            "chains": {
                chain: {
                    "status": loop.status.value,
                    "adapter": loop.adapter.name,
                    "health": loop.adapter.get_health().to_dict(),
                    "cycles": loop.cycles,
                    "last_cycle": loop.last_result.to_dict() if loop.last_result else None,
                }
                for chain, loop in self._loops.items()
            },
            "halted": [c for c, loop in self._loops.items() if loop.status == LoopStatus.HALTED],
        }


# ============================================================
# FACTORY
# ============================================================

def create_orchestrator(
    config: EngineConfig,
    session_factory: sessionmaker,
) -> "ScanOrchestrator":
    """
    Create an orchestrator with adapters and Slack delivery built from config.
    """
    registry = AdapterRegistry.from_settings(
        config.chains,
        timeout=config.request_timeout_seconds,
        retry_policy=config.retry,
        max_concurrency=config.fetch_concurrency,
    )
    notifier = SlackWebhookNotifier(
        default_webhook_url=config.slack_webhook_url,
        timeout=config.request_timeout_seconds,
    )
    dispatcher = AlertDispatcher(notifier, session_factory)
    return ScanOrchestrator(config, registry, session_factory, dispatcher=dispatcher, notifier=notifier)


__all__ = [
    "JsonFormatter",
    "ScanOrchestrator",
    "build_snapshot",
    "create_orchestrator",
    "setup_logging",
]
