"""
Orchestrator - Chain Scan Loop.

============================================================
RESPONSIBILITY
============================================================
Drives one chain adapter on its own cadence.

Each cycle:
    read watermark -> fetch (watermark, watermark + batch] -> decode
    -> filter -> price -> evaluate (+ dispatch) -> commit watermark

============================================================
COMMIT POINTS
============================================================
- Decision records are written by the evaluator, one per key,
  before any alert for that key is dispatched.
- The watermark is written once per cycle, after every transfer of
  the batch has been evaluated. It advances to the last position
  through which every fetch unit succeeded.
- A failing range is retried on later cycles. Once the chain head
  has moved more than the look-back window past the point where it
  first failed, the range is abandoned with an ERROR log.
- Any persistence failure aborts the cycle and halts the loop until
  the store answers again; the next attempt restarts from the last
  persisted watermark.

============================================================
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from chain_adapters.base import BaseChainAdapter
from chain_adapters.exceptions import ChainAdapterError
from chain_adapters.models import FetchBatch, ScanRange
from core.clock import ClockProtocol, get_clock
from core.config import ChainSettings
from core.exceptions import PersistenceUnavailableError
from core.retry import RetryPolicy, RetryState
from detection.evaluator import ThresholdEvaluator
from detection.pricing import Pricer
from detection.relevance import RelevanceFilter
from detection.snapshots import SnapshotHolder, WatchlistSnapshot
from notifications.dispatcher import AlertDispatcher
from orchestrator.models import CycleResult, LoopStatus
from storage.database import session_scope
from storage.repositories.decisions import AlertDecisionRepository
from storage.repositories.exceptions import RepositoryException
from storage.repositories.watchlist import WatchlistRepository
from storage.repositories.watermarks import WatermarkRepository


logger = logging.getLogger(__name__)


DEFAULT_HALT_POLICY = RetryPolicy(max_attempts=1, base_delay_seconds=5.0, max_delay_seconds=300.0)


class ChainScanLoop:
    """
    Independent scan loop for one chain.

    The watchlist snapshot is read once at the start of each cycle, so a
    refresh swapped in mid-cycle takes effect on the next one.
    """

    def __init__(
        self,
        adapter: BaseChainAdapter,
        settings: ChainSettings,
        holder: SnapshotHolder,
        session_factory: sessionmaker,
        pricer: Pricer,
        dispatcher: Optional[AlertDispatcher] = None,
        halt_policy: RetryPolicy = DEFAULT_HALT_POLICY,
        clock: Optional[ClockProtocol] = None,
    ):
        self._adapter = adapter
        self._settings = settings
        self._holder = holder
        self._session_factory = session_factory
        self._pricer = pricer
        self._dispatcher = dispatcher
        self._halt_policy = halt_policy
        self._clock = clock or get_clock()

        self.status = LoopStatus.IDLE
        self.last_result: Optional[CycleResult] = None
        self.cycles = 0

        # Watermark and head at which the current failing range first failed
        self._stalled_at: Optional[int] = None
        self._stall_head: Optional[int] = None

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def chain(self) -> str:
        return self._adapter.chain.value

    @property
    def adapter(self) -> BaseChainAdapter:
        return self._adapter

    @property
    def settings(self) -> ChainSettings:
        return self._settings

    # --------------------------------------------------------
    # Cycle
    # --------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """
        Run one scan cycle.

        Raises:
            PersistenceUnavailableError: A commit point could not be written
        """
        result = CycleResult(chain=self.chain, started_at=self._clock.now())
        snapshot = self._holder.current
        requests_before = self._adapter.request_count
        self.cycles += 1

        try:
            try:
                head = await self._adapter.latest_position() - self._settings.confirmations
            except (ChainAdapterError, asyncio.TimeoutError) as e:
                logger.warning(f"[{self.chain}] Head lookup failed: {e}")
                result.failures.append(f"head: {e}")
                return result
            result.head = head

            watermark = self._read_watermark(head)
            result.watermark_before = watermark

            target = min(head, watermark + self._settings.batch_size)
            if target <= watermark:
                logger.debug(f"[{self.chain}] Up to date at {watermark} (head {head})")
                result.watermark_after = watermark
                return result

            scan_range = ScanRange(watermark, target, self._adapter.range_unit)
            result.range_start, result.range_end = scan_range.start, scan_range.end

            batch = await self._adapter.fetch(scan_range, snapshot.tokens.contracts_for(self._adapter.chain))
            result.fetched = len(batch.transfers)
            result.failures.extend(f"{o.unit}: {o.reason}" for o in batch.failures)

            await self._evaluate(batch, snapshot, result)

            new_position = self._next_watermark(batch, head, result)
            if new_position > watermark:
                self._save_watermark(new_position)
            result.watermark_after = max(watermark, new_position)
            return result
        finally:
            result.requests = self._adapter.request_count - requests_before
            result.completed_at = self._clock.now()
            self.last_result = result
            logger.info(result.summary())

    async def _evaluate(self, batch: FetchBatch, snapshot: WatchlistSnapshot, result: CycleResult) -> None:
        relevant = RelevanceFilter(snapshot).filter(batch.transfers)
        result.relevant = len(relevant)
        if not relevant:
            return

        try:
            with session_scope(self._session_factory) as session:
                evaluator = ThresholdEvaluator(
                    AlertDecisionRepository(session),
                    WatchlistRepository(session),
                    clock=self._clock,
                )
                for item in relevant:
                    event = evaluator.evaluate(self._pricer.price(item))
                    if event is None:
                        continue
                    result.alerts += 1
                    if self._dispatcher is not None and await self._dispatcher.dispatch(event):
                        result.delivered += 1
                result.decided = evaluator.stats.evaluated
        except RepositoryException as e:
            raise PersistenceUnavailableError(
                f"[{self.chain}] Decision record write failed: {e}",
                chain=self.chain,
                commit_point="decision",
                cause=e,
            ) from e

    # --------------------------------------------------------
    # Watermark
    # --------------------------------------------------------

    def _read_watermark(self, head: int) -> int:
        unit = self._adapter.range_unit.value
        try:
            with session_scope(self._session_factory) as session:
                row = WatermarkRepository(session).get_watermark(self.chain)
                if row is not None and row.unit == unit:
                    return row.position
        except RepositoryException as e:
            raise PersistenceUnavailableError(
                f"[{self.chain}] Watermark read failed: {e}",
                chain=self.chain,
                commit_point="watermark",
                cause=e,
            ) from e

        start = max(0, head - self._settings.initial_lookback)
        logger.info(f"[{self.chain}] No {unit} watermark; starting at {start} (head {head})")
        return start

    def _save_watermark(self, position: int) -> None:
        try:
            with session_scope(self._session_factory) as session:
                WatermarkRepository(session).save_watermark(
                    self.chain, self._adapter.range_unit.value, position
                )
        except RepositoryException as e:
            raise PersistenceUnavailableError(
                f"[{self.chain}] Watermark write failed: {e}",
                chain=self.chain,
                commit_point="watermark",
                cause=e,
            ) from e

    def _next_watermark(self, batch: FetchBatch, head: int, result: CycleResult) -> int:
        """Position to commit after this batch."""
        confirmed = batch.effective_confirmed
        if batch.fully_succeeded:
            self._stalled_at = self._stall_head = None
            return confirmed

        if confirmed > batch.scan_range.start or self._stalled_at != batch.scan_range.start:
            # New failure point: start measuring the look-back window from here
            self._stalled_at = confirmed
            self._stall_head = head
            logger.warning(
                f"[{self.chain}] Holding watermark at {confirmed}: "
                f"{len(batch.failures)} unit(s) failed in {batch.scan_range}"
            )
            return confirmed

        if head - self._stall_head > self._settings.lookback_window:
            logger.error(
                f"[{self.chain}] Abandoning {batch.scan_range} after retries across the "
                f"look-back window ({self._settings.lookback_window}); failed: "
                f"{', '.join(o.unit for o in batch.failures)}"
            )
            result.abandoned = True
            self._stalled_at = self._stall_head = None
            return batch.scan_range.end

        logger.warning(
            f"[{self.chain}] Range {batch.scan_range} still failing; "
            f"watermark held at {confirmed}"
        )
        return confirmed

    # --------------------------------------------------------
    # Loop
    # --------------------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run cycles on the chain's cadence until stop_event is set."""
        self.status = LoopStatus.RUNNING
        halt: Optional[RetryState] = None
        logger.info(
            f"[{self.chain}] Scan loop started ({self._adapter.name}, "
            f"every {self._settings.poll_interval_seconds}s, batch {self._settings.batch_size})"
        )

        while not stop_event.is_set():
            delay = self._settings.poll_interval_seconds
            try:
                result = await self.run_cycle()
                if halt is not None:
                    logger.info(f"[{self.chain}] Persistence recovered after {halt.attempts} failed cycle(s)")
                    halt = None
                    self.status = LoopStatus.RUNNING
                if result.advanced and result.range_end is not None and result.head is not None \
                        and result.range_end < result.head:
                    # Catching up: go again without waiting
                    delay = 0
            except PersistenceUnavailableError as e:
                if halt is None:
                    halt = self._halt_policy.start()
                halt.record_failure(str(e))
                self.status = LoopStatus.HALTED
                delay = self._halt_policy.delay_for(halt.attempts)
                logger.error(f"[{self.chain}] Halted: {e.message}; retrying in {delay:.0f}s")
            except Exception as e:
                logger.exception(f"[{self.chain}] Unexpected cycle failure: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self.status = LoopStatus.STOPPED
        logger.info(f"[{self.chain}] Scan loop stopped after {self.cycles} cycle(s)")
