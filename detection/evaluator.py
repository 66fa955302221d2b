"""
Threshold Evaluator / Alert Decision.

============================================================
STATE MACHINE (per (chain, tx_id, account_id))
============================================================
    Unseen ──evaluate──▶ Evaluated{fired: false}
           └─evaluate──▶ Evaluated{fired: true}  ──▶ AlertEvent

Evaluated is terminal. A second evaluation of the same key (re-delivered
page, overlapping window, restart) is a no-op.

============================================================
DURABILITY
============================================================
The decision record is written before the AlertEvent is returned, and the
write is an atomic conditional insert: if another writer got there first
the insert reports "not created" and no event is emitted. Persistence
errors propagate to the caller.

============================================================
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol

from core.clock import ClockProtocol, get_clock
from detection.models import AlertEvent, DecisionReason, EvaluatedTransfer


logger = logging.getLogger(__name__)


class DecisionStore(Protocol):
    """Durable, write-once alert decision records."""
    
    def get_decision(self, chain: str, tx_id: str, account_id: int) -> Optional[Any]:
        ...
    
    def record_decision(
        self,
        chain: str,
        tx_id: str,
        account_id: int,
        fired: bool,
        reason: str,
        usd_value: Optional[Decimal] = None,
        token_symbol: Optional[str] = None,
        direction: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ) -> bool:
        """Insert the record if absent. Returns False if it already existed."""
        ...


class ThresholdSource(Protocol):
    """Current per-account alert thresholds."""
    
    def get_account_threshold(self, account_id: int) -> Optional[Decimal]:
        ...


@dataclass
class EvaluationStats:
    evaluated: int = 0
    fired: int = 0
    below_threshold: int = 0
    unpriced: int = 0
    no_threshold: int = 0
    duplicates: int = 0


class ThresholdEvaluator:
    """Decides once per key whether a transfer crosses its account threshold."""
    
    def __init__(
        self,
        decisions: DecisionStore,
        thresholds: ThresholdSource,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._decisions = decisions
        self._thresholds = thresholds
        self._clock = clock or get_clock()
        self.stats = EvaluationStats()
    
    def evaluate(self, evaluated: EvaluatedTransfer) -> Optional[AlertEvent]:
        chain, tx_id, account_id = evaluated.decision_key
        
        if self._decisions.get_decision(chain, tx_id, account_id) is not None:
            self.stats.duplicates += 1
            return None
        
        decided_at = self._clock.now()
        threshold: Optional[Decimal] = None
        if evaluated.unpriced:
            fired, reason = False, DecisionReason.UNPRICED
        else:
            # Read per evaluation: thresholds may change between cycles
            threshold = self._thresholds.get_account_threshold(account_id)
            if threshold is None:
                fired, reason = False, DecisionReason.NO_THRESHOLD
            elif evaluated.usd_value >= threshold:
                fired, reason = True, DecisionReason.ABOVE_THRESHOLD
            else:
                fired, reason = False, DecisionReason.BELOW_THRESHOLD
        
        created = self._decisions.record_decision(
            chain,
            tx_id,
            account_id,
            fired=fired,
            reason=reason.value,
            usd_value=evaluated.usd_value,
            token_symbol=evaluated.token.symbol,
            direction=evaluated.direction.value,
            decided_at=decided_at,
        )
        if not created:
            self.stats.duplicates += 1
            return None
        
        self.stats.evaluated += 1
        if reason == DecisionReason.UNPRICED:
            self.stats.unpriced += 1
        elif reason == DecisionReason.NO_THRESHOLD:
            self.stats.no_threshold += 1
            logger.debug(f"Account {account_id} has no alert threshold; {chain} tx {tx_id} not alerted")
        elif not fired:
            self.stats.below_threshold += 1
        
        if not fired:
            return None
        
        self.stats.fired += 1
        logger.info(
            f"Alert: account {account_id} {evaluated.direction.value} "
            f"{evaluated.quantity} {evaluated.token.symbol} (${evaluated.usd_value}) "
            f"on {chain} tx {tx_id} >= ${threshold}"
        )
        return AlertEvent(
            account_id=account_id,
            transfer=evaluated,
            usd_value=evaluated.usd_value,
            threshold=threshold,
            decided_at=decided_at,
        )
