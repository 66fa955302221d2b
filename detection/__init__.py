"""
Detection Package - From raw transfers to alert decisions.

Pipeline:
    RawTransfer
      -> RelevanceFilter   (tracked token, watched wallet, direction)
      -> Pricer            (Decimal quantity, USD value or unpriced)
      -> ThresholdEvaluator (write-once decision record, AlertEvent)

The Token Registry and Address Set are immutable snapshots held by a
SnapshotHolder and swapped atomically on refresh.
"""

from detection.evaluator import (
    DecisionStore,
    EvaluationStats,
    ThresholdEvaluator,
    ThresholdSource,
)
from detection.models import (
    AlertEvent,
    DecisionReason,
    Direction,
    EvaluatedTransfer,
    RelevantTransfer,
    TrackedToken,
)
from detection.pricing import Pricer, to_quantity, to_raw_amount
from detection.relevance import RelevanceFilter
from detection.snapshots import AddressSet, SnapshotHolder, TokenRegistry, WatchlistSnapshot


__all__ = [
    "AddressSet",
    "AlertEvent",
    "DecisionReason",
    "DecisionStore",
    "Direction",
    "EvaluatedTransfer",
    "EvaluationStats",
    "Pricer",
    "RelevanceFilter",
    "RelevantTransfer",
    "SnapshotHolder",
    "ThresholdEvaluator",
    "ThresholdSource",
    "TokenRegistry",
    "TrackedToken",
    "WatchlistSnapshot",
    "to_quantity",
    "to_raw_amount",
]
