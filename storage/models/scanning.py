"""
Scanning Domain ORM Models.

============================================================
PURPOSE
============================================================
Durable state of the detection engine itself.

============================================================
DATA LIFECYCLE ROLE
============================================================
- AlertDecision: IMMUTABLE, write-once per (chain, tx_id, account_id);
  never deleted by the engine
- ScanWatermark: MUTABLE, one row per chain, only moves forward

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, ExactDecimal


class AlertDecision(Base):
    """
    Record that a transaction has been evaluated for an account.
    
    The unique key is what makes alerting idempotent: a second insert for
    the same key fails and the evaluator treats the transfer as seen.
    """
    
    __tablename__ = "alert_decisions"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    
    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    
    tx_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Transaction hash / id"
    )
    
    account_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Account the decision applies to (kept after account removal)"
    )
    
    fired: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        comment="Whether an alert was emitted"
    )
    
    reason: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="above_threshold, below_threshold, unpriced or no_threshold"
    )
    
    usd_value: Mapped[Optional[Decimal]] = mapped_column(
        ExactDecimal(),
        nullable=True,
    )
    
    token_symbol: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    
    direction: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    
    decided_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )
    
    __table_args__ = (
        UniqueConstraint("chain", "tx_id", "account_id", name="uq_alert_decision_key"),
        Index("idx_alert_decision_account", "account_id"),
    )
    
    def __repr__(self) -> str:
        return (
            f"<AlertDecision(chain={self.chain}, tx_id={self.tx_id}, "
            f"account_id={self.account_id}, fired={self.fired})>"
        )


class ScanWatermark(Base):
    """Last fully processed position for one chain."""
    
    __tablename__ = "scan_watermarks"
    
    chain: Mapped[str] = mapped_column(String(32), primary_key=True)
    
    unit: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="height or timestamp_ms"
    )
    
    position: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Last processed block height or block timestamp (ms)"
    )
    
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    
    def __repr__(self) -> str:
        return f"<ScanWatermark(chain={self.chain}, {self.unit}={self.position})>"
