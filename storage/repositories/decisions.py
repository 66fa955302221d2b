"""
Alert Decision Repository.

============================================================
PURPOSE
============================================================
Write-once store of alert decisions keyed by (chain, tx_id, account_id).

record_decision() is an atomic conditional insert: it relies on the
unique key, so two writers racing on the same key end with exactly one
row and exactly one of them told "created". Each record is committed
on its own, before any alert for it leaves the process.

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.scanning import AlertDecision
from storage.repositories.base import BaseRepository


class AlertDecisionRepository(BaseRepository[AlertDecision]):
    """Repository for AlertDecision records."""
    
    def __init__(self, session: Session) -> None:
        super().__init__(session, AlertDecision, "AlertDecisionRepository")
    
    def get_decision(self, chain: str, tx_id: str, account_id: int) -> Optional[AlertDecision]:
        stmt = select(AlertDecision).where(
            AlertDecision.chain == chain,
            AlertDecision.tx_id == tx_id,
            AlertDecision.account_id == account_id,
        )
        return self._execute_scalar(stmt, "get_decision")
    
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
        """
        Insert a decision if none exists for the key.
        
        Returns:
            True if this call created the record, False if it already existed
            
        Raises:
            RepositoryException: On any other database failure
        """
        record = AlertDecision(
            chain=chain,
            tx_id=tx_id,
            account_id=account_id,
            fired=fired,
            reason=reason,
            usd_value=usd_value,
            token_symbol=token_symbol,
            direction=direction,
            decided_at=decided_at or datetime.now(timezone.utc),
        )
        key = {"chain": chain, "tx_id": tx_id, "account_id": account_id}
        
        try:
            self._session.add(record)
            self._session.commit()
        except SQLAlchemyIntegrityError as e:
            self._session.rollback()
            if self.get_decision(chain, tx_id, account_id) is not None:
                self._logger.debug(f"Decision already recorded for {key}")
                return False
            self._handle_db_error(e, "record_decision", key)
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "record_decision", key)
        
        self._logger.debug(f"Recorded decision {key} fired={fired} reason={reason}")
        return True
    
    def list_for_transaction(self, chain: str, tx_id: str) -> List[AlertDecision]:
        stmt = (
            select(AlertDecision)
            .where(AlertDecision.chain == chain, AlertDecision.tx_id == tx_id)
            .order_by(AlertDecision.account_id)
        )
        return self._execute_query(stmt, "list_for_transaction")
    
    def count(self, chain: Optional[str] = None, fired: Optional[bool] = None) -> int:
        stmt = select(func.count()).select_from(AlertDecision)
        if chain is not None:
            stmt = stmt.where(AlertDecision.chain == chain)
        if fired is not None:
            stmt = stmt.where(AlertDecision.fired.is_(fired))
        return self._execute_scalar(stmt, "count") or 0
