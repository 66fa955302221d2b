"""
Scan Watermark Repository.

One row per chain holding the last fully processed position. Written
only after a batch has been evaluated; never moves backwards within the
same unit.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storage.models.scanning import ScanWatermark
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import ValidationError


class WatermarkRepository(BaseRepository[ScanWatermark]):
    """Repository for ScanWatermark rows."""
    
    def __init__(self, session: Session) -> None:
        super().__init__(session, ScanWatermark, "WatermarkRepository")
    
    def get_watermark(self, chain: str) -> Optional[ScanWatermark]:
        stmt = select(ScanWatermark).where(ScanWatermark.chain == chain)
        return self._execute_scalar(stmt, "get_watermark")
    
    def save_watermark(self, chain: str, unit: str, position: int) -> ScanWatermark:
        """
        Persist a new watermark and commit.
        
        A change of unit (the chain switched retrieval strategy) replaces
        the row; otherwise the position may only move forward.
        
        Raises:
            ValidationError: If the position would move backwards
            RepositoryException: On database failure
        """
        watermark = self.get_watermark(chain)
        
        if watermark is None:
            watermark = self._add(ScanWatermark(chain=chain, unit=unit, position=position))
        elif watermark.unit != unit:
            self._logger.warning(
                f"Watermark unit for {chain} changed {watermark.unit} -> {unit}; resetting to {position}"
            )
            watermark.unit = unit
            watermark.position = position
        elif position < watermark.position:
            raise ValidationError(
                self._repository_name,
                "save_watermark",
                "position",
                f"{chain} watermark cannot move back from {watermark.position} to {position}",
            )
        else:
            watermark.position = position
        
        self._commit("save_watermark")
        return watermark
