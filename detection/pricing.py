"""
Amount Normalizer & Pricer.

quantity  = raw_amount / 10**decimals
usd_value = quantity * usd_price

All arithmetic is Decimal under a local context wide enough for any
256-bit raw amount, so the division is exact and reversible. A missing,
zero or stale price leaves the transfer unpriced (usd_value None).
"""

import logging
from datetime import timedelta
from decimal import Decimal, localcontext
from typing import Optional

from core.clock import ClockProtocol, get_clock
from detection.models import EvaluatedTransfer, RelevantTransfer, TrackedToken


logger = logging.getLogger(__name__)

# 2**256 has 78 digits; leave room for 18+ fractional digits of price
DECIMAL_PRECISION = 120


def to_quantity(raw_amount: int, decimals: int) -> Decimal:
    """Scale a smallest-unit integer to a token quantity, exactly."""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return Decimal(raw_amount).scaleb(-decimals)


def to_raw_amount(quantity: Decimal, decimals: int) -> Decimal:
    """Inverse of to_quantity."""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return quantity.scaleb(decimals)


class Pricer:
    """Normalizes amounts and prices them in USD."""
    
    def __init__(
        self,
        max_price_age_seconds: int = 300,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._max_price_age = timedelta(seconds=max_price_age_seconds)
        self._clock = clock or get_clock()
    
    def usable_price(self, token: TrackedToken) -> Optional[Decimal]:
        """The token's price, or None when absent, zero or stale."""
        price = token.usd_price
        if price is None or price <= 0:
            return None
        if token.price_updated_at is not None:
            if self._clock.now() - token.price_updated_at > self._max_price_age:
                return None
        return price
    
    def price(self, relevant: RelevantTransfer) -> EvaluatedTransfer:
        token = relevant.token
        quantity = to_quantity(relevant.transfer.raw_amount, token.decimals)
        
        price = self.usable_price(token)
        usd_value: Optional[Decimal] = None
        if price is None:
            logger.warning(
                f"No usable USD price for {token.symbol} "
                f"(price={token.usd_price}, updated={token.price_updated_at}); "
                f"{relevant.transfer.chain.value} tx {relevant.transfer.tx_id} left unpriced"
            )
        else:
            with localcontext() as ctx:
                ctx.prec = DECIMAL_PRECISION
                usd_value = quantity * price
        
        return EvaluatedTransfer(
            transfer=relevant.transfer,
            token=token,
            direction=relevant.direction,
            account_id=relevant.account_id,
            wallet_address=relevant.wallet_address,
            quantity=quantity,
            usd_value=usd_value,
        )
