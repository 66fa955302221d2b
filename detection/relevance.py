"""
Relevance Filter.

A transfer is relevant when its contract is a tracked token on that chain
and at least one side is a watched wallet. When both sides are watched
(an internal transfer) the receiving side wins and the transfer is
reported once as INCOMING to the receiver's accounts.
"""

import logging
from typing import Iterable

from chain_adapters.models import RawTransfer
from detection.models import Direction, RelevantTransfer
from detection.snapshots import WatchlistSnapshot


logger = logging.getLogger(__name__)


class RelevanceFilter:
    """Matches raw transfers against one watchlist snapshot."""
    
    def __init__(self, snapshot: WatchlistSnapshot) -> None:
        self._snapshot = snapshot
    
    def is_relevant(self, transfer: RawTransfer) -> bool:
        if transfer.address_fallback:
            return False
        if self._snapshot.tokens.lookup(transfer.chain, transfer.contract_address) is None:
            return False
        addresses = self._snapshot.addresses
        return (
            addresses.contains(transfer.chain, transfer.to_address)
            or addresses.contains(transfer.chain, transfer.from_address)
        )
    
    def match(self, transfer: RawTransfer) -> list[RelevantTransfer]:
        """
        Attach token metadata and direction; one result per watching account.
        
        Returns an empty list for irrelevant transfers.
        """
        if transfer.address_fallback:
            logger.debug(f"Rejecting {transfer.tx_id}: address could not be canonicalized")
            return []
        
        token = self._snapshot.tokens.lookup(transfer.chain, transfer.contract_address)
        if token is None:
            return []
        
        addresses = self._snapshot.addresses
        accounts = addresses.accounts_for(transfer.chain, transfer.to_address)
        if accounts:
            direction = Direction.INCOMING
            wallet = transfer.to_address
        else:
            accounts = addresses.accounts_for(transfer.chain, transfer.from_address)
            direction = Direction.OUTGOING
            wallet = transfer.from_address
        
        return [
            RelevantTransfer(
                transfer=transfer,
                token=token,
                direction=direction,
                account_id=account_id,
                wallet_address=wallet,
            )
            for account_id in accounts
        ]
    
    def filter(self, transfers: Iterable[RawTransfer]) -> list[RelevantTransfer]:
        relevant: list[RelevantTransfer] = []
        for transfer in transfers:
            relevant.extend(self.match(transfer))
        return relevant
