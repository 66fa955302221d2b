"""
Watchlist Repository.

============================================================
PURPOSE
============================================================
Read side for the snapshot refresh and the evaluator:
- list_tracked_tokens(): active tokens with contracts and prices
- list_tracked_addresses(chain): (address, account_id) pairs for the
  chain's family
- get_account_threshold / get_account_channel: current account settings

Write side for onboarding and price updates (accounts, tokens,
addresses).

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from chain_adapters.addresses import to_canonical_tron
from chain_adapters.models import Chain, ChainFamily
from detection.models import TrackedToken
from storage.models.watchlist import (
    Account,
    AccountAddress,
    Token,
    TokenContract,
    WatchedAddress,
)
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import ValidationError


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def canonical_address(chain: Chain, address: str) -> str:
    """Storage form of an address: base58 for Tron, lowercase hex for EVM."""
    value = address.strip()
    if chain.family == ChainFamily.TRON:
        return to_canonical_tron(value)[0]
    return value.lower()


class WatchlistRepository(BaseRepository[Account]):
    """Repository for accounts, tracked tokens and watched addresses."""
    
    def __init__(self, session: Session) -> None:
        super().__init__(session, Account, "WatchlistRepository")
    
    # =========================================================
    # READ
    # =========================================================
    
    def list_tracked_tokens(self) -> list[TrackedToken]:
        """All active tokens with their per-chain contracts."""
        stmt = (
            select(Token)
            .where(Token.is_active.is_(True))
            .options(selectinload(Token.contracts))
            .order_by(Token.id)
        )
        tokens = []
        for row in self._execute_query(stmt, "list_tracked_tokens"):
            contracts: dict[Chain, str] = {}
            for contract in row.contracts:
                try:
                    contracts[Chain.from_value(contract.chain)] = contract.address
                except ValueError:
                    self._logger.warning(
                        f"Skipping {row.symbol} contract on unsupported chain '{contract.chain}'"
                    )
            tokens.append(TrackedToken(
                token_id=row.id,
                symbol=row.symbol,
                decimals=row.decimals,
                usd_price=row.usd_price,
                contracts_by_chain=contracts,
                price_updated_at=_as_utc(row.price_updated_at),
            ))
        return tokens
    
    def list_tracked_addresses(self, chain: Chain) -> list[Tuple[str, int]]:
        """(address, account_id) for every active watch in the chain's family."""
        stmt = (
            select(WatchedAddress.address, AccountAddress.account_id)
            .join(AccountAddress, AccountAddress.address_id == WatchedAddress.id)
            .where(
                WatchedAddress.chain_family == chain.family.value,
                AccountAddress.is_active.is_(True),
            )
            .order_by(WatchedAddress.id, AccountAddress.account_id)
        )
        return [(address, account_id) for address, account_id in self._execute_rows(stmt, "list_tracked_addresses")]
    
    def get_account(self, account_id: int) -> Optional[Account]:
        try:
            return self._session.get(Account, account_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_account", {"account_id": account_id})
            raise
    
    def get_account_threshold(self, account_id: int) -> Optional[Decimal]:
        """Current USD threshold, or None when the account does not alert."""
        stmt = select(Account.alert_threshold).where(
            Account.id == account_id,
            Account.alerts_enabled.is_(True),
        )
        threshold = self._execute_scalar(stmt, "get_account_threshold")
        return Decimal(threshold) if threshold is not None else None
    
    def get_account_channel(self, account_id: int) -> Optional[str]:
        stmt = select(Account.alert_channel).where(Account.id == account_id)
        return self._execute_scalar(stmt, "get_account_channel")
    
    def get_address_label(self, account_id: int, chain: Chain, address: str) -> Optional[str]:
        """Label the account gave this wallet, if any."""
        stmt = (
            select(AccountAddress.label)
            .join(WatchedAddress, AccountAddress.address_id == WatchedAddress.id)
            .where(
                AccountAddress.account_id == account_id,
                WatchedAddress.chain_family == chain.family.value,
                WatchedAddress.address == canonical_address(chain, address),
            )
        )
        return self._execute_scalar(stmt, "get_address_label")
    
    # =========================================================
    # WRITE
    # =========================================================
    
    def add_account(
        self,
        name: str,
        alert_threshold: Optional[Decimal] = None,
        alert_channel: Optional[str] = None,
        account_manager: Optional[str] = None,
    ) -> Account:
        account = self._add(Account(
            name=name,
            alert_threshold=alert_threshold,
            alert_channel=alert_channel,
            account_manager=account_manager,
        ))
        self._commit("add_account")
        self._logger.info(f"Added account {name} (id={account.id}, threshold={alert_threshold})")
        return account
    
    def set_account_threshold(self, account_id: int, threshold: Optional[Decimal]) -> None:
        account = self.get_account(account_id)
        if account is None:
            raise ValidationError(self._repository_name, "set_account_threshold", "account_id", "unknown account")
        account.alert_threshold = threshold
        self._commit("set_account_threshold")
    
    def add_token(
        self,
        symbol: str,
        decimals: int,
        contracts: Mapping[Chain, str],
        usd_price: Optional[Decimal] = None,
        price_updated_at: Optional[datetime] = None,
        name: Optional[str] = None,
    ) -> Token:
        if decimals < 0:
            raise ValidationError(self._repository_name, "add_token", "decimals", "must be >= 0")
        token = Token(
            symbol=symbol,
            name=name,
            decimals=decimals,
            usd_price=usd_price,
            price_updated_at=price_updated_at,
        )
        token.contracts = [
            TokenContract(chain=chain.value, address=canonical_address(chain, address))
            for chain, address in contracts.items()
        ]
        self._add(token)
        self._commit("add_token")
        self._logger.info(f"Added token {symbol} on {', '.join(c.value for c in contracts)}")
        return token
    
    def update_token_price(
        self,
        symbol: str,
        usd_price: Decimal,
        updated_at: Optional[datetime] = None,
    ) -> None:
        stmt = select(Token).where(Token.symbol == symbol)
        token = self._execute_scalar(stmt, "update_token_price")
        if token is None:
            raise ValidationError(self._repository_name, "update_token_price", "symbol", f"unknown token {symbol}")
        token.usd_price = usd_price
        token.price_updated_at = updated_at or datetime.now(timezone.utc)
        self._commit("update_token_price")
    
    def watch_address(
        self,
        account_id: int,
        chain: Chain,
        address: str,
        label: Optional[str] = None,
    ) -> AccountAddress:
        """Start watching an address for an account (idempotent)."""
        stored = canonical_address(chain, address)
        family = chain.family.value
        
        watched = self._execute_scalar(
            select(WatchedAddress).where(
                WatchedAddress.address == stored,
                WatchedAddress.chain_family == family,
            ),
            "watch_address",
        )
        if watched is None:
            watched = self._add(WatchedAddress(address=stored, chain_family=family))
        
        link = self._execute_scalar(
            select(AccountAddress).where(
                AccountAddress.account_id == account_id,
                AccountAddress.address_id == watched.id,
            ),
            "watch_address",
        )
        if link is None:
            link = self._add(AccountAddress(account_id=account_id, address_id=watched.id, label=label))
        else:
            link.is_active = True
            if label is not None:
                link.label = label
        
        self._commit("watch_address")
        return link
    
    def unwatch_address(self, account_id: int, chain: Chain, address: str) -> bool:
        stmt = (
            select(AccountAddress)
            .join(WatchedAddress, AccountAddress.address_id == WatchedAddress.id)
            .where(
                AccountAddress.account_id == account_id,
                WatchedAddress.chain_family == chain.family.value,
                WatchedAddress.address == canonical_address(chain, address),
            )
        )
        link = self._execute_scalar(stmt, "unwatch_address")
        if link is None:
            return False
        link.is_active = False
        self._commit("unwatch_address")
        return True
