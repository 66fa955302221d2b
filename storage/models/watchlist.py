"""
Watchlist Domain ORM Models.

============================================================
PURPOSE
============================================================
What the engine watches: accounts (companies) with their alert
settings, tracked tokens with per-chain contracts and USD prices, and
the wallet addresses each account follows.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Stage: CONFIGURATION
- Mutability: MUTABLE (maintained by onboarding and price feeds)
- Consumers: Snapshot refresh, threshold evaluator, alert dispatcher

============================================================
MODELS
============================================================
- Account: Company being alerted, threshold and channel
- Token: Tracked token, decimals and current USD price
- TokenContract: Token contract address on one chain
- WatchedAddress: Wallet address within a chain family
- AccountAddress: Which account watches which address

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storage.models.base import Base, ExactDecimal, TimestampMixin


class Account(Base, TimestampMixin):
    """
    A company whose wallets are watched.
    
    alert_threshold is compared against each transfer's USD value at
    evaluation time; NULL or alerts_enabled=false means no alerts.
    """
    
    __tablename__ = "accounts"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Company name"
    )
    
    alert_threshold: Mapped[Optional[Decimal]] = mapped_column(
        ExactDecimal(),
        nullable=True,
        comment="Minimum USD value that fires an alert"
    )
    
    alert_channel: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Notification channel id for this account"
    )
    
    alerts_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
        comment="Master switch for this account's alerts"
    )
    
    account_manager: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Person responsible for the account"
    )
    
    addresses: Mapped[List["AccountAddress"]] = relationship(back_populates="account")
    
    def __repr__(self) -> str:
        return f"<Account(id={self.id}, name={self.name!r}, threshold={self.alert_threshold})>"


class Token(Base, TimestampMixin):
    """A tracked token and its latest USD price."""
    
    __tablename__ = "tracked_tokens"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    
    symbol: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Token symbol, e.g. USDT"
    )
    
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    
    decimals: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Decimal exponent of the smallest unit"
    )
    
    usd_price: Mapped[Optional[Decimal]] = mapped_column(
        ExactDecimal(),
        nullable=True,
        comment="Latest USD price from the price feed"
    )
    
    price_updated_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
        comment="When usd_price was last refreshed"
    )
    
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    
    contracts: Mapped[List["TokenContract"]] = relationship(
        back_populates="token",
        cascade="all, delete-orphan",
    )
    
    def __repr__(self) -> str:
        return f"<Token(symbol={self.symbol!r}, decimals={self.decimals}, usd_price={self.usd_price})>"


class TokenContract(Base):
    """Contract address of a token on one chain (at most one per chain)."""
    
    __tablename__ = "token_contracts"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    
    token_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tracked_tokens.id", ondelete="CASCADE"),
        nullable=False,
    )
    
    chain: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Chain name, e.g. tron, ethereum"
    )
    
    address: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Contract address in canonical display encoding, or 'native'"
    )
    
    token: Mapped["Token"] = relationship(back_populates="contracts")
    
    __table_args__ = (
        UniqueConstraint("token_id", "chain", name="uq_token_contract_chain"),
        UniqueConstraint("chain", "address", name="uq_token_contract_address"),
    )


class WatchedAddress(Base, TimestampMixin):
    """A wallet address, unique within its chain family (evm or tron)."""
    
    __tablename__ = "watched_addresses"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    
    address: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Canonical address (base58 for Tron, lowercase hex for EVM)"
    )
    
    chain_family: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="evm or tron"
    )
    
    accounts: Mapped[List["AccountAddress"]] = relationship(back_populates="address")
    
    __table_args__ = (
        UniqueConstraint("address", "chain_family", name="uq_watched_address"),
        Index("idx_watched_address_family", "chain_family"),
    )


class AccountAddress(Base, TimestampMixin):
    """Link between an account and a watched address."""
    
    __tablename__ = "account_addresses"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    
    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    
    address_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("watched_addresses.id", ondelete="CASCADE"),
        nullable=False,
    )
    
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    
    label: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Account name shown for this wallet in alerts"
    )
    
    account: Mapped["Account"] = relationship(back_populates="addresses")
    address: Mapped["WatchedAddress"] = relationship(back_populates="accounts")
    
    __table_args__ = (
        UniqueConstraint("account_id", "address_id", name="uq_account_address"),
    )
