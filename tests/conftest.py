"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
SQLite in-memory persistence and a seeded watchlist shared by the
storage, notification and orchestrator tests.

============================================================
"""

from decimal import Decimal

import pytest

from chain_adapters.models import Chain
from core.clock import MockClock
from storage.database import create_database_engine, get_session_factory, init_database
from storage.repositories.watchlist import WatchlistRepository
from tests.factories import EVM_WALLET, NOW, TRON_WALLET, USDT_ETH, USDT_TRON


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Deterministic clock fixed at NOW."""
    return MockClock(NOW)


@pytest.fixture
def engine():
    """Fresh in-memory database with all tables."""
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seeded(session):
    """
    One account with a $100 threshold watching a Tron and an EVM wallet,
    and USDT (6 decimals, $1.00) tracked on Tron and Ethereum.
    """
    repo = WatchlistRepository(session)
    account = repo.add_account(
        "Acme Ltd",
        alert_threshold=Decimal("100"),
        alert_channel="https://hooks.slack.com/services/T000/B000/acme",
        account_manager="J. Doe",
    )
    token = repo.add_token(
        "USDT",
        decimals=6,
        contracts={Chain.TRON: USDT_TRON, Chain.ETHEREUM: USDT_ETH},
        usd_price=Decimal("1.00"),
        price_updated_at=NOW,
    )
    repo.watch_address(account.id, Chain.TRON, TRON_WALLET, label="hot wallet")
    repo.watch_address(account.id, Chain.ETHEREUM, EVM_WALLET)
    return {"account_id": account.id, "token_id": token.id}
