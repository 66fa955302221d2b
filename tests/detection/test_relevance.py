"""
Watchlist Snapshot and Relevance Filter Tests.

============================================================
PURPOSE
============================================================
Tests for the token registry, the address set, snapshot swapping and
the relevance filter built on them.

TEST PRINCIPLES:
- Comparisons are case-insensitive and encoding-insensitive
- Untracked contracts never reach evaluation
- Deposit-priority direction tie-break

============================================================
"""

from decimal import Decimal

import pytest

from chain_adapters.addresses import tron_base58_to_hex
from chain_adapters.models import Chain, ChainFamily, RawTransfer
from detection.models import Direction, TrackedToken
from detection.relevance import RelevanceFilter
from detection.snapshots import AddressSet, SnapshotHolder, TokenRegistry, WatchlistSnapshot
from tests.factories import (
    EVM_SENDER,
    EVM_WALLET,
    TRON_OTHER,
    TRON_SENDER,
    TRON_WALLET,
    USDT_ETH,
    USDT_TRON,
)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def usdt():
    return TrackedToken(
        token_id=1,
        symbol="USDT",
        decimals=6,
        usd_price=Decimal("1"),
        contracts_by_chain={Chain.TRON: USDT_TRON, Chain.ETHEREUM: USDT_ETH},
    )


@pytest.fixture
def snapshot(usdt):
    return WatchlistSnapshot(
        tokens=TokenRegistry([usdt]),
        addresses=AddressSet([
            (Chain.TRON, TRON_WALLET, 10),
            (Chain.ETHEREUM, EVM_WALLET, 10),
            (Chain.ETHEREUM, EVM_WALLET, 11),
        ]),
    )


def _transfer(chain, contract, from_address, to_address, amount=1, fallback=False):
    return RawTransfer(
        chain=chain,
        tx_id="0x01",
        contract_address=contract,
        from_address=from_address,
        to_address=to_address,
        raw_amount=amount,
        address_fallback=fallback,
    )


# ============================================================
# TOKEN REGISTRY TESTS
# ============================================================

class TestTokenRegistry:
    """Tests for contract lookup."""

    def test_lookup_case_insensitive(self, usdt):
        """Test EVM contract lookup ignores case."""
        registry = TokenRegistry([usdt])
        assert registry.lookup(Chain.ETHEREUM, USDT_ETH.upper().replace("0X", "0x")) is usdt

    def test_lookup_tron_hex(self, usdt):
        """Test a Tron contract is found from its hex spelling."""
        registry = TokenRegistry([usdt])
        assert registry.lookup(Chain.TRON, tron_base58_to_hex(USDT_TRON)) is usdt

    def test_lookup_scoped_by_chain(self, usdt):
        """Test a contract is only tracked on the chain it was registered for."""
        registry = TokenRegistry([usdt])
        assert registry.lookup(Chain.POLYGON, USDT_ETH) is None

    def test_contracts_for_keeps_spelling(self, usdt):
        """Test contracts are handed to adapters as registered (URLs are case-sensitive)."""
        registry = TokenRegistry([usdt])
        assert registry.contracts_for(Chain.TRON) == (USDT_TRON,)
        assert registry.contracts_for(Chain.BSC) == ()

    def test_duplicate_contract_keeps_first(self, usdt):
        """Test a contract claimed by two tokens stays with the first."""
        clone = TrackedToken(2, "FAKE", 6, Decimal("1"), {Chain.ETHEREUM: USDT_ETH})
        registry = TokenRegistry([usdt, clone])
        assert registry.lookup(Chain.ETHEREUM, USDT_ETH) is usdt

    def test_decimals_validated(self):
        """Test decimals outside 0..255 are rejected."""
        with pytest.raises(ValueError):
            TrackedToken(3, "BAD", -1, None)


# ============================================================
# ADDRESS SET TESTS
# ============================================================

class TestAddressSet:
    """Tests for wallet membership."""

    def test_evm_family_shared(self):
        """Test EVM addresses are shared by every EVM chain."""
        addresses = AddressSet([(Chain.ETHEREUM, EVM_WALLET, 1)])
        assert addresses.contains(Chain.POLYGON, EVM_WALLET)
        assert not addresses.contains(Chain.TRON, EVM_WALLET)

    def test_case_insensitive(self):
        """Test a differently-cased spelling is a member."""
        addresses = AddressSet([(Chain.ETHEREUM, EVM_WALLET, 1)])
        assert addresses.contains(Chain.ETHEREUM, EVM_WALLET.upper().replace("0X", "0x"))

    def test_accounts_for(self):
        """Test all accounts watching an address are returned."""
        addresses = AddressSet([(Chain.ETHEREUM, EVM_WALLET, 2), (Chain.BSC, EVM_WALLET, 1)])
        assert addresses.accounts_for(Chain.ETHEREUM, EVM_WALLET) == (1, 2)
        assert addresses.size(ChainFamily.EVM) == 1


class TestSnapshotHolder:
    """Tests for atomic snapshot replacement."""

    def test_swap_replaces_whole_snapshot(self, snapshot):
        """Test readers holding the old snapshot are unaffected by a swap."""
        holder = SnapshotHolder(snapshot)
        taken = holder.current

        previous = holder.swap(WatchlistSnapshot())

        assert previous is snapshot
        assert taken.addresses.contains(Chain.TRON, TRON_WALLET)
        assert not holder.current.addresses.contains(Chain.TRON, TRON_WALLET)
        assert holder.version == 1


# ============================================================
# RELEVANCE FILTER TESTS
# ============================================================

class TestRelevanceFilter:
    """Tests for relevance and direction."""

    def test_incoming(self, snapshot):
        """Test a transfer to a tracked wallet is incoming."""
        matches = RelevanceFilter(snapshot).match(_transfer(Chain.TRON, USDT_TRON, TRON_SENDER, TRON_WALLET))

        assert len(matches) == 1
        assert matches[0].direction == Direction.INCOMING
        assert matches[0].account_id == 10
        assert matches[0].wallet_address == TRON_WALLET

    def test_outgoing(self, snapshot):
        """Test a transfer from a tracked wallet is outgoing."""
        matches = RelevanceFilter(snapshot).match(_transfer(Chain.TRON, USDT_TRON, TRON_WALLET, TRON_OTHER))

        assert [m.direction for m in matches] == [Direction.OUTGOING]

    def test_address_case_insensitive(self, snapshot):
        """Test 0xABC... matches a tracked 0xabc..."""
        shouty = "0x" + EVM_WALLET[2:].upper()
        transfer = _transfer(Chain.ETHEREUM, USDT_ETH.upper().replace("0X", "0x"), EVM_SENDER, shouty)

        assert RelevanceFilter(snapshot).is_relevant(transfer)

    def test_untracked_contract_dropped(self, snapshot):
        """Test a tracked wallet with an untracked contract is irrelevant."""
        transfer = _transfer(Chain.ETHEREUM, "0x" + "99" * 20, EVM_SENDER, EVM_WALLET)
        relevance = RelevanceFilter(snapshot)

        assert not relevance.is_relevant(transfer)
        assert relevance.match(transfer) == []

    def test_untracked_wallets_dropped(self, snapshot):
        """Test a tracked token between two untracked wallets is irrelevant."""
        transfer = _transfer(Chain.TRON, USDT_TRON, TRON_SENDER, TRON_OTHER)
        assert not RelevanceFilter(snapshot).is_relevant(transfer)

    def test_both_sides_tracked_is_incoming(self, snapshot):
        """Test an internal transfer between tracked wallets is a deposit for the receiver."""
        addresses = AddressSet([(Chain.TRON, TRON_WALLET, 10), (Chain.TRON, TRON_SENDER, 20)])
        internal = WatchlistSnapshot(tokens=snapshot.tokens, addresses=addresses)

        matches = RelevanceFilter(internal).match(_transfer(Chain.TRON, USDT_TRON, TRON_SENDER, TRON_WALLET))

        assert [(m.account_id, m.direction) for m in matches] == [(10, Direction.INCOMING)]

    def test_one_match_per_account(self, snapshot):
        """Test a wallet watched by two accounts yields one match each."""
        matches = RelevanceFilter(snapshot).filter([_transfer(Chain.ETHEREUM, USDT_ETH, EVM_SENDER, EVM_WALLET)])

        assert sorted(m.account_id for m in matches) == [10, 11]

    def test_fallback_address_rejected(self, snapshot):
        """Test transfers whose addresses could not be canonicalized are rejected."""
        transfer = _transfer(Chain.TRON, USDT_TRON, TRON_SENDER, TRON_WALLET, fallback=True)

        assert not RelevanceFilter(snapshot).is_relevant(transfer)
        assert RelevanceFilter(snapshot).match(transfer) == []
