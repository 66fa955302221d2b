"""
Slack Notification Tests.

============================================================
PURPOSE
============================================================
Tests for alert formatting, webhook delivery and the dispatcher that
ties alert events to each account's channel.

TEST PRINCIPLES:
- Sends are never retried; failures report False
- Message carries chain, wallet, counterparty, account and amount
- Account lookups failing never block delivery

============================================================
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from chain_adapters.models import Chain, RawTransfer
from detection.models import AlertEvent, Direction, EvaluatedTransfer, TrackedToken
from notifications.dispatcher import AlertDispatcher
from notifications.slack import SlackFormatter, SlackWebhookNotifier
from storage.repositories.exceptions import QueryError
from tests.factories import EVM_SENDER, EVM_WALLET, NOW, TRON_SENDER, TRON_WALLET, USDT_ETH, USDT_TRON


DEFAULT_WEBHOOK = "https://hooks.slack.com/services/T000/B000/default"
ACME_WEBHOOK = "https://hooks.slack.com/services/T000/B000/acme"


# ============================================================
# FIXTURES
# ============================================================

def _event(direction=Direction.INCOMING, chain=Chain.TRON, account_id=1, quantity=Decimal("150")):
    if chain == Chain.TRON:
        contract, wallet, other, tx_id = USDT_TRON, TRON_WALLET, TRON_SENDER, "ab" * 32
    else:
        contract, wallet, other, tx_id = USDT_ETH, EVM_WALLET, EVM_SENDER, "0x" + "ab" * 32
    sender, receiver = (other, wallet) if direction == Direction.INCOMING else (wallet, other)

    transfer = RawTransfer(
        chain=chain,
        tx_id=tx_id,
        contract_address=contract,
        from_address=sender,
        to_address=receiver,
        raw_amount=int(quantity * 10 ** 6),
    )
    evaluated = EvaluatedTransfer(
        transfer=transfer,
        token=TrackedToken(1, "USDT", 6, Decimal("1"), {chain: contract}),
        direction=direction,
        account_id=account_id,
        wallet_address=wallet,
        quantity=quantity,
        usd_value=quantity,
    )
    return AlertEvent(
        account_id=account_id,
        transfer=evaluated,
        usd_value=quantity,
        threshold=Decimal("100"),
        decided_at=NOW,
    )


def _session(status=200, text="ok", error=None):
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=text)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.closed = False
    if error is not None:
        session.post = MagicMock(side_effect=error)
    else:
        session.post = MagicMock(return_value=ctx)
    return session


# ============================================================
# FORMATTER TESTS
# ============================================================

class TestSlackFormatter:
    """Tests for message layout."""

    def test_deposit_message(self):
        """Test an incoming alert reads as a deposit from the sender."""
        message = SlackFormatter.format_alert(
            _event(), account_name="Acme Ltd", account_manager="J. Doe", wallet_label="hot wallet",
        )
        text = message["blocks"][0]["text"]["text"]

        assert text.startswith("*New Deposit Detected*")
        assert "*Chain:* tron" in text
        assert f"*Wallet:* {TRON_WALLET} (hot wallet)" in text
        assert f"*From:* {TRON_SENDER}" in text
        assert "*Account Name:* Acme Ltd" in text
        assert "*Account Manager:* J. Doe" in text
        assert "*Amount:* 150.00 USDT ($150.00)" in text
        assert message["text"] == "New Deposit Detected: 150.00 USDT ($150.00)"

    def test_withdrawal_message(self):
        """Test an outgoing alert names the recipient."""
        message = SlackFormatter.format_alert(_event(direction=Direction.OUTGOING))
        text = message["blocks"][0]["text"]["text"]

        assert text.startswith("*New Withdrawal Detected*")
        assert f"*To:* {TRON_SENDER}" in text
        assert "*Account Name:* N/A" in text

    def test_view_transaction_button(self):
        """Test the button links to the chain's explorer."""
        message = SlackFormatter.format_alert(_event(chain=Chain.ETHEREUM))
        button = message["blocks"][1]["elements"][0]

        assert button["text"]["text"] == "View Transaction"
        assert button["url"] == "https://etherscan.io/tx/0x" + "ab" * 32

    def test_explorer_link_fallback(self):
        assert SlackFormatter.explorer_link("unknown", "abc") == "#/tx/abc"

    @pytest.mark.parametrize("value, expected", [
        (Decimal("150"), "150.00"),
        (Decimal("0.5"), "0.50"),
        (Decimal("1234.123456789"), "1234.123457"),
        (Decimal("0.000001"), "0.000001"),
    ])
    def test_format_amount(self, value, expected):
        assert SlackFormatter.format_amount(value) == expected


# ============================================================
# NOTIFIER TESTS
# ============================================================

class TestSlackWebhookNotifier:
    """Tests for webhook delivery."""

    @pytest.mark.asyncio
    async def test_send_ok(self):
        """Test a 200 response is a delivered message."""
        session = _session(200)
        notifier = SlackWebhookNotifier(DEFAULT_WEBHOOK, session=session)

        assert await notifier.send(ACME_WEBHOOK, {"text": "hi"})

        assert session.post.call_args.args[0] == ACME_WEBHOOK
        assert session.post.call_args.kwargs["json"] == {"text": "hi"}
        assert notifier.sent == 1

    @pytest.mark.asyncio
    async def test_default_webhook_fallback(self):
        """Test accounts without a channel use the default webhook."""
        session = _session(200)
        notifier = SlackWebhookNotifier(DEFAULT_WEBHOOK, session=session)

        assert await notifier.send(None, {"text": "hi"})
        assert session.post.call_args.args[0] == DEFAULT_WEBHOOK

    @pytest.mark.asyncio
    async def test_error_status(self):
        """Test a non-200 response is reported as failed, once."""
        session = _session(500, text="invalid_payload")
        notifier = SlackWebhookNotifier(DEFAULT_WEBHOOK, session=session)

        assert not await notifier.send(None, {"text": "hi"})
        assert session.post.call_count == 1
        assert notifier.failed == 1

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Test connection errors are reported as failed, not raised."""
        session = _session(error=aiohttp.ClientConnectionError("refused"))
        notifier = SlackWebhookNotifier(DEFAULT_WEBHOOK, session=session)

        assert not await notifier.send(None, {"text": "hi"})

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test a request timeout is a failed send, not an exception."""
        session = _session(error=asyncio.TimeoutError())
        notifier = SlackWebhookNotifier(DEFAULT_WEBHOOK, session=session)

        assert not await notifier.send(None, {"text": "hi"})
        assert notifier.failed == 1

    @pytest.mark.asyncio
    async def test_no_webhook(self):
        """Test nothing is posted without any webhook."""
        session = _session(200)
        notifier = SlackWebhookNotifier(None, session=session)

        assert not await notifier.send(None, {"text": "hi"})
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_leaves_shared_session(self):
        """Test a session passed in is not closed by the notifier."""
        session = _session(200)
        session.close = AsyncMock()
        notifier = SlackWebhookNotifier(DEFAULT_WEBHOOK, session=session)

        await notifier.close()

        session.close.assert_not_called()


# ============================================================
# DISPATCHER TESTS
# ============================================================

class TestAlertDispatcher:
    """Tests for account lookup and delivery."""

    @pytest.mark.asyncio
    async def test_uses_account_channel_and_label(self, session_factory, seeded):
        """Test the alert goes to the account's webhook with its details."""
        notifier = MagicMock()
        notifier.send = AsyncMock(return_value=True)
        dispatcher = AlertDispatcher(notifier, session_factory)

        assert await dispatcher.dispatch(_event(account_id=seeded["account_id"]))

        channel, message = notifier.send.call_args.args
        text = message["blocks"][0]["text"]["text"]
        assert channel == ACME_WEBHOOK
        assert "*Account Name:* Acme Ltd" in text
        assert "*Account Manager:* J. Doe" in text
        assert "(hot wallet)" in text
        assert dispatcher.delivered == 1

    @pytest.mark.asyncio
    async def test_failed_send_not_retried(self, session_factory, seeded):
        notifier = MagicMock()
        notifier.send = AsyncMock(return_value=False)
        dispatcher = AlertDispatcher(notifier, session_factory)

        assert not await dispatcher.dispatch(_event(account_id=seeded["account_id"]))
        assert notifier.send.await_count == 1
        assert dispatcher.failed == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_still_sends(self, session_factory, seeded):
        """Test a broken account lookup falls back to the default channel."""
        notifier = MagicMock()
        notifier.send = AsyncMock(return_value=True)
        dispatcher = AlertDispatcher(notifier, session_factory)

        with patch(
            "notifications.dispatcher.WatchlistRepository.get_account",
            side_effect=QueryError("WatchlistRepository", "get_account", "boom"),
        ):
            assert await dispatcher.dispatch(_event(account_id=seeded["account_id"]))

        channel, message = notifier.send.call_args.args
        assert channel is None
        assert "*Account Name:* N/A" in message["blocks"][0]["text"]["text"]
