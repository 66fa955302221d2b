"""
Slack Notification Sink.

============================================================
PURPOSE
============================================================
Deliver transfer alerts to Slack through incoming webhooks.

PRINCIPLES:
- Notification-only, one POST per alert
- No retries here: a failed send is reported as False
- mrkdwn text plus a "View Transaction" button

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from core.constants import EXPLORER_TX_URLS
from detection.models import AlertEvent, Direction


logger = logging.getLogger(__name__)


# ============================================================
# SLACK MESSAGE FORMATTER
# ============================================================

class SlackFormatter:
    """
    Formats alert events as Slack webhook payloads.

    Uses Block Kit with a mrkdwn section and an explorer button.
    """

    TITLES = {
        Direction.INCOMING: "New Deposit Detected",
        Direction.OUTGOING: "New Withdrawal Detected",
    }

    @classmethod
    def explorer_link(cls, chain: str, tx_id: str) -> str:
        base = EXPLORER_TX_URLS.get(chain)
        return f"{base}{tx_id}" if base else f"#/tx/{tx_id}"

    @classmethod
    def format_amount(cls, value: Decimal, places: int = 6) -> str:
        """Trim trailing zeros but keep at least two decimals."""
        quantized = value.quantize(Decimal(1).scaleb(-places)).normalize()
        text = f"{quantized:f}"
        if "." not in text:
            return f"{text}.00"
        whole, fraction = text.split(".")
        return f"{whole}.{fraction.ljust(2, '0')}"

    @classmethod
    def format_alert(
        cls,
        event: AlertEvent,
        account_name: Optional[str] = None,
        account_manager: Optional[str] = None,
        wallet_label: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Format an alert event for a Slack incoming webhook."""
        evaluated = event.transfer
        raw = evaluated.transfer
        symbol = evaluated.token.symbol
        title = cls.TITLES[evaluated.direction]

        counterparty = raw.from_address if evaluated.direction == Direction.INCOMING else raw.to_address
        counterparty_label = "From" if evaluated.direction == Direction.INCOMING else "To"
        wallet = evaluated.wallet_address
        if wallet_label:
            wallet = f"{wallet} ({wallet_label})"

        lines = [
            f"*{title}*",
            f"*Chain:* {raw.chain.value}",
            f"*Wallet:* {wallet}",
            f"*{counterparty_label}:* {counterparty}",
            f"*Account Name:* {account_name or 'N/A'}",
            f"*Account Manager:* {account_manager or 'N/A'}",
            f"*Currency:* {symbol}",
            f"*Amount:* {cls.format_amount(evaluated.quantity)} {symbol} (${event.usd_value:,.2f})",
        ]
        text = "\n".join(lines)

        blocks: List[Dict[str, Any]] = [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "View Transaction"},
                        "url": cls.explorer_link(raw.chain.value, raw.tx_id),
                        "style": "primary",
                    }
                ],
            },
        ]

        return {
            # Fallback text for notifications and clients without blocks
            "text": f"{title}: {cls.format_amount(evaluated.quantity)} {symbol} (${event.usd_value:,.2f})",
            "blocks": blocks,
        }


# ============================================================
# SLACK NOTIFIER
# ============================================================

class SlackWebhookNotifier:
    """
    Posts messages to Slack incoming webhooks.

    The channel of an alert is the webhook URL configured on the
    account; accounts without one fall back to the default webhook.
    """

    def __init__(
        self,
        default_webhook_url: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize Slack notifier.

        Args:
            default_webhook_url: Webhook used when an account has no channel
            timeout: Request timeout in seconds
            session: Optional shared aiohttp session
        """
        self._default_webhook_url = default_webhook_url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self.sent = 0
        self.failed = 0

        if default_webhook_url:
            logger.info("SlackWebhookNotifier enabled with a default webhook")
        else:
            logger.warning("SlackWebhookNotifier has no default webhook - check SLACK_ALERT_WEBHOOK_URL")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the notifier."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def resolve_channel(self, channel: Optional[str]) -> Optional[str]:
        return channel or self._default_webhook_url

    async def send(self, channel: Optional[str], message: Dict[str, Any]) -> bool:
        """
        Send a message to a channel.

        Returns True if Slack accepted the message.
        """
        webhook_url = self.resolve_channel(channel)
        if not webhook_url:
            logger.warning("No Slack webhook for alert, message not sent")
            self.failed += 1
            return False

        try:
            session = await self._get_session()
            async with session.post(webhook_url, json=message, timeout=self._timeout) as response:
                if response.status == 200:
                    self.sent += 1
                    return True
                body = await response.text()
                logger.error(f"Slack webhook error: {response.status} - {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending Slack message: {e}")

        self.failed += 1
        return False
