"""
Alert Dispatcher.

Hands AlertEvents to the notifier. The decision record is already
durable when an event arrives here, so a failed send is logged and
never retried: the transfer will not be alerted again.
"""

import logging
from typing import Optional, Protocol

from sqlalchemy.orm import sessionmaker

from detection.models import AlertEvent
from notifications.slack import SlackFormatter
from storage.database import session_scope
from storage.repositories.exceptions import RepositoryException
from storage.repositories.watchlist import WatchlistRepository


logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, channel: Optional[str], message: dict) -> bool:
        ...


class AlertDispatcher:
    """Formats and delivers alert events to each account's channel."""

    def __init__(
        self,
        notifier: Notifier,
        session_factory: sessionmaker,
        formatter: type[SlackFormatter] = SlackFormatter,
    ) -> None:
        self._notifier = notifier
        self._session_factory = session_factory
        self._formatter = formatter
        self.delivered = 0
        self.failed = 0

    async def dispatch(self, event: AlertEvent) -> bool:
        """Deliver one alert. Returns the notifier's ok/failed result."""
        evaluated = event.transfer
        raw = evaluated.transfer
        channel = account_name = manager = label = None

        try:
            with session_scope(self._session_factory) as session:
                repo = WatchlistRepository(session)
                account = repo.get_account(event.account_id)
                if account is not None:
                    channel = account.alert_channel
                    account_name = account.name
                    manager = account.account_manager
                label = repo.get_address_label(event.account_id, raw.chain, evaluated.wallet_address)
        except RepositoryException as e:
            # The decision is already recorded; deliver with what we have
            logger.warning(f"Account lookup failed for alert on {raw.chain.value} tx {raw.tx_id}: {e}")

        message = self._formatter.format_alert(
            event,
            account_name=account_name,
            account_manager=manager,
            wallet_label=label,
        )
        ok = await self._notifier.send(channel, message)
        if ok:
            self.delivered += 1
            logger.info(f"Alert delivered for account {event.account_id} ({raw.chain.value} tx {raw.tx_id})")
        else:
            self.failed += 1
            logger.error(
                f"Alert delivery failed for account {event.account_id} "
                f"({raw.chain.value} tx {raw.tx_id}); not retried"
            )
        return ok
