"""
Notifications - Alert delivery to Slack.
"""

from notifications.dispatcher import AlertDispatcher, Notifier
from notifications.slack import SlackFormatter, SlackWebhookNotifier


__all__ = [
    "AlertDispatcher",
    "Notifier",
    "SlackFormatter",
    "SlackWebhookNotifier",
]
