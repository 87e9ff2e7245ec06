"""
Notification Utilities

Message formatting, the Slack broadcast webhook, and per-subscriber
notifiers.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config.settings import settings
from src.lra_alerts.errors import NotificationError
from src.lra_alerts.models.listing import Listing
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

EVENT_ADDED = "added"
EVENT_CHANGED = "changed"
EVENT_REMOVED = "removed"

EVENT_TITLES = {
    EVENT_ADDED: "New Property Added",
    EVENT_CHANGED: "Property Changed",
    EVENT_REMOVED: "Property Removed",
}


@dataclass(frozen=True)
class AlertNotification:
    """One message for one subscriber about one listing event."""

    user_id: str
    event: str
    listing: Listing
    subscription_type: str
    message: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "event": self.event,
            "message": self.message,
            "address": self.listing.address,
            "listingId": self.listing.id,
        }


def format_alert_message(event: str, listing: Listing) -> str:
    """
    Human-readable alert text, e.g. "New Property Added: 1234 MAIN ST".

    Listings without an address fall back to their id.
    """
    return f"{EVENT_TITLES[event]}: {listing.address or listing.id}"


def format_ingest_summary(counts: Dict[str, int]) -> str:
    """
    Format an ingest run summary for the broadcast channel.

    Args:
        counts: added/changed/removed/unchanged/total counts

    Returns:
        Formatted message string
    """
    message_lines = [
        "*LRA Inventory Update*",
        "",
        f"Added: {counts.get('added', 0):,}",
        f"Changed: {counts.get('changed', 0):,}",
        f"Removed: {counts.get('removed', 0):,}",
        f"Unchanged: {counts.get('unchanged', 0):,}",
        f"Total Listings: {counts.get('total', 0):,}",
    ]
    return "\n".join(message_lines)


def send_slack_notification(message: str, webhook_url: Optional[str] = None, config=None) -> bool:
    """
    Send notification to Slack via webhook.

    Args:
        message: Message to send
        webhook_url: Slack webhook URL (defaults to settings.alert_slack_webhook)
        config: Settings override

    Returns:
        True if successful, False otherwise
    """
    config = config or settings
    if not config.alert_enable_slack:
        logger.info("slack_notifications_disabled")
        return False

    webhook_url = webhook_url or config.alert_slack_webhook
    if not webhook_url:
        logger.warning("slack_webhook_url_not_configured")
        return False

    try:
        response = requests.post(webhook_url, json={"text": message}, timeout=10)
    except requests.RequestException as e:
        logger.error("slack_notification_error", error=str(e))
        return False

    if response.status_code == 200:
        logger.info("slack_notification_sent")
        return True

    logger.error("slack_notification_failed",
                 status_code=response.status_code,
                 response=response.text)
    return False


class LoggingNotifier:
    """Records each notification as a structured log event."""

    def send(self, notification: AlertNotification) -> None:
        logger.info(
            "alert_notification",
            user_id=notification.user_id,
            alert_event=notification.event,
            listing_id=notification.listing.id,
            subscription_type=notification.subscription_type,
            message=notification.message,
        )


class WebhookNotifier:
    """
    POSTs each notification as JSON to a delivery relay.

    Raises NotificationError on any transport or HTTP failure so the
    dispatcher can count it.
    """

    def __init__(self, url: str, session: Optional[requests.Session] = None, timeout: int = 10):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, notification: AlertNotification) -> None:
        try:
            response = self.session.post(self.url, json=notification.to_payload(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(
                f"Delivery to {notification.user_id} failed: {e}"
            ) from e


def build_notifier(config=None):
    """WebhookNotifier when alert_subscriber_webhook is set, else LoggingNotifier."""
    config = config or settings
    if config.alert_subscriber_webhook:
        return WebhookNotifier(config.alert_subscriber_webhook)
    return LoggingNotifier()
