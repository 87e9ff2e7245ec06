"""
Alerts Package

Subscriber alert dispatch, notification channels and subscription management.
"""
from src.lra_alerts.alerts.dispatcher import AlertDispatcher, DispatchReport, EVENT_SUBSCRIPTION_TYPES
from src.lra_alerts.alerts.notifications import (
    AlertNotification,
    LoggingNotifier,
    WebhookNotifier,
    build_notifier,
    send_slack_notification,
)
from src.lra_alerts.alerts.subscriptions import SubscriptionService

__all__ = [
    "AlertDispatcher",
    "DispatchReport",
    "EVENT_SUBSCRIPTION_TYPES",
    "AlertNotification",
    "LoggingNotifier",
    "WebhookNotifier",
    "build_notifier",
    "send_slack_notification",
    "SubscriptionService",
]
