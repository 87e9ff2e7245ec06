"""
Alert Dispatcher

Resolves the subscribers interested in each listing event of a diff and
delivers one notification per subscriber per event.

Which subscription types an event checks is policy, not derived:
added and removed listings notify zip, parcel, ward and neighborhood
subscribers; changed listings notify only parcel, ward and neighborhood
subscribers. A ZIP alert means "something entered or left inventory in
this ZIP", not "something in this ZIP was edited".
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import Settings, settings as default_settings
from src.lra_alerts.alerts.notifications import (
    EVENT_ADDED,
    EVENT_CHANGED,
    EVENT_REMOVED,
    AlertNotification,
    LoggingNotifier,
    format_alert_message,
    format_ingest_summary,
    send_slack_notification,
)
from src.lra_alerts.db.repository import SubscriptionRepository
from src.lra_alerts.ingestion.diff_engine import DiffResult
from src.lra_alerts.models.listing import Listing, SubscriptionType
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

ALL_SUBSCRIPTION_TYPES = (
    SubscriptionType.ZIP,
    SubscriptionType.PARCEL,
    SubscriptionType.WARD,
    SubscriptionType.NEIGHBORHOOD,
)

EVENT_SUBSCRIPTION_TYPES = {
    EVENT_ADDED: ALL_SUBSCRIPTION_TYPES,
    EVENT_CHANGED: (SubscriptionType.PARCEL, SubscriptionType.WARD, SubscriptionType.NEIGHBORHOOD),
    EVENT_REMOVED: ALL_SUBSCRIPTION_TYPES,
}


@dataclass
class DispatchReport:
    """Outcome of one dispatch: every attempt settles as delivered or failed."""

    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    lookup_failures: int = 0
    broadcast_sent: bool = False
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "lookup_failures": self.lookup_failures,
            "broadcast_sent": self.broadcast_sent,
        }


def diff_events(diff: DiffResult) -> List[Tuple[str, Listing]]:
    """Flatten a diff into (event, listing) pairs."""
    events = [(EVENT_ADDED, listing) for listing in diff.added]
    events.extend((EVENT_CHANGED, listing) for listing in diff.changed)
    events.extend((EVENT_REMOVED, listing) for listing in diff.removed)
    return events


class AlertDispatcher:
    """
    Fans listing events out to matching subscribers.

    Deliveries run on a thread pool, one task per (subscriber, event). All
    tasks are awaited; a failed delivery is recorded and never cancels or
    blocks the others.
    """

    def __init__(
        self,
        database,
        notifier=None,
        repository: Optional[SubscriptionRepository] = None,
        config: Optional[Settings] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Args:
            database: Database handle used for subscription lookups
            notifier: Object with send(AlertNotification); defaults to LoggingNotifier
            repository: Subscription repository override
            config: Settings override
            max_workers: Delivery thread pool size (defaults to alert_max_workers)
        """
        self.database = database
        self.notifier = notifier or LoggingNotifier()
        self.repository = repository or SubscriptionRepository()
        self.config = config or default_settings
        self.max_workers = max_workers or self.config.alert_max_workers

    def _lookup(self, session: Session, subscription_type: SubscriptionType, value: str, cache: Dict, report: DispatchReport) -> List[str]:
        key = (subscription_type.value, value)
        if key in cache:
            return cache[key]
        try:
            subscriptions = self.repository.find_matching(session, subscription_type.value, value)
            user_ids = [subscription.user_id for subscription in subscriptions]
        except SQLAlchemyError as e:
            session.rollback()
            report.lookup_failures += 1
            logger.error(
                "subscription_lookup_failed",
                subscription_type=subscription_type.value,
                value=value,
                error=str(e)
            )
            user_ids = []
        cache[key] = user_ids
        return user_ids

    def resolve_notifications(self, diff: DiffResult, report: Optional[DispatchReport] = None) -> List[AlertNotification]:
        """
        Build the notifications a diff triggers.

        A subscriber matching the same event through several dimensions
        receives one notification, attributed to the first matching type.
        """
        report = report or DispatchReport()
        notifications: List[AlertNotification] = []
        cache: Dict[Tuple[str, str], List[str]] = {}

        with self.database.session() as session:
            for event, listing in diff_events(diff):
                notified = set()
                message = format_alert_message(event, listing)
                for subscription_type in EVENT_SUBSCRIPTION_TYPES[event]:
                    value = listing.dimension_value(subscription_type)
                    if value is None:
                        continue
                    for user_id in self._lookup(session, subscription_type, value, cache, report):
                        if user_id in notified:
                            continue
                        notified.add(user_id)
                        notifications.append(AlertNotification(
                            user_id=user_id,
                            event=event,
                            listing=listing,
                            subscription_type=subscription_type.value,
                            message=message,
                        ))
        return notifications

    def _deliver(self, notifications: List[AlertNotification], report: DispatchReport) -> None:
        if not notifications:
            return

        workers = max(1, min(self.max_workers, len(notifications)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="alert-delivery") as executor:
            futures = [(notification, executor.submit(self.notifier.send, notification)) for notification in notifications]
            for notification, future in futures:
                report.attempted += 1
                try:
                    future.result()
                    report.delivered += 1
                except Exception as e:
                    report.failed += 1
                    report.failures.append({
                        "user_id": notification.user_id,
                        "event": notification.event,
                        "listing_id": notification.listing.id,
                        "error": str(e),
                    })
                    logger.warning(
                        "alert_delivery_failed",
                        user_id=notification.user_id,
                        alert_event=notification.event,
                        listing_id=notification.listing.id,
                        error=str(e)
                    )

    def broadcast(self, diff: DiffResult) -> bool:
        """Send the run summary to the global channel once per run when configured."""
        if not (self.config.alert_enable_slack and self.config.alert_slack_webhook):
            return False
        return send_slack_notification(format_ingest_summary(diff.counts()), self.config.alert_slack_webhook, self.config)

    def dispatch(self, diff: DiffResult) -> DispatchReport:
        """
        Notify subscribers about every event in `diff`, then broadcast.

        Args:
            diff: Committed diff for this run

        Returns:
            DispatchReport with per-attempt outcomes
        """
        report = DispatchReport()
        notifications = self.resolve_notifications(diff, report)
        self._deliver(notifications, report)
        report.broadcast_sent = self.broadcast(diff)

        logger.info("alert_dispatch_complete", **report.to_dict())
        return report
