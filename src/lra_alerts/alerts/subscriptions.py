"""
Subscription Service

Create, remove and list a user's alert subscriptions.
"""
from typing import Any, Dict, List, Tuple

from src.lra_alerts.db.repository import SubscriptionRepository
from src.lra_alerts.errors import SubscriptionError
from src.lra_alerts.models.listing import SubscriptionType, stringify_value
from src.lra_alerts.transformers.field_normalizer import coerce_number, normalize_zip
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)


def normalize_subscription(user_id: Any, subscription_type: Any, value: Any) -> Tuple[str, SubscriptionType, str]:
    """
    Validate and normalize a subscription request.

    Values are normalized the same way listings are, so that a stored
    subscription matches Listing.dimension_value exactly: zip to 5 digits,
    ward "05" / "5.0" to "5", other values trimmed.

    Raises:
        SubscriptionError: Missing user id, unknown type or empty value
    """
    user = stringify_value(user_id)
    if not user:
        raise SubscriptionError("userId is required")

    try:
        if isinstance(subscription_type, SubscriptionType):
            kind = subscription_type
        else:
            kind = SubscriptionType(str(subscription_type).strip().lower())
    except ValueError as e:
        raise SubscriptionError(f"Unknown subscription type: {subscription_type}") from e

    if kind == SubscriptionType.ZIP:
        normalized = normalize_zip(value)
    elif kind == SubscriptionType.WARD:
        number = coerce_number(value)
        normalized = stringify_value(number) if number is not None else stringify_value(value)
    else:
        normalized = stringify_value(value)

    if not normalized:
        raise SubscriptionError(f"A value is required for {kind.value} subscriptions")
    return user, kind, normalized


class SubscriptionService:
    """User-facing subscription operations."""

    def __init__(self, database, repository: SubscriptionRepository = None):
        self.database = database
        self.repository = repository or SubscriptionRepository()

    def create_alert(self, user_id: Any, subscription_type: Any, value: Any) -> Dict[str, Any]:
        """
        Subscribe a user. Creating the same subscription twice is a no-op.

        Returns:
            The stored subscription
        """
        user, kind, normalized = normalize_subscription(user_id, subscription_type, value)
        with self.database.session() as session:
            subscription = self.repository.upsert(session, user, kind.value, normalized)
            result = {
                "id": subscription.id,
                "userId": subscription.user_id,
                "type": subscription.type,
                "value": subscription.value,
                "createdAt": subscription.created_at.isoformat() if subscription.created_at else None,
            }
        logger.info("alert_created", user_id=user, subscription_type=kind.value, value=normalized)
        return result

    def remove_alert(self, user_id: Any, subscription_type: Any, value: Any) -> bool:
        """
        Unsubscribe a user.

        Returns:
            True if a subscription was deleted
        """
        user, kind, normalized = normalize_subscription(user_id, subscription_type, value)
        subscription_id = SubscriptionRepository.make_id(user, kind.value, normalized)
        with self.database.session() as session:
            deleted = self.repository.delete(session, subscription_id)
        logger.info("alert_removed", user_id=user, subscription_type=kind.value, value=normalized, deleted=deleted)
        return deleted

    def get_alerts(self, user_id: Any) -> Dict[str, List[str]]:
        """
        A user's subscription values grouped by type.

        Every type key is present, with an empty list when unused.
        """
        user = stringify_value(user_id)
        if not user:
            raise SubscriptionError("userId is required")

        grouped: Dict[str, List[str]] = {kind.value: [] for kind in SubscriptionType}
        with self.database.session() as session:
            for subscription in self.repository.get_for_user(session, user):
                grouped.setdefault(subscription.type, []).append(subscription.value)
        return grouped
