"""
Error Types

Exception hierarchy for the ingestion and alert engine.
"""
from typing import Any, Dict, Optional


class LraAlertsError(Exception):
    """Base class for all application errors."""


class SourceError(LraAlertsError):
    """ArcGIS request failed in a way that retrying will not fix."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientSourceError(SourceError):
    """Timeout, connection failure, 5xx or unreadable body. Safe to retry."""


class SourceUnavailableError(SourceError):
    """Retries against the ArcGIS service were exhausted."""

    def __init__(self, message: str, attempts: int, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)
        self.attempts = attempts


class AuthenticationError(SourceError):
    """Credential rejected (HTTP 401/403, ArcGIS 498/499) or token endpoint failure."""


class PersistenceError(LraAlertsError):
    """
    A listing batch failed to commit.

    Batches committed before the failure stay durable.
    """

    def __init__(self, message: str, batches_committed: int, operations_committed: int):
        super().__init__(message)
        self.batches_committed = batches_committed
        self.operations_committed = operations_committed

    @property
    def is_partial(self) -> bool:
        return self.batches_committed > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batches_committed": self.batches_committed,
            "operations_committed": self.operations_committed,
        }


class IngestInProgressError(LraAlertsError):
    """Another ingest run holds the ingest lock."""


class SubscriptionError(LraAlertsError):
    """Invalid subscription request."""


class NotificationError(LraAlertsError):
    """Delivery to a single subscriber failed."""


class ExportError(LraAlertsError):
    """CSV export upload or URL signing failed."""
