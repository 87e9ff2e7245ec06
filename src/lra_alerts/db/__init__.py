"""
Database Package

Database models, connection management, and data persistence layer.
"""
from src.lra_alerts.db.base import Base
from src.lra_alerts.db.session import Database
from src.lra_alerts.db.models import (
    Listing,
    Subscription,
    ExportSnapshot,
    DataIngestionRun,
)
from src.lra_alerts.db.repository import (
    BaseRepository,
    ListingRepository,
    SubscriptionRepository,
    ExportSnapshotRepository,
    DataIngestionRunRepository,
)

__all__ = [
    # Base
    "Base",
    # Session management
    "Database",
    # Models
    "Listing",
    "Subscription",
    "ExportSnapshot",
    "DataIngestionRun",
    # Repositories
    "BaseRepository",
    "ListingRepository",
    "SubscriptionRepository",
    "ExportSnapshotRepository",
    "DataIngestionRunRepository",
]
