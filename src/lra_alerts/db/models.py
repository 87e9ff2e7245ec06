"""
SQLAlchemy ORM Models

Storage for LRA listings, alert subscriptions, the selections/export
snapshot and ingest run tracking. Listings are keyed by the canonical
listing id and are never deleted by ingestion, only flagged removed.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String, Integer, Float, DateTime, Boolean, Text,
    CheckConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column

from src.lra_alerts.db.base import Base, TimestampMixin, JSONDocument


class Listing(Base, TimestampMixin):
    """
    LRA property listing document.

    The canonical columns are copies of fields inside `document` so they can
    be indexed and filtered; `document` holds the full normalized record
    including raw passthrough fields.
    """
    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(
        Text,
        primary_key=True,
        comment="Canonical listing id (parcel id, OBJECTID or generated token)"
    )

    parcel_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address_lower: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Lowercased address for prefix search"
    )
    address_keywords: Mapped[Optional[list]] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Whitespace tokens of the lowercased address"
    )
    neighborhood: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ward: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    zip: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    sqft: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    usage: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    property_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    removed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="True once the listing left the source inventory"
    )
    removed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the listing was flagged removed"
    )
    content_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA-256 fingerprint of the normalized record"
    )
    document: Mapped[dict] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Full listing document"
    )

    __table_args__ = (
        Index("idx_listings_removed", "removed"),
        Index("idx_listings_parcel_id", "parcel_id"),
        Index("idx_listings_zip", "zip"),
        Index("idx_listings_ward", "ward"),
        Index("idx_listings_neighborhood", "neighborhood"),
        Index("idx_listings_status", "status"),
        Index("idx_listings_address_lower", "address_lower"),
    )

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, address={self.address}, removed={self.removed})>"


class Subscription(Base):
    """
    User alert subscription.

    Primary key is `${user_id}_${type}_${value}`, so creating the same
    subscription twice overwrites instead of duplicating.
    """
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('zip', 'parcel', 'ward', 'neighborhood')",
            name="check_subscription_type_valid"
        ),
        Index("idx_subscriptions_type_value", "type", "value"),
        Index("idx_subscriptions_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(user={self.user_id}, type={self.type}, value={self.value})>"


class ExportSnapshot(Base):
    """Selections snapshot, last run summary and CSV location (row id 'current')."""
    __tablename__ = "exports"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    summary: Mapped[Optional[dict]] = mapped_column(JSONDocument, nullable=True)
    csv: Mapped[Optional[dict]] = mapped_column(JSONDocument, nullable=True)
    selections: Mapped[Optional[dict]] = mapped_column(JSONDocument, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class DataIngestionRun(Base, TimestampMixin):
    """Ingest run execution metadata and tracking."""
    __tablename__ = "data_ingestion_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Source type, e.g. lra_listings"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Run status: running, success, failure, partial"
    )

    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_changed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_unchanged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batches_committed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[dict]] = mapped_column(JSONDocument, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'success', 'failure', 'partial')",
            name="check_status_valid"
        ),
        Index("idx_data_ingestion_runs_status", "status"),
        Index("idx_data_ingestion_runs_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<DataIngestionRun(id={self.id}, status={self.status}, processed={self.records_processed})>"
