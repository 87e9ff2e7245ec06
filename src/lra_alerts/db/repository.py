"""
Repository Pattern for Data Access

Provides CRUD operations and domain-specific queries for all models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import delete, desc, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from src.lra_alerts.db.base import utcnow
from src.lra_alerts.db.models import (
    DataIngestionRun,
    ExportSnapshot,
    Listing,
    Subscription,
)
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# Keeps IN (...) lists well under driver parameter limits
ID_QUERY_CHUNK = 500

CURRENT_EXPORT_ID = "current"


def dialect_insert(session: Session, model):
    """
    INSERT construct supporting ON CONFLICT for the session's dialect.

    Raises:
        NotImplementedError: Dialect has no ON CONFLICT upsert support here
    """
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {name}")


def _chunked(values: Sequence[Any], size: int = ID_QUERY_CHUNK):
    for start in range(0, len(values), size):
        yield values[start:start + size]


class BaseRepository:
    """
    Base repository with common CRUD operations.

    Generic repository that can be extended for specific models.
    """

    def __init__(self, model: Type[T]):
        """
        Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model
        logger.debug("repository_initialized", model=model.__name__)

    def get_by_id(self, session: Session, id_value: Any) -> Optional[T]:
        """
        Get single record by primary key.

        Args:
            session: Database session
            id_value: Primary key value

        Returns:
            Model instance or None
        """
        result = session.get(self.model, id_value)
        logger.debug(
            "repository_get_by_id",
            model=self.model.__name__,
            id=id_value,
            found=result is not None
        )
        return result

    def delete(self, session: Session, id_value: Any) -> bool:
        """
        Delete record (hard delete).

        Args:
            session: Database session
            id_value: Primary key value

        Returns:
            True if deleted, False if not found
        """
        instance = self.get_by_id(session, id_value)
        if not instance:
            logger.warning("repository_delete_not_found", model=self.model.__name__, id=id_value)
            return False

        session.delete(instance)
        session.flush()
        logger.info("repository_deleted", model=self.model.__name__, id=id_value)
        return True

    def count(self, session: Session) -> int:
        """
        Count total records.

        Args:
            session: Database session

        Returns:
            Total count
        """
        count = session.scalar(select(func.count()).select_from(self.model))
        logger.debug("repository_count", model=self.model.__name__, count=count)
        return count


class ListingRepository(BaseRepository):
    """Repository for Listing documents."""

    UPSERT_COLUMNS = (
        "parcel_id", "address", "address_lower", "address_keywords",
        "neighborhood", "ward", "zip", "sqft", "usage", "status", "property_type",
        "removed", "removed_at", "content_hash", "document", "updated_at",
    )

    def __init__(self):
        super().__init__(Listing)

    def get_state_projection(self, session: Session) -> Dict[str, Tuple[Optional[str], bool]]:
        """
        Minimal stored state used for diffing.

        Returns:
            Mapping of listing id -> (content_hash, removed)
        """
        rows = session.execute(select(Listing.id, Listing.content_hash, Listing.removed)).all()
        state = {row.id: (row.content_hash, bool(row.removed)) for row in rows}
        logger.debug("listing_state_loaded", count=len(state))
        return state

    def get_documents(self, session: Session, ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        """
        Load stored documents for `ids`.

        Returns:
            Mapping of listing id -> document (ids not stored are omitted)
        """
        documents: Dict[str, Dict[str, Any]] = {}
        for chunk in _chunked(list(ids)):
            rows = session.execute(select(Listing.id, Listing.document).where(Listing.id.in_(chunk))).all()
            documents.update({row.id: row.document for row in rows})
        return documents

    def upsert_documents(self, session: Session, rows: List[Dict[str, Any]]) -> int:
        """
        Insert or overwrite listings.

        Every column in UPSERT_COLUMNS is replaced, so nothing from the
        previous version of the document survives.

        Args:
            session: Database session
            rows: Column dictionaries (must include id)

        Returns:
            Number of rows written
        """
        if not rows:
            return 0

        stmt = dialect_insert(session, Listing).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={column: stmt.excluded[column] for column in self.UPSERT_COLUMNS}
        )
        session.execute(stmt)
        session.flush()

        logger.debug("listings_upserted", count=len(rows))
        return len(rows)

    def mark_removed(self, session: Session, ids: Sequence[str], removed_at: Optional[datetime] = None) -> int:
        """
        Flag listings removed without deleting them.

        The stored document keeps its last-known fields and gains
        removed/removedAt.

        Returns:
            Number of listings flagged
        """
        if not ids:
            return 0

        removed_at = removed_at or utcnow()
        flagged = 0
        for chunk in _chunked(list(ids)):
            listings = session.execute(select(Listing).where(Listing.id.in_(chunk))).scalars().all()
            for listing in listings:
                document = dict(listing.document or {})
                document["removed"] = True
                document["removedAt"] = removed_at.isoformat()
                document["updatedAt"] = removed_at.isoformat()
                listing.document = document
                listing.removed = True
                listing.removed_at = removed_at
                listing.updated_at = removed_at
                flagged += 1
        session.flush()

        logger.debug("listings_marked_removed", count=flagged)
        return flagged

    def count_active(self, session: Session) -> int:
        query = select(func.count()).select_from(Listing).where(Listing.removed.is_(False))
        return session.scalar(query)

    def distinct_values(self, session: Session, column_name: str) -> List[Any]:
        """
        Distinct non-null values of `column_name` across non-removed listings.

        Args:
            session: Database session
            column_name: Listing column (zip, neighborhood, ward, ...)

        Returns:
            Unsorted list of distinct values
        """
        column = getattr(Listing, column_name)
        query = (
            select(column)
            .where(Listing.removed.is_(False))
            .where(column.isnot(None))
            .distinct()
        )
        return list(session.execute(query).scalars().all())

    def wipe(self, database, batch_size: int) -> int:
        """
        Delete every listing in bounded transactions.

        Args:
            database: Database handle (each batch gets its own transaction)
            batch_size: Maximum deletes per transaction

        Returns:
            Total listings deleted
        """
        total = 0
        while True:
            with database.session() as session:
                ids = session.execute(select(Listing.id).limit(batch_size)).scalars().all()
                if not ids:
                    break
                session.execute(delete(Listing).where(Listing.id.in_(ids)))
            total += len(ids)
            logger.info("listings_wipe_batch", deleted=len(ids), total=total)
        return total


class SubscriptionRepository(BaseRepository):
    """Repository for alert subscriptions."""

    def __init__(self):
        super().__init__(Subscription)

    @staticmethod
    def make_id(user_id: str, subscription_type: str, value: str) -> str:
        return f"{user_id}_{subscription_type}_{value}"

    def upsert(self, session: Session, user_id: str, subscription_type: str, value: str) -> Subscription:
        """
        Create a subscription, overwriting an identical one.

        Re-subscribing refreshes created_at.

        Returns:
            Stored Subscription
        """
        subscription_id = self.make_id(user_id, subscription_type, value)
        stmt = dialect_insert(session, Subscription).values(
            id=subscription_id,
            user_id=user_id,
            type=subscription_type,
            value=value,
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={"user_id": user_id, "type": subscription_type, "value": value, "created_at": stmt.excluded.created_at}
        )
        session.execute(stmt)
        session.flush()

        logger.info("subscription_upserted", subscription_id=subscription_id)
        return session.execute(select(Subscription).where(Subscription.id == subscription_id)).scalar_one()

    def get_for_user(self, session: Session, user_id: str) -> List[Subscription]:
        query = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.type, Subscription.value)
        )
        return session.execute(query).scalars().all()

    def find_matching(self, session: Session, subscription_type: str, value: str) -> List[Subscription]:
        """
        Subscriptions whose (type, value) equals the given pair exactly.
        """
        query = select(Subscription).where(
            Subscription.type == subscription_type,
            Subscription.value == value,
        )
        return session.execute(query).scalars().all()


class ExportSnapshotRepository(BaseRepository):
    """Repository for the exports/current snapshot row."""

    def __init__(self):
        super().__init__(ExportSnapshot)

    def _merge(self, session: Session, values: Dict[str, Any]) -> None:
        values = dict(values, updated_at=utcnow())
        stmt = dialect_insert(session, ExportSnapshot).values(id=CURRENT_EXPORT_ID, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=values)
        session.execute(stmt)
        session.flush()

    def save_selections(self, session: Session, selections: Dict[str, List[str]]) -> None:
        """Overwrite the selections snapshot, leaving summary and csv untouched."""
        self._merge(session, {"selections": selections})
        logger.info("selections_saved", fields=sorted(selections))

    def save_run_summary(self, session: Session, summary: Dict[str, Any], csv: Optional[Dict[str, Any]]) -> None:
        """Overwrite the last-run summary and CSV location."""
        self._merge(session, {"summary": summary, "csv": csv})
        logger.info("run_summary_saved", csv_exported=csv is not None)

    def get_current(self, session: Session) -> Optional[ExportSnapshot]:
        return self.get_by_id(session, CURRENT_EXPORT_ID)


class DataIngestionRunRepository(BaseRepository):
    """Repository for DataIngestionRun model (ingest tracking)."""

    def __init__(self):
        super().__init__(DataIngestionRun)

    def create_run(
        self,
        session: Session,
        source_type: str,
        started_at: Optional[datetime] = None
    ) -> DataIngestionRun:
        """
        Create new ingestion run.

        Args:
            session: Database session
            source_type: Source type (lra_listings)
            started_at: Start timestamp (defaults to now)

        Returns:
            DataIngestionRun instance
        """
        run = DataIngestionRun(
            source_type=source_type,
            status='running',
            started_at=started_at or utcnow()
        )

        session.add(run)
        session.flush()

        logger.info("ingestion_run_created", run_id=run.id, source_type=source_type)
        return run

    def complete_run(
        self,
        session: Session,
        run_id: int,
        status: str,
        counts: Optional[Dict[str, int]] = None,
        batches_committed: int = 0,
        error_message: Optional[str] = None,
        error_details: Optional[Dict] = None
    ) -> DataIngestionRun:
        """
        Mark ingestion run as complete.

        Args:
            session: Database session
            run_id: Run ID
            status: Final status (success, failure, partial)
            counts: added/changed/removed/unchanged/total counts
            batches_committed: Listing batches committed by the writer
            error_message: Error message if failed
            error_details: Structured error data

        Returns:
            Updated DataIngestionRun instance
        """
        run = self.get_by_id(session, run_id)
        if not run:
            raise ValueError(f"DataIngestionRun {run_id} not found")

        counts = counts or {}
        run.status = status
        run.records_processed = counts.get("total", 0)
        run.records_added = counts.get("added", 0)
        run.records_changed = counts.get("changed", 0)
        run.records_removed = counts.get("removed", 0)
        run.records_unchanged = counts.get("unchanged", 0)
        run.batches_committed = batches_committed
        run.error_message = error_message
        run.error_details = error_details
        run.completed_at = utcnow()

        session.flush()

        logger.info(
            "ingestion_run_completed",
            run_id=run_id,
            status=status,
            batches_committed=batches_committed,
            **counts
        )

        return run

    def get_recent_runs(
        self,
        session: Session,
        source_type: Optional[str] = None,
        limit: int = 10
    ) -> List[DataIngestionRun]:
        """
        Get recent ingestion runs, newest first.

        Args:
            session: Database session
            source_type: Filter by source type (optional)
            limit: Maximum number of runs

        Returns:
            List of ingestion runs
        """
        query = select(DataIngestionRun).order_by(desc(DataIngestionRun.started_at), desc(DataIngestionRun.id))

        if source_type:
            query = query.where(DataIngestionRun.source_type == source_type)

        return session.execute(query.limit(limit)).scalars().all()
