"""
Batched Persistence Writer

Applies a DiffResult to the listings table as a sequence of bounded,
individually atomic transactions.

Delivery of state changes is at-least-once: if batch N fails, batches
1..N-1 stay committed. Rerunning the ingest recomputes fingerprints against
the partially updated table and finishes the job.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from config.settings import settings
from src.lra_alerts.db.base import utcnow
from src.lra_alerts.db.repository import ListingRepository
from src.lra_alerts.errors import PersistenceError
from src.lra_alerts.ingestion.diff_engine import DiffResult, content_fingerprint
from src.lra_alerts.models.listing import Listing
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

UPSERT = "upsert"
REMOVE = "remove"


def address_keywords(address: Optional[str]) -> List[str]:
    """Unique whitespace tokens of the lowercased address, in order."""
    if not address:
        return []
    return list(dict.fromkeys(address.lower().split()))


def build_listing_document(listing: Listing, content_hash: str, written_at: datetime) -> Dict[str, Any]:
    """
    Full stored document: the normalized record plus derived search and
    bookkeeping fields.
    """
    document = listing.to_record()
    address_lower = listing.address.lower() if listing.address else None
    document.update({
        "addressLower": address_lower,
        "addressKeywords": address_keywords(listing.address),
        "removed": False,
        "contentHash": content_hash,
        "updatedAt": written_at.isoformat(),
    })
    return document


def build_listing_row(listing: Listing, content_hash: str, written_at: datetime) -> Dict[str, Any]:
    """Column values for a listings upsert. removed_at is cleared."""
    document = build_listing_document(listing, content_hash, written_at)
    return {
        "id": listing.id,
        "parcel_id": listing.parcel_id,
        "address": listing.address,
        "address_lower": document["addressLower"],
        "address_keywords": document["addressKeywords"],
        "neighborhood": listing.neighborhood,
        "ward": listing.ward,
        "zip": listing.zip,
        "sqft": listing.sqft,
        "usage": listing.usage,
        "status": listing.status,
        "property_type": listing.property_type,
        "removed": False,
        "removed_at": None,
        "content_hash": content_hash,
        "document": document,
        "updated_at": written_at,
    }


class ListingBatchWriter:
    """
    Writes added/changed upserts and removed flags in bounded batches.

    `commits` records the operation count of each committed batch for the
    most recent write.
    """

    def __init__(self, database, repository: Optional[ListingRepository] = None, max_operations: Optional[int] = None):
        """
        Args:
            database: Database handle
            repository: Listing repository override
            max_operations: Per-batch operation ceiling (defaults to listing_batch_max_operations)
        """
        self.database = database
        self.repository = repository or ListingRepository()
        self.max_operations = max_operations or settings.listing_batch_max_operations
        self.commits: List[int] = []
        self._fingerprints: Dict[str, str] = {}

    def _operations(self, diff: DiffResult) -> List[Tuple[str, Any]]:
        operations: List[Tuple[str, Any]] = [(UPSERT, listing) for listing in diff.added]
        operations.extend((UPSERT, listing) for listing in diff.changed)
        operations.extend((REMOVE, listing_id) for listing_id in diff.removed_ids)
        return operations

    def _commit_batch(self, batch: List[Tuple[str, Any]], written_at: datetime) -> None:
        upserts = [item for kind, item in batch if kind == UPSERT]
        removals = [item for kind, item in batch if kind == REMOVE]

        rows = []
        for listing in upserts:
            fingerprint = self._fingerprints.get(listing.id) or content_fingerprint(listing)
            rows.append(build_listing_row(listing, fingerprint, written_at))

        with self.database.session() as session:
            self.repository.upsert_documents(session, rows)
            self.repository.mark_removed(session, removals, removed_at=written_at)

    def write(self, diff: DiffResult) -> DiffResult:
        """
        Apply `diff`.

        Args:
            diff: Result from the diff engine

        Returns:
            The same DiffResult, now durable

        Raises:
            PersistenceError: A batch failed to commit (earlier batches stay committed)
        """
        self.commits = []
        self._fingerprints = diff.fingerprints
        operations = self._operations(diff)
        written_at = utcnow()

        for start in range(0, len(operations), self.max_operations):
            batch = operations[start:start + self.max_operations]
            try:
                self._commit_batch(batch, written_at)
            except Exception as e:
                committed = sum(self.commits)
                logger.error(
                    "listing_batch_failed",
                    batch=len(self.commits) + 1,
                    batches_committed=len(self.commits),
                    operations_committed=committed,
                    error=str(e)
                )
                raise PersistenceError(
                    f"Listing batch {len(self.commits) + 1} failed: {e}",
                    batches_committed=len(self.commits),
                    operations_committed=committed,
                ) from e

            self.commits.append(len(batch))
            logger.info("listing_batch_committed", batch=len(self.commits), operations=len(batch))

        logger.info(
            "listing_write_complete",
            batches=len(self.commits),
            operations=sum(self.commits),
            **diff.counts()
        )
        return diff
