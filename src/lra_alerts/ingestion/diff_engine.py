"""
Fingerprint & Diff Engine

Classifies freshly normalized listings against stored state as added,
changed, removed or unchanged.

The content fingerprint is the only equality test: two listings with the
same fingerprint are treated as identical without comparing fields. A hash
collision would therefore hide a real update; SHA-256 keeps that
probability negligible.
"""
import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from src.lra_alerts.db.repository import ListingRepository
from src.lra_alerts.models.listing import Listing
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

# Stored state per listing id: (content_hash, removed)
StoredState = Mapping[str, Tuple[Optional[str], bool]]


def _canonical_value(value: Any) -> Any:
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, dict):
        return {str(k): _canonical_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical_value(v) for v in value]
    return value


def canonical_json(record: Mapping[str, Any]) -> str:
    """Stable serialization: sorted keys, compact separators, integral floats as ints."""
    return json.dumps(
        _canonical_value(dict(record)),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def content_fingerprint(listing: Listing) -> str:
    """
    SHA-256 hex digest of the listing's full normalized field set.

    Derived bookkeeping (removed flag, timestamps, search keywords) is not
    part of the record and never affects the hash.
    """
    return hashlib.sha256(canonical_json(listing.to_record()).encode("utf-8")).hexdigest()


@dataclass
class DiffResult:
    """
    Three-way partition of one ingest run plus the unchanged count.

    Attributes:
        added: Listings not present in storage
        changed: Listings whose fingerprint differs, or that were flagged removed
        removed: Last-known versions of stored listings missing from the run
        unchanged: Number of listings identical to storage
        removed_ids: Ids of the removed listings
        fingerprints: Fingerprint of every added/changed listing
    """

    added: List[Listing] = field(default_factory=list)
    changed: List[Listing] = field(default_factory=list)
    removed: List[Listing] = field(default_factory=list)
    unchanged: int = 0
    removed_ids: List[str] = field(default_factory=list)
    fingerprints: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        """Listings in the incoming set (after duplicate collapse)."""
        return len(self.added) + len(self.changed) + self.unchanged

    @property
    def has_events(self) -> bool:
        return bool(self.added or self.changed or self.removed_ids)

    def counts(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "changed": len(self.changed),
            "removed": len(self.removed_ids),
            "unchanged": self.unchanged,
            "total": self.total,
        }


def dedupe_listings(incoming: Iterable[Listing]) -> List[Listing]:
    """
    Collapse listings sharing an id; the last occurrence wins.
    """
    by_id: Dict[str, Listing] = {}
    duplicates = 0
    for listing in incoming:
        if listing.id in by_id:
            duplicates += 1
            logger.warning("duplicate_listing_id", listing_id=listing.id)
        by_id[listing.id] = listing
    if duplicates:
        logger.warning("duplicate_listings_collapsed", duplicates=duplicates)
    return list(by_id.values())


def classify_listings(incoming: Iterable[Listing], stored_state: StoredState) -> DiffResult:
    """
    Classify incoming listings against stored state.

    Args:
        incoming: Normalized listings from the current run
        stored_state: Mapping of stored id -> (content_hash, removed)

    Returns:
        DiffResult with removed_ids filled in; `removed` is left empty for
        the caller to hydrate
    """
    result = DiffResult()
    listings = dedupe_listings(incoming)
    incoming_ids = {listing.id for listing in listings}

    for listing in listings:
        fingerprint = content_fingerprint(listing)
        stored = stored_state.get(listing.id)
        if stored is None:
            result.added.append(listing)
            result.fingerprints[listing.id] = fingerprint
            continue

        stored_hash, stored_removed = stored
        if stored_removed or stored_hash != fingerprint:
            result.changed.append(listing)
            result.fingerprints[listing.id] = fingerprint
        else:
            result.unchanged += 1

    result.removed_ids = sorted(
        listing_id
        for listing_id, (_, removed) in stored_state.items()
        if listing_id not in incoming_ids and not removed
    )
    return result


class ListingDiffEngine:
    """Computes the diff for a run against the listings table."""

    def __init__(self, repository: Optional[ListingRepository] = None):
        self.repository = repository or ListingRepository()

    def compute(self, session: Session, incoming: Iterable[Listing]) -> DiffResult:
        """
        Diff `incoming` against stored state.

        Loads the (id, content_hash, removed) projection, classifies, then
        loads full documents only for the removed ids.

        Args:
            session: Database session
            incoming: Normalized listings from the current run

        Returns:
            DiffResult with removed listings hydrated
        """
        stored_state = self.repository.get_state_projection(session)
        result = classify_listings(incoming, stored_state)

        documents = self.repository.get_documents(session, result.removed_ids)
        result.removed = [
            Listing.from_document(documents[listing_id])
            for listing_id in result.removed_ids
            if listing_id in documents
        ]

        logger.info("diff_computed", stored=len(stored_state), **result.counts())
        return result
