"""
Selection Aggregator

Recomputes the distinct values offered by the search filter menus from
the non-removed listings, and overwrites the stored snapshot.
"""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from src.lra_alerts.db.repository import ExportSnapshotRepository, ListingRepository
from src.lra_alerts.models.listing import stringify_value
from src.lra_alerts.transformers.field_normalizer import coerce_number
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

# snapshot key -> (listing column, numeric sort)
SELECTION_FIELDS = {
    "knownZips": ("zip", False),
    "knownNeighborhoods": ("neighborhood", False),
    "knownWards": ("ward", True),
    "knownUsages": ("usage", False),
    "knownStatuses": ("status", False),
    "knownPropertyTypes": ("property_type", False),
}


def _numeric_key(value: str):
    number = coerce_number(value)
    return (number is None, number if number is not None else 0.0, value)


def distinct_strings(values: Iterable[Any], numeric: bool = False) -> List[str]:
    """
    Stringify, drop falsy values, dedupe and sort.

    Args:
        values: Raw column values
        numeric: Sort by numeric value instead of lexicographically

    Returns:
        Sorted distinct strings
    """
    strings = {stringify_value(value) for value in values if value}
    strings.discard(None)
    if numeric:
        return sorted(strings, key=_numeric_key)
    return sorted(strings)


class SelectionAggregator:
    """Builds and stores the selections snapshot."""

    def __init__(
        self,
        database,
        listing_repository: Optional[ListingRepository] = None,
        snapshot_repository: Optional[ExportSnapshotRepository] = None,
    ):
        self.database = database
        self.listing_repository = listing_repository or ListingRepository()
        self.snapshot_repository = snapshot_repository or ExportSnapshotRepository()

    def compute(self, session: Session) -> Dict[str, List[str]]:
        return {
            key: distinct_strings(self.listing_repository.distinct_values(session, column), numeric)
            for key, (column, numeric) in SELECTION_FIELDS.items()
        }

    def refresh(self) -> Dict[str, List[str]]:
        """
        Recompute the snapshot from committed state and overwrite it.

        Returns:
            The new selections
        """
        with self.database.session() as session:
            selections = self.compute(session)
            self.snapshot_repository.save_selections(session, selections)

        logger.info(
            "selections_refreshed",
            **{key: len(values) for key, values in selections.items()}
        )
        return selections
