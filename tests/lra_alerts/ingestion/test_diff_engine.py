"""
Tests for the fingerprint and diff engine
"""
import pytest

from src.lra_alerts.db.repository import ListingRepository
from src.lra_alerts.etl.batch_writer import ListingBatchWriter
from src.lra_alerts.ingestion.diff_engine import (
    ListingDiffEngine,
    canonical_json,
    classify_listings,
    content_fingerprint,
)
from src.lra_alerts.models.listing import Listing
from src.lra_alerts.transformers.field_normalizer import FieldNormalizer


def _listing(listing_id, **fields):
    values = {
        "id": listing_id,
        "parcel_id": listing_id,
        "address": f"{listing_id} MAIN ST",
        "neighborhood": "10",
        "ward": 5.0,
        "zip": "63104",
        "sqft": 1000.0,
        "usage": "Residential",
        "status": "Available",
    }
    values.update(fields)
    return Listing(**values)


class TestContentFingerprint:
    """Tests for fingerprint determinism."""

    def test_same_input_same_hash(self):
        attrs = {"ParcelId": "1", "ADDRESS": "1 MAIN ST", "WARD": 5, "ZipCode": "63104", "SQFT": 900}
        normalizer = FieldNormalizer()

        assert content_fingerprint(normalizer.normalize(attrs)) == content_fingerprint(normalizer.normalize(attrs))

    def test_hash_is_sha256_hex(self):
        fingerprint = content_fingerprint(_listing("P1"))
        assert len(fingerprint) == 64
        int(fingerprint, 16)

    @pytest.mark.parametrize("field,value", [
        ("address", "2 MAIN ST"),
        ("neighborhood", "11"),
        ("ward", 6.0),
        ("zip", "63110"),
        ("sqft", 1001.0),
        ("usage", "Commercial"),
        ("status", "PROPNS"),
        ("parcel_id", "OTHER"),
    ])
    def test_any_field_change_changes_hash(self, field, value):
        assert content_fingerprint(_listing("P1")) != content_fingerprint(_listing("P1", **{field: value}))

    def test_raw_field_change_changes_hash(self):
        before = _listing("P1", raw={"LRA_PRICING": 1500})
        after = _listing("P1", raw={"LRA_PRICING": 1750})
        assert content_fingerprint(before) != content_fingerprint(after)

    def test_key_order_does_not_matter(self):
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})

    def test_integral_floats_hash_like_ints(self):
        """A source switching 5 to 5.0 is not a change."""
        assert content_fingerprint(_listing("P1", raw={"Acres": 5})) == content_fingerprint(_listing("P1", raw={"Acres": 5.0}))


class TestClassifyListings:
    """Tests for the pure classifier."""

    def test_unchanged_plus_new(self):
        """P1 unchanged, P2 new."""
        p1 = _listing("P1")
        stored = {"P1": (content_fingerprint(p1), False)}

        diff = classify_listings([p1, _listing("P2")], stored)

        assert [listing.id for listing in diff.added] == ["P2"]
        assert diff.changed == []
        assert diff.removed_ids == []
        assert diff.unchanged == 1

    def test_missing_listing_is_removed(self):
        p1, p2 = _listing("P1"), _listing("P2")
        stored = {
            "P1": (content_fingerprint(p1), False),
            "P2": (content_fingerprint(p2), False),
        }

        diff = classify_listings([p2], stored)

        assert diff.removed_ids == ["P1"]
        assert diff.unchanged == 1
        assert diff.added == [] and diff.changed == []

    def test_fingerprint_difference_is_changed(self):
        stored = {"P1": (content_fingerprint(_listing("P1")), False)}

        diff = classify_listings([_listing("P1", sqft=2000.0)], stored)

        assert [listing.id for listing in diff.changed] == ["P1"]
        assert diff.fingerprints["P1"] == content_fingerprint(_listing("P1", sqft=2000.0))

    def test_reappearing_removed_listing_is_changed(self):
        """A listing flagged removed that returns unchanged is changed, not added."""
        p1 = _listing("P1")
        stored = {"P1": (content_fingerprint(p1), True)}

        diff = classify_listings([p1], stored)

        assert [listing.id for listing in diff.changed] == ["P1"]
        assert diff.added == []
        assert diff.unchanged == 0

    def test_already_removed_listing_is_not_removed_again(self):
        stored = {"P1": ("h1", True)}

        diff = classify_listings([], stored)

        assert diff.removed_ids == []

    def test_partition_is_complete(self):
        """Every stored non-removed id and every incoming id lands in exactly one class."""
        kept, edited, gone = _listing("KEEP"), _listing("EDIT"), _listing("GONE")
        stored = {
            "KEEP": (content_fingerprint(kept), False),
            "EDIT": (content_fingerprint(edited), False),
            "GONE": (content_fingerprint(gone), False),
            "BACK": ("old", True),
            "DEAD": ("old", True),
        }
        incoming = [kept, _listing("EDIT", usage="Commercial"), _listing("BACK"), _listing("NEW")]

        diff = classify_listings(incoming, stored)

        added = {listing.id for listing in diff.added}
        changed = {listing.id for listing in diff.changed}
        removed = set(diff.removed_ids)
        assert added == {"NEW"}
        assert changed == {"EDIT", "BACK"}
        assert removed == {"GONE"}
        assert diff.unchanged == 1
        assert not (added & changed or added & removed or changed & removed)
        assert diff.counts() == {"added": 1, "changed": 2, "removed": 1, "unchanged": 1, "total": 4}

    def test_duplicate_incoming_ids_collapse_last_wins(self):
        diff = classify_listings([_listing("P1", sqft=1.0), _listing("P1", sqft=2.0)], {})

        assert len(diff.added) == 1
        assert diff.added[0].sqft == 2.0

    def test_generated_ids_are_always_added(self):
        listing = FieldNormalizer().normalize({"ADDRESS": "1 NOWHERE"})

        diff = classify_listings([listing], {"P1": ("h", False)})

        assert diff.added == [listing]


class TestListingDiffEngine:
    """Tests for diffing against the database."""

    def test_removed_listings_are_hydrated(self, database):
        writer = ListingBatchWriter(database)
        engine = ListingDiffEngine()
        with database.session() as session:
            first = engine.compute(session, [_listing("P1"), _listing("P2", address="9 ELM AVE")])
        writer.write(first)

        with database.session() as session:
            second = engine.compute(session, [_listing("P1")])

        assert second.unchanged == 1
        assert second.removed_ids == ["P2"]
        assert len(second.removed) == 1
        assert second.removed[0].address == "9 ELM AVE"
        assert second.removed[0].zip == "63104"

    def test_second_identical_run_is_a_no_op(self, database):
        """Idempotence: the same input twice yields only unchanged records."""
        incoming = [_listing(f"P{i}") for i in range(5)]
        engine = ListingDiffEngine()

        with database.session() as session:
            first = engine.compute(session, incoming)
        ListingBatchWriter(database).write(first)

        with database.session() as session:
            second = engine.compute(session, incoming)

        assert len(first.added) == 5
        assert second.counts() == {"added": 0, "changed": 0, "removed": 0, "unchanged": 5, "total": 5}

    def test_projection_comes_from_repository(self, database):
        with database.session() as session:
            assert ListingRepository().get_state_projection(session) == {}
