"""
Tests for SubscriptionService
"""
import pytest

from src.lra_alerts.alerts.subscriptions import SubscriptionService, normalize_subscription
from src.lra_alerts.errors import SubscriptionError
from src.lra_alerts.models.listing import Listing, SubscriptionType


class TestNormalizeSubscription:
    """Tests for request validation."""

    def test_zip_is_normalized(self):
        assert normalize_subscription("u1", "zip", "63104-1234") == ("u1", SubscriptionType.ZIP, "63104")

    @pytest.mark.parametrize("value", ["05", "5.0", 5, 5.0, " 5 "])
    def test_ward_matches_listing_rendering(self, value):
        _, _, normalized = normalize_subscription("u1", "ward", value)
        assert normalized == Listing(id="P1", ward=5.0).dimension_value(SubscriptionType.WARD)

    def test_type_is_case_insensitive(self):
        assert normalize_subscription("u1", " Parcel ", " 10203 ")[1:] == (SubscriptionType.PARCEL, "10203")

    def test_enum_member_is_accepted(self):
        assert normalize_subscription("u1", SubscriptionType.WARD, "05") == ("u1", SubscriptionType.WARD, "5")

    def test_unknown_type(self):
        with pytest.raises(SubscriptionError):
            normalize_subscription("u1", "city", "St. Louis")

    @pytest.mark.parametrize("user_id,value", [(None, "63104"), ("  ", "63104"), ("u1", ""), ("u1", None)])
    def test_missing_user_or_value(self, user_id, value):
        with pytest.raises(SubscriptionError):
            normalize_subscription(user_id, "zip", value)


class TestSubscriptionService:
    """Tests for create/remove/list."""

    def test_create_and_list(self, database):
        service = SubscriptionService(database)

        created = service.create_alert("u1", "zip", "63104")
        service.create_alert("u1", "ward", "7")
        service.create_alert("u2", "zip", "63110")

        assert created["id"] == "u1_zip_63104"
        assert created["createdAt"] is not None
        assert service.get_alerts("u1") == {
            "zip": ["63104"],
            "parcel": [],
            "ward": ["7"],
            "neighborhood": [],
        }

    def test_create_twice_is_a_no_op(self, database):
        service = SubscriptionService(database)

        service.create_alert("u1", "neighborhood", "Soulard")
        service.create_alert("u1", "neighborhood", "Soulard")

        assert service.get_alerts("u1")["neighborhood"] == ["Soulard"]

    def test_remove(self, database):
        service = SubscriptionService(database)
        service.create_alert("u1", "ward", "05")

        assert service.remove_alert("u1", "ward", 5) is True
        assert service.remove_alert("u1", "ward", 5) is False
        assert service.get_alerts("u1")["ward"] == []

    def test_unknown_user_has_empty_groups(self, database):
        assert SubscriptionService(database).get_alerts("nobody") == {
            "zip": [], "parcel": [], "ward": [], "neighborhood": []
        }

    def test_enum_members_round_trip_through_service(self, database):
        service = SubscriptionService(database)

        created = service.create_alert("u1", SubscriptionType.ZIP, "63104")

        assert created["id"] == "u1_zip_63104"
        assert created["type"] == "zip"
        assert service.get_alerts("u1")["zip"] == ["63104"]
        assert service.remove_alert("u1", SubscriptionType.ZIP, "63104") is True
        assert service.get_alerts("u1")["zip"] == []
