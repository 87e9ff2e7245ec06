"""
Tests for Settings
"""
import pytest

from config.settings import Settings


class TestSettings:
    """Tests for settings parsing and fallbacks."""

    @pytest.mark.parametrize("value", [0, -5, "abc", None])
    def test_bad_sizes_fall_back_to_defaults(self, value):
        config = Settings(arcgis_page_size=value, listing_batch_max_operations=value)

        assert config.arcgis_page_size == 2000
        assert config.listing_batch_max_operations == 450

    def test_sizes_from_environment(self, monkeypatch):
        monkeypatch.setenv("ARCGIS_BATCH_SIZE", "250")
        monkeypatch.setenv("ALERT_MAX_WORKERS", "3")

        config = Settings()

        assert config.arcgis_batch_size == 250
        assert config.alert_max_workers == 3

    @pytest.mark.parametrize("value,expected", [("STATIC", "static"), (" none ", "none"), ("kerberos", "oauth"), ("", "oauth")])
    def test_auth_mode(self, value, expected):
        assert Settings(arcgis_auth_mode=value).arcgis_auth_mode == expected

    def test_field_list_is_sanitized(self):
        config = Settings(arcgis_fields=" ADDRESS, ParcelId,address,, WARD ", arcgis_neighborhood_field="NEIGHBORHOOD_NUM")

        assert config.arcgis_field_list == ["OBJECTID", "ADDRESS", "ParcelId", "WARD", "NEIGHBORHOOD_NUM"]

    def test_status_lists(self):
        config = Settings(arcgis_status_available="Available", arcgis_status_coming="PROPNS| PROPNS Available |")

        assert config.available_statuses == ["Available"]
        assert config.coming_soon_statuses == ["PROPNS", "PROPNS Available"]

    def test_no_unused_debug_flag(self):
        assert "debug" not in Settings.model_fields
        assert Settings(environment="production").environment == "production"
