"""
Tests for ArcGISClient

Paging, batching, retry and auth-refresh behaviour against a mocked
requests session.
"""
import pytest
import requests
from unittest.mock import MagicMock

from config.settings import Settings
from src.lra_alerts.errors import (
    AuthenticationError,
    SourceError,
    SourceUnavailableError,
)
from src.lra_alerts.scrapers.arcgis_client import ArcGISClient, build_where


def _response(payload=None, status_code=200, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload
    return response


def _config(**overrides):
    values = {
        "arcgis_layer_url": "https://example.com/arcgis/rest/services/LRA/FeatureServer/0",
        "arcgis_auth_mode": "none",
        "arcgis_page_size": 2,
        "arcgis_batch_size": 2,
        "arcgis_max_concurrency": 2,
    }
    values.update(overrides)
    return Settings(**values)


def _client(session, auth=None, **overrides):
    return ArcGISClient(config=_config(**overrides), auth=auth, session=session, sleep=MagicMock())


def _feature(object_id):
    return {"attributes": {"OBJECTID": object_id, "ParcelId": f"P{object_id}", "ADDRESS": f"{object_id} MAIN ST"}}


class TestBuildWhere:
    """Tests for the status filter."""

    def test_includes_coming_soon(self):
        where = build_where(["Available"], ["PROPNS", "PROPNS Available"], True)
        assert where == "Status IN ('Available','PROPNS','PROPNS Available')"

    def test_excludes_coming_soon(self):
        assert build_where(["Available"], ["PROPNS"], False) == "Status IN ('Available')"

    def test_quotes_are_escaped(self):
        assert build_where(["Owner's Hold"], [], False) == "Status IN ('Owner''s Hold')"

    def test_empty_status_set(self):
        assert build_where([], ["PROPNS"], False) == "1=1"

    def test_client_uses_settings(self):
        client = _client(MagicMock(), arcgis_include_coming_soon=False)
        assert client.build_where() == "Status IN ('Available')"


class TestFetchObjectIds:
    """Tests for identifier paging."""

    def test_pages_until_short_page(self):
        session = MagicMock()
        session.post.side_effect = [
            _response({"objectIds": [1, 2]}),
            _response({"objectIds": [3]}),
        ]

        ids = _client(session).fetch_object_ids("1=1")

        assert ids == [1, 2, 3]
        offsets = [call[1]["data"]["resultOffset"] for call in session.post.call_args_list]
        assert offsets == ["0", "2"]

    def test_exceeded_transfer_limit_continues_paging(self):
        """A truncated page still pages on when the server flags more results."""
        session = MagicMock()
        session.post.side_effect = [
            _response({"objectIds": [1], "exceededTransferLimit": True}),
            _response({"objectIds": [2]}),
        ]

        assert _client(session).fetch_object_ids("1=1") == [1, 2]
        assert session.post.call_count == 2

    def test_stalled_paging_stops(self):
        session = MagicMock()
        session.post.return_value = _response({"objectIds": [1, 2], "exceededTransferLimit": True})

        assert _client(session).fetch_object_ids("1=1") == [1, 2]
        assert session.post.call_count == 2

    def test_requests_ids_only_in_objectid_order(self):
        session = MagicMock()
        session.post.return_value = _response({"objectIds": []})

        _client(session).fetch_object_ids("Status IN ('Available')")

        data = session.post.call_args[1]["data"]
        assert data["returnIdsOnly"] == "true"
        assert data["orderByFields"] == "OBJECTID"
        assert data["where"] == "Status IN ('Available')"
        assert session.post.call_args[0][0].endswith("/FeatureServer/0/query")


class TestFetchListings:
    """Tests for the two-phase fetch."""

    def _routing_session(self, object_ids):
        session = MagicMock()

        def post(url, data=None, headers=None, timeout=None):
            if data.get("returnIdsOnly") == "true":
                offset = int(data["resultOffset"])
                size = int(data["resultRecordCount"])
                return _response({"objectIds": object_ids[offset:offset + size]})
            requested = [int(oid) for oid in data["objectIds"].split(",")]
            return _response({"features": [_feature(oid) for oid in requested]})

        session.post.side_effect = post
        return session

    def test_fetches_and_normalizes_in_id_order(self):
        session = self._routing_session([1, 2, 3, 4, 5])

        listings = _client(session).fetch_listings()

        assert [listing.id for listing in listings] == ["P1", "P2", "P3", "P4", "P5"]
        assert listings[0].address == "1 MAIN ST"
        assert listings[0].raw["OBJECTID"] == 1

    def test_attribute_batches_respect_batch_size(self):
        session = self._routing_session([1, 2, 3, 4, 5])

        _client(session).fetch_listings()

        batches = [
            call[1]["data"]["objectIds"]
            for call in session.post.call_args_list
            if "objectIds" in call[1]["data"]
        ]
        assert sorted(batches) == ["1,2", "3,4", "5"]

    def test_empty_inventory(self):
        session = self._routing_session([])
        assert _client(session).fetch_listings() == []

    def test_batch_failure_propagates(self):
        session = MagicMock()
        session.post.side_effect = [
            _response({"objectIds": [1]}),
            _response({"error": {"code": 400, "message": "Invalid query"}}),
        ]

        with pytest.raises(SourceError):
            _client(session).fetch_listings()


class TestRetryAndErrors:
    """Tests for transient failure handling."""

    def test_server_error_is_retried(self):
        session = MagicMock()
        session.post.side_effect = [
            _response(status_code=503, text="unavailable"),
            requests.Timeout("read timed out"),
            _response({"objectIds": [1]}),
        ]

        assert _client(session).fetch_object_ids("1=1") == [1]
        assert session.post.call_count == 3

    def test_non_json_body_is_retried(self):
        session = MagicMock()
        bad = _response(text="<html>")
        bad.json.side_effect = ValueError("no json")
        session.post.side_effect = [bad, _response({"objectIds": []})]

        assert _client(session).fetch_object_ids("1=1") == []

    def test_retries_exhausted(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=502, text="bad gateway")

        with pytest.raises(SourceUnavailableError):
            _client(session, arcgis_max_retries=2).fetch_object_ids("1=1")

        assert session.post.call_count == 3

    def test_client_error_is_not_retried(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=400, text="bad request")

        with pytest.raises(SourceError):
            _client(session).fetch_object_ids("1=1")

        assert session.post.call_count == 1

    def test_arcgis_server_error_code_is_retried(self):
        session = MagicMock()
        session.post.side_effect = [
            _response({"error": {"code": 500, "message": "Internal"}}),
            _response({"objectIds": [9]}),
        ]

        assert _client(session).fetch_object_ids("1=1") == [9]


class TestAuthRefresh:
    """Tests for the forced-refresh path."""

    def _auth(self):
        auth = MagicMock()
        auth.supports_refresh = True
        auth.get_token.return_value = "old-token"
        auth.invalidate.return_value = "new-token"
        return auth

    def test_invalid_token_refreshes_once_and_retries(self):
        session = MagicMock()
        session.post.side_effect = [
            _response({"error": {"code": 498, "message": "Invalid token"}}),
            _response({"objectIds": [1]}),
        ]
        auth = self._auth()

        assert _client(session, auth=auth).fetch_object_ids("1=1") == [1]

        auth.invalidate.assert_called_once_with("old-token")
        headers = [call[1]["headers"]["Authorization"] for call in session.post.call_args_list]
        assert headers == ["Bearer old-token", "Bearer new-token"]

    def test_repeated_auth_failure_surfaces(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=401, text="unauthorized")
        auth = self._auth()

        with pytest.raises(AuthenticationError):
            _client(session, auth=auth).fetch_object_ids("1=1")

        assert session.post.call_count == 2
        auth.invalidate.assert_called_once()

    def test_static_token_is_not_refreshed(self):
        session = MagicMock()
        session.post.return_value = _response({"error": {"code": 499, "message": "Token required"}})
        auth = self._auth()
        auth.supports_refresh = False

        with pytest.raises(AuthenticationError):
            _client(session, auth=auth).fetch_object_ids("1=1")

        auth.invalidate.assert_not_called()
        assert session.post.call_count == 1

    def test_token_sent_as_form_field(self):
        session = MagicMock()
        session.post.return_value = _response({"objectIds": []})

        _client(session, auth=self._auth(), arcgis_token_as_param=True).fetch_object_ids("1=1")

        call = session.post.call_args
        assert call[1]["data"]["token"] == "old-token"
        assert "Authorization" not in call[1]["headers"]


class TestFetchNeighborhoodNames:
    """Tests for distinct neighborhood lookup."""

    def test_names_are_trimmed_deduped_and_sorted(self):
        session = MagicMock()
        session.post.return_value = _response({"features": [
            {"attributes": {"NEIGHBORHOOD_NUM": " Soulard "}},
            {"attributes": {"NEIGHBORHOOD_NUM": "Benton Park"}},
            {"attributes": {"NEIGHBORHOOD_NUM": None}},
        ]})
        session.post.side_effect = [
            session.post.return_value,
            _response({"features": [{"attributes": {"NEIGHBORHOOD_NUM": "Soulard"}}]}),
        ]

        names = _client(session).fetch_neighborhood_names()

        assert names == ["Benton Park", "Soulard"]
        assert session.post.call_args_list[0][1]["data"]["returnDistinctValues"] == "true"


class TestMalformedFeatures:
    """Tests for feature payloads that do not follow the layer schema."""

    def test_non_dict_features_are_skipped(self):
        session = MagicMock()
        session.post.side_effect = [
            _response({"objectIds": [1, 2]}),
            _response({"features": [_feature(1), "garbage", None, {"attributes": ["not", "a", "map"]}]}),
        ]

        listings = _client(session).fetch_listings()

        assert len(listings) == 2
        assert listings[0].id == "P1"
        assert listings[1].has_generated_id
