"""Tests for the lookup client and hierarchical resolver."""

import httpx
import pytest

from kinship.errors import ExternalLookupUnavailable
from kinship.locations.client import LocationLookupClient
from kinship.locations.resolver import DISTRICT, STATE, HierarchicalResolver, LevelIndex, is_numeric


def _client(handler):
    return LocationLookupClient(base_url="https://lookup.test/api", transport=httpx.MockTransport(handler))


class TestIsNumeric:
    """Tests for the code-vs-name heuristic."""

    @pytest.mark.parametrize("value", ["27", " 497", "-1", "12abc", 42])
    def test_numeric(self, value):
        assert is_numeric(value)

    @pytest.mark.parametrize("value", ["Rampur", "", None, "abc12"])
    def test_not_numeric(self, value):
        assert not is_numeric(value)


class TestLevelIndex:
    """Tests for the two-way code/name index."""

    def test_code_and_id_both_resolve(self):
        index = LevelIndex.from_records([{"code": "27", "id": 2700, "name": "Maharashtra"}])
        assert index.name_for("27") == "Maharashtra"
        assert index.name_for(2700) == "Maharashtra"

    def test_reverse_lookup_ignores_case(self):
        index = LevelIndex.from_records([{"code": "497", "name": "Pune"}])
        assert index.code_for(" PUNE ") == "497"
        assert index.code_for("Mumbai") is None

    def test_records_without_name_skipped(self):
        index = LevelIndex.from_records([{"code": "1"}, {"code": "2", "name": "Goa"}])
        assert index.name_for("1") is None
        assert index.name_for("2") == "Goa"

    def test_records_with_malformed_fields_skipped(self):
        """Should skip records whose name is not text and codes that are not scalars."""
        index = LevelIndex.from_records([
            {"code": "1", "name": 123},
            {"code": "2", "name": ["Goa"]},
            {"code": {"x": 1}, "id": 3, "name": "Kerala"},
        ])
        assert index.codes == {"3": "Kerala"}
        assert index.code_for("Kerala") == "3"


class TestLookupClient:
    """Tests for response handling."""

    def test_success_returns_records(self):
        client = _client(lambda r: httpx.Response(200, json={"success": True, "states": [{"code": "1", "name": "A"}]}))
        assert client.fetch_records("states", "states") == [{"code": "1", "name": "A"}]

    def test_all_options_failing_returns_none(self):
        client = _client(lambda r: httpx.Response(200, json={"success": False}))
        assert client.fetch_records("districts", "districts", [{"state_code": "1"}, {"state_id": "1"}]) is None

    def test_client_error_counts_as_reported_failure(self):
        client = _client(lambda r: httpx.Response(400, text="bad request"))
        assert client.fetch_records("districts", "districts", [{"state_code": "1"}]) is None

    def test_fallback_tried_after_server_error(self):
        """Should try the fallback parameter when the primary call fails with 5xx."""
        calls = []

        def handler(request):
            calls.append(dict(request.url.params))
            if "state_code" in request.url.params:
                return httpx.Response(503)
            return httpx.Response(200, json={"success": True, "districts": [{"code": "2701", "name": "Pune"}]})

        records = _client(handler).fetch_records("districts", "districts", [{"state_code": "27"}, {"state_id": "27"}])
        assert records == [{"code": "2701", "name": "Pune"}]
        assert calls == [{"state_code": "27"}, {"state_id": "27"}]

    def test_error_then_reported_failure_unavailable(self):
        """Should raise when no option succeeded and one could not be completed."""
        responses = iter([httpx.Response(503), httpx.Response(200, json={"success": False})])
        client = _client(lambda r: next(responses))
        with pytest.raises(ExternalLookupUnavailable):
            client.fetch_records("districts", "districts", [{"state_code": "1"}, {"state_id": "1"}])

    def test_server_error_unavailable(self):
        client = _client(lambda r: httpx.Response(500, json={"success": False}))
        with pytest.raises(ExternalLookupUnavailable):
            client.fetch_records("states", "states")

    def test_non_json_success_unavailable(self):
        client = _client(lambda r: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(ExternalLookupUnavailable):
            client.fetch_records("states", "states")

    def test_timeout_unavailable(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ExternalLookupUnavailable, match="timed out"):
            _client(slow).fetch_records("states", "states")


class TestHierarchicalResolver:
    """Tests for cached resolution."""

    def test_cache_keyed_by_parent(self):
        calls = []

        def handler(request):
            calls.append(dict(request.url.params))
            code = request.url.params.get("state_code")
            return httpx.Response(200, json={
                "success": True,
                "districts": [{"code": f"{code}01", "name": f"District of {code}"}],
            })

        resolver = HierarchicalResolver(_client(handler))
        assert resolver.resolve_name(DISTRICT, "2701", "27") == "District of 27"
        assert resolver.resolve_name(DISTRICT, "2701", "27") == "District of 27"
        assert resolver.resolve_name(DISTRICT, "2901", "29") == "District of 29"

        assert calls == [{"state_code": "27"}, {"state_code": "29"}]
        assert resolver.lookups == 2

    def test_failure_not_cached(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"success": True, "states": []})])
        resolver = HierarchicalResolver(_client(lambda r: next(responses)))

        with pytest.raises(ExternalLookupUnavailable):
            resolver.index(STATE)
        assert resolver.index(STATE).codes == {}

    def test_reported_failure_not_cached(self):
        """Should look the level up again after every option reported failure."""
        responses = iter([
            httpx.Response(200, json={"success": False}),
            httpx.Response(200, json={"success": False}),
            httpx.Response(200, json={"success": True, "districts": [{"code": "2701", "name": "Pune"}]}),
        ])
        resolver = HierarchicalResolver(_client(lambda r: next(responses)))

        assert resolver.resolve_name(DISTRICT, "2701", "27") is None
        assert resolver.resolve_name(DISTRICT, "2701", "27") == "Pune"
        assert resolver.lookups == 2

    def test_unknown_code_with_text_value(self):
        resolver = HierarchicalResolver(_client(lambda r: httpx.Response(200, json={"success": True, "states": []})))
        assert resolver.resolve_name(STATE, "Goa") == "Goa"
        assert resolver.resolve_name(STATE, "99") is None
        assert resolver.resolve_code(STATE, "99") == "99"
