"""Unit tests for geocoding.py — Nominatim lookups and request tickets.

All HTTP is mocked at the requests.Session level.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from discovery_config import GeocoderConfig
from geocoding import NominatimGeocoder, RequestGate
from models import Position
from nb_trace import TraceContext, clear_trace, set_trace


def _mock_response(status_code=200, json_data=None):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("No JSON")
    return resp


@pytest.fixture()
def geocoder():
    return NominatimGeocoder(GeocoderConfig(
        base_url="https://geocode.test",
        user_agent="NearBite-tests/1.0",
        country="Uganda",
        timeout_s=5.0,
    ))


class TestResolve:
    def test_first_result_parsed(self, geocoder):
        resp = _mock_response(200, [
            {"lat": "0.3103", "lon": "32.5816", "display_name": "Kampala Road"},
            {"lat": "9.0", "lon": "9.0"},
        ])
        with patch.object(requests.Session, "get", return_value=resp) as mock_get:
            result = geocoder.resolve("Plot 4 Kampala Road", "Kampala")

        assert result == Position(0.3103, 32.5816)
        mock_get.assert_called_once()
        _, kwargs = mock_get.call_args
        assert kwargs["params"] == {
            "q": "Plot 4 Kampala Road, Kampala, Uganda",
            "format": "json",
            "limit": 1,
        }
        assert kwargs["timeout"] == 5.0
        assert mock_get.call_args[0][0] == "https://geocode.test/search"

    def test_sends_user_agent(self, geocoder):
        assert geocoder.session.headers["User-Agent"] == "NearBite-tests/1.0"

    def test_empty_address_makes_no_request(self, geocoder):
        with patch.object(requests.Session, "get") as mock_get:
            assert geocoder.resolve("   ", "Kampala") is None
        mock_get.assert_not_called()

    def test_query_skips_blank_locality(self, geocoder):
        assert geocoder.build_query("Main St", "") == "Main St, Uganda"

    def test_empty_result_set(self, geocoder):
        with patch.object(requests.Session, "get", return_value=_mock_response(200, [])):
            assert geocoder.resolve("Nowhere", "Kampala") is None

    def test_http_error(self, geocoder):
        with patch.object(requests.Session, "get", return_value=_mock_response(503, [])):
            assert geocoder.resolve("Main St", "Kampala") is None

    def test_non_json_body(self, geocoder):
        with patch.object(requests.Session, "get", return_value=_mock_response(200)):
            assert geocoder.resolve("Main St", "Kampala") is None

    def test_unparseable_coordinates(self, geocoder):
        resp = _mock_response(200, [{"lat": "north", "lon": "32.5"}])
        with patch.object(requests.Session, "get", return_value=resp):
            assert geocoder.resolve("Main St", "Kampala") is None

    def test_network_error_not_raised_or_retried(self, geocoder):
        with patch.object(
            requests.Session, "get", side_effect=requests.ConnectionError("down"),
        ) as mock_get:
            assert geocoder.resolve("Main St", "Kampala") is None
        assert mock_get.call_count == 1

    def test_timeout(self, geocoder):
        with patch.object(requests.Session, "get", side_effect=requests.Timeout("slow")):
            assert geocoder.resolve("Main St", "Kampala") is None


class TestTracing:
    def test_success_recorded(self, geocoder):
        ctx = TraceContext(trace_id="geo")
        set_trace(ctx)
        try:
            resp = _mock_response(200, [{"lat": "0.31", "lon": "32.58"}])
            with patch.object(requests.Session, "get", return_value=resp):
                geocoder.resolve("Main St", "Kampala")
        finally:
            clear_trace()

        assert len(ctx.api_calls) == 1
        call = ctx.api_calls[0]
        assert (call.service, call.endpoint, call.status_code, call.provider_status) == (
            "nominatim", "search", 200, "OK",
        )

    def test_zero_results_and_timeout_recorded(self, geocoder):
        ctx = TraceContext(trace_id="geo")
        set_trace(ctx)
        try:
            with patch.object(requests.Session, "get", return_value=_mock_response(200, [])):
                geocoder.resolve("A", "Kampala")
            with patch.object(requests.Session, "get", side_effect=requests.Timeout("slow")):
                geocoder.resolve("B", "Kampala")
        finally:
            clear_trace()

        assert [c.provider_status for c in ctx.api_calls] == ["ZERO_RESULTS", "TIMEOUT"]


class TestRequestGate:
    def test_latest_ticket_is_current(self):
        gate = RequestGate()
        first = gate.issue()
        second = gate.issue()
        assert not gate.is_current(first)
        assert gate.is_current(second)

    def test_invalidate_stales_everything(self):
        gate = RequestGate()
        ticket = gate.issue()
        gate.invalidate()
        assert not gate.is_current(ticket)
        assert gate.is_current(gate.issue())
