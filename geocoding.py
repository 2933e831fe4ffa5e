"""
Address geocoding via a Nominatim-compatible search service.

One lookup per call, first result only, no retries. Failures (network,
HTTP error, empty result, unparseable coordinates) are logged and reported
as None so callers can keep their existing coordinates.

Several lookups may be in flight while an owner edits an address;
RequestGate hands out tickets so only the newest result is applied.
"""

import time
import logging
from typing import Optional

import requests

from discovery_config import CONFIG, GeocoderConfig
from models import Position, parse_coordinate
from nb_trace import get_trace

logger = logging.getLogger(__name__)


class NominatimGeocoder:
    """Client for the Nominatim /search endpoint."""

    def __init__(self, config: Optional[GeocoderConfig] = None):
        self.config = config or CONFIG.geocoder
        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        })

    def build_query(self, address_text: str, locality: str = "") -> str:
        parts = [address_text.strip(), (locality or "").strip(), self.config.country]
        return ", ".join(p for p in parts if p)

    def _traced_get(self, params: dict) -> Optional[list]:
        """GET /search and return the decoded JSON list, or None on failure."""
        trace = get_trace()
        url = f"{self.config.base_url}/search"
        t0 = time.time()
        try:
            resp = self.session.get(url, params=params, timeout=self.config.timeout_s)
        except requests.Timeout:
            logger.warning("Geocoder timed out for %r", params.get("q"))
            if trace:
                trace.record_api_call(
                    service="nominatim",
                    endpoint="search",
                    elapsed_ms=(time.time() - t0) * 1000,
                    status_code=0,
                    provider_status="TIMEOUT",
                )
            return None
        except requests.RequestException:
            logger.warning("Geocoder request failed for %r", params.get("q"), exc_info=True)
            if trace:
                trace.record_api_call(
                    service="nominatim",
                    endpoint="search",
                    elapsed_ms=(time.time() - t0) * 1000,
                    status_code=0,
                    provider_status="ERROR",
                )
            return None

        elapsed_ms = (time.time() - t0) * 1000
        data = None
        if resp.ok:
            try:
                data = resp.json()
            except ValueError:
                logger.warning("Geocoder returned non-JSON body for %r", params.get("q"))

        if trace:
            if not resp.ok or not isinstance(data, list):
                status = "ERROR"
            else:
                status = "OK" if data else "ZERO_RESULTS"
            trace.record_api_call(
                service="nominatim",
                endpoint="search",
                elapsed_ms=elapsed_ms,
                status_code=resp.status_code,
                provider_status=status,
            )

        if not resp.ok:
            logger.warning("Geocoder returned %d for %r", resp.status_code, params.get("q"))
            return None
        if not isinstance(data, list):
            return None
        return data

    def resolve(self, address_text: str, locality: str = "") -> Optional[Position]:
        """Resolve a free-text address to a Position, or None."""
        if not address_text or not address_text.strip():
            return None

        query = self.build_query(address_text, locality)
        data = self._traced_get({"q": query, "format": "json", "limit": 1})
        if not data:
            if data is not None:
                logger.info("No geocode result for %r", query)
            return None

        first = data[0] if isinstance(data[0], dict) else {}
        lat = parse_coordinate(first.get("lat"), 90.0)
        lng = parse_coordinate(first.get("lon"), 180.0)
        if lat is None or lng is None:
            logger.warning("Unparseable geocode result for %r: %r", query, first)
            return None

        return Position(lat, lng)


class RequestGate:
    """Issues increasing tickets; only the latest ticket is current."""

    def __init__(self):
        self._latest = 0

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, ticket: int) -> bool:
        return ticket == self._latest

    def invalidate(self):
        """Make every outstanding ticket stale."""
        self._latest += 1
