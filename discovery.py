#!/usr/bin/env python3
"""
NearBite page state: the visitor's discovery feed and the owner's
listing editor.

DiscoveryFeed mirrors the home page: filter chips and search narrow the
listing collection, and when the visitor has shared their position the
result is re-ranked nearest first and pushed to the browse map.

ListingEditor mirrors the owner dashboard: the editable pin and the
"sync map to address" geocode both write the draft coordinates that are
eventually handed to persistence.

Usage:
    python discovery.py listings.json
    python discovery.py listings.json --near 0.3136,32.5811 --category pilau
    python discovery.py listings.json --district Kampala --map kampala.png
"""

import sys
import json
import base64
import logging
import uuid
import argparse
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from discovery_config import CONFIG
from geocoding import NominatimGeocoder, RequestGate
from geolocation import FixedLocationProvider, GeolocationService, GeoState
from listing_filter import FilterCriteria, apply_filters
from map_generator import generate_listing_map
from map_sync import (
    INTERACTIVE_SOURCES,
    BrowseMapController,
    MapWidget,
    PinMapController,
)
from models import Listing, ListingSource, Position, parse_coordinate
from nb_trace import TraceContext, clear_trace, set_trace
from opening_hours import format_hours, listing_is_open

logger = logging.getLogger(__name__)

GEOCODE_OK_NOTICE = "Map updated to address"
GEOCODE_FAIL_NOTICE = "Couldn't find that address. Drag the pin or tap the map instead."
LOAD_FAIL_NOTICE = "Couldn't load restaurants. Please try again."


# =============================================================================
# Visitor feed
# =============================================================================

class DiscoveryFeed:
    """Filtered, optionally distance-ranked listing feed for visitors."""

    def __init__(
        self,
        geolocation: GeolocationService,
        listings: Iterable[Listing] = (),
        browse_map: Optional[BrowseMapController] = None,
    ):
        self.geolocation = geolocation
        self.listings: List[Listing] = list(listings)
        self.browse_map = browse_map
        self.criteria = FilterCriteria()
        self.load_error: Optional[str] = None

    def load(self, source: ListingSource) -> int:
        """Replace the collection from the persistence collaborator."""
        try:
            records = list(source.list_listings())
        except Exception:
            logger.warning("Listing source failed", exc_info=True)
            self.listings = []
            self.load_error = LOAD_FAIL_NOTICE
            self.refresh_map()
            return 0

        self.listings = [Listing.from_record(r) for r in records]
        self.load_error = None
        logger.info("Loaded %d listings", len(self.listings))
        self.refresh_map()
        return len(self.listings)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def displayed(self) -> List[Listing]:
        filtered = apply_filters(self.listings, self.criteria)
        if self.geolocation.is_active:
            return self.geolocation.sort_by_distance(filtered)
        return filtered

    def featured(self) -> Optional[Listing]:
        shown = self.displayed()
        for listing in shown:
            if listing.featured:
                return listing
        return shown[0] if shown else None

    def is_open(self, listing: Listing, when: Optional[datetime] = None) -> bool:
        return listing_is_open(listing, when)

    def gps_message(self) -> Optional[str]:
        return self.geolocation.error_message

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    def select_district(self, district: str):
        # Picking a district replaces "near me" ranking
        self.criteria = self.criteria.with_district(district)
        self.geolocation.clear_position()
        self.refresh_map()

    def select_category(self, category: str):
        self.criteria = self.criteria.with_category(category)
        self.refresh_map()

    def search(self, query: str):
        self.criteria = self.criteria.with_query(query)
        self.refresh_map()

    def toggle_gps(self) -> GeoState:
        if self.geolocation.is_active:
            self.geolocation.clear_position()
        else:
            self.geolocation.request_position()
        self.refresh_map()
        return self.geolocation.state

    def refresh_map(self):
        if self.browse_map is None or not self.browse_map.mounted:
            return
        self.browse_map.set_listings(self.displayed())
        self.browse_map.set_user_position(self.geolocation.position)


# =============================================================================
# Owner editor
# =============================================================================

class ListingEditor:
    """Draft location fields for one listing, kept in step with the pin map."""

    def __init__(
        self,
        record: Optional[Dict[str, Any]] = None,
        geocoder: Optional[NominatimGeocoder] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.record = dict(record or {})
        self.address = str(self.record.get("address") or "")
        self.city = str(self.record.get("city") or "")

        default_lat, default_lng = CONFIG.map.default_center
        lat = parse_coordinate(self.record.get("lat"), 90.0)
        lng = parse_coordinate(self.record.get("lng"), 180.0)
        if lat is None or lng is None:
            lat, lng = default_lat, default_lng
        self.position = Position(lat, lng)

        self.geocoder = geocoder or NominatimGeocoder()
        self.notify = notify or (lambda message: None)
        self.pin_map: Optional[PinMapController] = None
        self._geocode_gate = RequestGate()

    # ------------------------------------------------------------------
    # Map lifetime
    # ------------------------------------------------------------------

    def attach_map(self, widget: MapWidget) -> PinMapController:
        self.detach_map()
        self.pin_map = PinMapController(widget, self.position, on_pin_change=self._on_pin_change)
        self.pin_map.mount()
        return self.pin_map

    def detach_map(self):
        if self.pin_map is not None:
            self.pin_map.unmount()
            self.pin_map = None

    def _on_pin_change(self, position: Position):
        if self.pin_map is not None and self.pin_map.state.source in INTERACTIVE_SOURCES:
            # A hand-placed pin outranks any lookup still in flight
            self._geocode_gate.invalidate()
        self.position = position

    # ------------------------------------------------------------------
    # Address geocoding
    # ------------------------------------------------------------------

    def set_address(self, address: str, city: Optional[str] = None):
        self.address = address or ""
        if city is not None:
            self.city = city

    def begin_geocode(self) -> Optional[int]:
        """Tag a new lookup. Returns None when there is no address to look up."""
        if not self.address.strip():
            return None
        return self._geocode_gate.issue()

    def apply_geocode(self, ticket: int, position: Optional[Position]) -> bool:
        """Apply a lookup result unless a newer lookup or pin edit superseded it."""
        if not self._geocode_gate.is_current(ticket):
            logger.debug("Discarding superseded geocode result (ticket %d)", ticket)
            return False

        if position is None:
            self.notify(GEOCODE_FAIL_NOTICE)
            return False

        if self.pin_map is not None and self.pin_map.mounted:
            self.pin_map.set_external(position)
        self.position = position
        self.notify(GEOCODE_OK_NOTICE)
        return True

    def sync_map_to_address(self) -> bool:
        ticket = self.begin_geocode()
        if ticket is None:
            return False
        position = self.geocoder.resolve(self.address, self.city)
        return self.apply_geocode(ticket, position)

    def to_record(self) -> Dict[str, Any]:
        record = dict(self.record)
        record.update({
            "address": self.address,
            "city": self.city,
            "lat": self.position.lat,
            "lng": self.position.lng,
        })
        return record


# =============================================================================
# CLI
# =============================================================================

class JsonFileSource:
    """ListingSource over a JSON export (a list, or {"restaurants": [...]})."""

    def __init__(self, path: str):
        self.path = path

    def list_listings(self) -> List[Dict[str, Any]]:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("restaurants", [])
        return [r for r in data if isinstance(r, dict)]


def _parse_latlng(text: str) -> Position:
    try:
        lat_s, lng_s = text.split(",")
    except ValueError:
        raise argparse.ArgumentTypeError("expected LAT,LNG")
    lat = parse_coordinate(lat_s, 90.0)
    lng = parse_coordinate(lng_s, 180.0)
    if lat is None or lng is None:
        raise argparse.ArgumentTypeError(f"invalid coordinates: {text}")
    return Position(lat, lng)


def format_row(listing: Listing, when: datetime) -> str:
    distance = f"{listing.distance_km:6.2f} km" if listing.distance_km is not None else " " * 9
    status = "Open  " if listing_is_open(listing, when) else "Closed"
    return (
        f"{listing.name[:28]:28}  {listing.city[:14]:14}  {distance}  "
        f"{status}  {format_hours(listing.open_time, listing.close_time)}"
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rank and filter restaurant listings")
    parser.add_argument("listings", help="JSON file of listing records")
    parser.add_argument("--near", type=_parse_latlng, help="visitor position as LAT,LNG")
    parser.add_argument("--district", default=None)
    parser.add_argument("--category", default=None)
    parser.add_argument("--query", default="")
    parser.add_argument("--map", dest="map_path", help="write the browse map PNG here")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    trace_ctx = TraceContext(trace_id=uuid.uuid4().hex[:10])
    set_trace(trace_ctx)
    try:
        return _run(args)
    finally:
        trace_ctx.log_summary()
        clear_trace()


def _run(args: argparse.Namespace) -> int:
    provider = FixedLocationProvider(args.near.lat, args.near.lng) if args.near else None
    feed = DiscoveryFeed(GeolocationService(provider))
    feed.load(JsonFileSource(args.listings))
    if feed.load_error:
        print(feed.load_error, file=sys.stderr)
        return 1

    if args.district:
        feed.select_district(args.district)
    if args.category:
        feed.select_category(args.category)
    feed.search(args.query)
    if args.near:
        feed.geolocation.request_position()

    now = datetime.now()
    shown = feed.displayed()
    for listing in shown:
        print(format_row(listing, now))
    if not shown:
        print("No restaurants match. Try changing your filters or search.")

    if args.map_path:
        b64 = generate_listing_map(shown, feed.geolocation.position)
        if b64 is None:
            print("Map rendering failed", file=sys.stderr)
            return 1
        with open(args.map_path, "wb") as f:
            f.write(base64.b64decode(b64))
        print(f"Map written to {args.map_path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
