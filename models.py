"""
Core data model for NearBite: positions, fixes and restaurant listings.

Listings are owned by the persistence collaborator; this module only
parses its records (tolerating missing or malformed optional fields)
and carries the derived ``distance_km`` annotation produced by the
distance sort. The annotation is never written back.
"""

import math
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)


# =============================================================================
# Positions
# =============================================================================

@dataclass(frozen=True)
class Position:
    """A geographic point in decimal degrees."""
    lat: float
    lng: float

    def rounded(self, places: int = 6) -> "Position":
        return Position(round(self.lat, places), round(self.lng, places))


@dataclass(frozen=True)
class Fix:
    """One reading from the device location capability."""
    position: Position
    accuracy_m: Optional[float] = None   # radius of 68% confidence, metres
    timestamp: float = 0.0               # epoch seconds the fix was taken


def parse_coordinate(value: Any, limit: float) -> Optional[float]:
    """Parse a latitude/longitude value, or None if unusable.

    Accepts numbers and numeric strings. Booleans, NaN/inf and values
    outside ``[-limit, limit]`` are rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or abs(v) > limit:
        return None
    return v


# =============================================================================
# Listings
# =============================================================================

@dataclass(frozen=True)
class Listing:
    """A restaurant record as read from persistence."""
    id: str
    name: str = ""
    city: str = ""
    categories: FrozenSet[str] = frozenset()
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    open_time: Optional[str] = None      # "HH:MM"
    close_time: Optional[str] = None     # "HH:MM"
    featured: bool = False
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    # Derived by geolocation.sort_by_distance; never persisted
    distance_km: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def position(self) -> Optional[Position]:
        if not self.has_coordinates:
            return None
        return Position(self.lat, self.lng)

    def with_distance(self, distance_km: Optional[float]) -> "Listing":
        return replace(self, distance_km=distance_km)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Listing":
        """Build a Listing from a persistence record (dict).

        Unknown keys are kept in ``extra``. Coordinates that cannot be
        parsed become absent so the listing drops off the map but stays
        in list results.
        """
        known = {
            "id", "name", "city", "categories", "address", "lat", "lng",
            "openTime", "closeTime", "open_time", "close_time", "featured",
        }
        lat = parse_coordinate(record.get("lat"), 90.0)
        lng = parse_coordinate(record.get("lng"), 180.0)
        if (lat is None) != (lng is None):
            # Half a coordinate pair is as good as none
            logger.debug("Listing %s has a partial coordinate pair", record.get("id"))
            lat = lng = None

        raw_categories = record.get("categories") or ()
        if isinstance(raw_categories, str):
            raw_categories = (raw_categories,)

        return cls(
            id=str(record.get("id", "")),
            name=str(record.get("name") or ""),
            city=str(record.get("city") or ""),
            categories=frozenset(str(c) for c in raw_categories if c),
            address=str(record.get("address") or ""),
            lat=lat,
            lng=lng,
            open_time=record.get("openTime") or record.get("open_time") or None,
            close_time=record.get("closeTime") or record.get("close_time") or None,
            featured=bool(record.get("featured", False)),
            extra={k: v for k, v in record.items() if k not in known},
        )

    def to_record(self) -> Dict[str, Any]:
        """Serialise back to the persistence shape (without distance)."""
        record = dict(self.extra)
        record.update({
            "id": self.id,
            "name": self.name,
            "city": self.city,
            "categories": sorted(self.categories),
            "address": self.address,
            "lat": self.lat,
            "lng": self.lng,
            "openTime": self.open_time,
            "closeTime": self.close_time,
            "featured": self.featured,
        })
        return record


class ListingSource(Protocol):
    """Boundary contract for the persistence collaborator."""

    def list_listings(self) -> Iterable[Dict[str, Any]]: ...
