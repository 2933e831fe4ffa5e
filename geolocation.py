"""
Visitor geolocation and distance ranking.

GeolocationService owns the visitor's position for a session. A position
only ever comes from an explicit request; it is never refreshed behind the
caller's back, and a failed request keeps the previous fix so the last
valid ranking survives.

The host environment asks the user for location permission once and
remembers the answer, so a denial is reported with instructions to change
the device setting rather than by re-prompting.

Distance helpers are pure functions and can be used without a service.
"""

import enum
import math
import time
import logging
from typing import Iterable, List, Optional, Protocol

from discovery_config import CONFIG, FixOptions
from models import Fix, Listing, Position
from nb_trace import get_trace

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


# =============================================================================
# Errors
# =============================================================================

class GeolocationError(Exception):
    """Base class for position request failures."""
    code = 0
    user_message = "Unknown geolocation error."


class PermissionDenied(GeolocationError):
    code = 1
    user_message = (
        "Location permission denied. Please enable it in your device settings."
    )


class PositionUnavailable(GeolocationError):
    code = 2
    user_message = "Unable to determine your location. Check your GPS or Wi-Fi."


class PositionTimeout(GeolocationError):
    code = 3
    user_message = "Location request timed out. Please try again."


class GeolocationUnsupported(GeolocationError):
    user_message = "This device does not support geolocation."


_ERRORS_BY_CODE = {
    PermissionDenied.code: PermissionDenied,
    PositionUnavailable.code: PositionUnavailable,
    PositionTimeout.code: PositionTimeout,
}


def error_from_code(code: int, detail: str = "") -> GeolocationError:
    """Map a standard device error code (1/2/3) to the error taxonomy."""
    cls = _ERRORS_BY_CODE.get(code)
    if cls is None:
        err = PositionUnavailable(detail or f"unknown error code {code}")
        err.user_message = GeolocationError.user_message
        return err
    return cls(detail)


# =============================================================================
# Device capability
# =============================================================================

class LocationProvider(Protocol):
    def get_current_position(self, options: FixOptions) -> Fix:
        """Return a fix or raise a GeolocationError."""
        ...


class FixedLocationProvider:
    """Provider that always reports one configured coordinate."""

    def __init__(self, lat: float, lng: float, accuracy_m: Optional[float] = None):
        self.position = Position(lat, lng)
        self.accuracy_m = accuracy_m

    def get_current_position(self, options: FixOptions) -> Fix:
        return Fix(self.position, self.accuracy_m, time.time())


class UnsupportedLocationProvider:
    """Stand-in for environments without a location capability."""

    def get_current_position(self, options: FixOptions) -> Fix:
        raise GeolocationUnsupported("no location capability")


# =============================================================================
# Distance helpers
# =============================================================================

def haversine_km(a: Position, b: Position) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1, lng1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lng2 = math.radians(b.lat), math.radians(b.lng)

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = (math.sin(dlat / 2) ** 2
         + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2)
    # Clamp guards against h creeping past 1.0 for antipodal points
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))

    return EARTH_RADIUS_KM * c


def sort_by_distance(
    origin: Optional[Position],
    listings: Iterable[Listing],
) -> List[Listing]:
    """Annotate listings with ``distance_km`` and sort nearest first.

    With no origin the input is returned unchanged. Listings without
    coordinates follow the ranked ones, unannotated, in input order.
    """
    if origin is None:
        return listings if isinstance(listings, list) else list(listings)

    ranked = []
    unplaced = []
    for listing in listings:
        pos = listing.position
        if pos is None:
            unplaced.append(listing.with_distance(None))
            continue
        ranked.append(listing.with_distance(round(haversine_km(origin, pos), 2)))

    # list.sort is stable, so equal distances keep input order
    ranked.sort(key=lambda l: l.distance_km)
    return ranked + unplaced


# =============================================================================
# Service
# =============================================================================

class GeoState(enum.Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    ACTIVE = "active"
    ERROR = "error"


class GeolocationService:
    """Holds the visitor's position for one session.

    ``request_position()`` drives a synchronous provider end to end.
    Hosts that resolve the device fix asynchronously use
    ``begin_request()`` / ``complete_request()`` instead; a completion
    carrying a superseded ticket is ignored.
    """

    def __init__(
        self,
        provider: Optional[LocationProvider],
        options: Optional[FixOptions] = None,
    ):
        self.provider = provider
        self.options = options or CONFIG.fix
        self.state = GeoState.IDLE
        self.fix: Optional[Fix] = None
        self.error: Optional[GeolocationError] = None
        self._ticket = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def position(self) -> Optional[Position]:
        return self.fix.position if self.fix else None

    @property
    def is_active(self) -> bool:
        """True while a position is held (even after a later failed retry)."""
        return self.fix is not None

    @property
    def is_requesting(self) -> bool:
        return self.state is GeoState.REQUESTING

    @property
    def error_message(self) -> Optional[str]:
        return self.error.user_message if self.error else None

    def fix_age_s(self, now: Optional[float] = None) -> Optional[float]:
        if self.fix is None:
            return None
        now = time.time() if now is None else now
        return max(0.0, now - self.fix.timestamp)

    def is_fix_stale(self, now: Optional[float] = None) -> bool:
        """Whether the held fix is older than the max fix age.

        Staleness is informational: the fix is only replaced by an
        explicit request_position().
        """
        age = self.fix_age_s(now)
        return age is not None and age * 1000 > self.options.max_age_ms

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def begin_request(self) -> int:
        """Enter REQUESTING and return the ticket for this request."""
        self._ticket += 1
        self.state = GeoState.REQUESTING
        self.error = None
        return self._ticket

    def complete_request(
        self,
        ticket: int,
        fix: Optional[Fix] = None,
        error: Optional[GeolocationError] = None,
    ) -> bool:
        """Apply a request outcome. Returns False if the ticket is stale."""
        if ticket != self._ticket or self.state is not GeoState.REQUESTING:
            logger.debug("Discarding stale position result (ticket %d, current %d)",
                         ticket, self._ticket)
            return False

        if fix is not None:
            self.fix = fix
            self.error = None
            self.state = GeoState.ACTIVE
            logger.info(
                "Position acquired (%.5f, %.5f) accuracy=%s",
                fix.position.lat, fix.position.lng, fix.accuracy_m,
            )
            return True

        self.error = error or PositionUnavailable("no fix returned")
        self.state = GeoState.ERROR
        logger.warning("Position request failed: %s (%s)",
                       type(self.error).__name__, self.error)
        return True

    def request_position(self) -> GeoState:
        """Ask the device for a fix. Never raises; returns the new state."""
        ticket = self.begin_request()

        if self.provider is None:
            self.complete_request(ticket, error=GeolocationUnsupported("no provider"))
            return self.state

        trace = get_trace()
        t0 = time.time()
        fix = None
        error = None
        try:
            fix = self.provider.get_current_position(self.options)
        except GeolocationError as e:
            error = e
        except Exception as e:
            logger.warning("Location provider failed unexpectedly", exc_info=True)
            error = PositionUnavailable(str(e))

        if trace:
            trace.record_api_call(
                service="location",
                endpoint="current_position",
                elapsed_ms=(time.time() - t0) * 1000,
                status_code=0,
                provider_status="OK" if fix else type(error).__name__,
            )

        self.complete_request(ticket, fix=fix, error=error)
        return self.state

    def clear_position(self):
        """Forget the fix and any error. In-flight requests become stale."""
        self._ticket += 1
        self.fix = None
        self.error = None
        self.state = GeoState.IDLE

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def sort_by_distance(self, listings: Iterable[Listing]) -> List[Listing]:
        return sort_by_distance(self.position, listings)
