"""
Map state synchronisation for the browse, editable-pin and read-only maps.

The map widget is a passive renderer. Controllers own the coordinates
that are shown (listing markers, the visitor's position, the editable
pin) and push them into a MapWidget; the widget never becomes a second
source of truth.

Editable pin ownership:
  - drag-end and map-tap are authoritative and always win immediately;
  - an external coordinate (geocode result, parent page state) is only
    accepted when it differs from the current pin by more than
    COORD_EPSILON in either axis. Re-seeding the pin with the value it
    just reported upward is therefore a no-op, which is what stops
    pin -> page -> pin update loops;
  - rendering reads PinState and never writes it. Widgets must not emit
    drag-end for programmatic moves.

Each controller is a scoped resource: mount() registers handlers and
places markers, unmount() detaches every handler, removes every marker and
destroys the widget. Use one controller per mounted view.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from discovery_config import CONFIG, MapConfig
from models import Listing, Position

logger = logging.getLogger(__name__)

# Coordinates closer than this (degrees, per axis) are the same pin
COORD_EPSILON = 1e-6

# Interactive pin coordinates are stored at ~0.1 m resolution
PIN_DECIMALS = 6


def positions_differ(
    a: Optional[Position],
    b: Optional[Position],
    epsilon: float = COORD_EPSILON,
) -> bool:
    if a is None or b is None:
        return (a is None) != (b is None)
    return abs(a.lat - b.lat) > epsilon or abs(a.lng - b.lng) > epsilon


# =============================================================================
# Geometry
# =============================================================================

@dataclass(frozen=True)
class Bounds:
    """Axis-aligned lat/lng box."""
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def around(cls, positions: Iterable[Position]) -> Optional["Bounds"]:
        """Smallest box containing every position, or None if empty."""
        positions = list(positions)
        if not positions:
            return None
        lats = [p.lat for p in positions]
        lngs = [p.lng for p in positions]
        return cls(min(lats), min(lngs), max(lats), max(lngs))

    @property
    def center(self) -> Position:
        return Position((self.south + self.north) / 2, (self.west + self.east) / 2)

    def contains(self, p: Position) -> bool:
        return self.south <= p.lat <= self.north and self.west <= p.lng <= self.east


@dataclass(frozen=True)
class MarkerStyle:
    color: str
    size: int = 12
    kind: str = "restaurant"   # "restaurant" | "user" | "pin"


# =============================================================================
# Widget contract
# =============================================================================

class MapWidget(Protocol):
    """What a controller needs from a slippy-map implementation.

    ``on_*`` registration methods return a zero-argument detach function.
    """

    def place_marker(
        self,
        position: Position,
        style: MarkerStyle,
        draggable: bool = False,
        label: Optional[str] = None,
    ) -> Any: ...

    def move_marker(self, handle: Any, position: Position) -> None: ...

    def remove_marker(self, handle: Any) -> None: ...

    def set_viewport(self, center: Position, zoom: Optional[int] = None) -> None: ...

    def fit_bounds(self, bounds: Bounds, padding: int) -> None: ...

    def set_interactive(self, enabled: bool) -> None: ...

    def on_marker_click(self, handle: Any, callback: Callable[[], None]) -> Callable[[], None]: ...

    def on_drag_end(self, handle: Any, callback: Callable[[Position], None]) -> Callable[[], None]: ...

    def on_tap_map(self, callback: Callable[[Position], None]) -> Callable[[], None]: ...

    def destroy(self) -> None: ...


class MapNotMountedError(RuntimeError):
    """Raised when a controller is used outside its mount/unmount window."""
    pass


# =============================================================================
# Base controller
# =============================================================================

class _MapController:
    def __init__(self, widget: MapWidget, config: Optional[MapConfig] = None):
        self.widget = widget
        self.config = config or CONFIG.map
        self.mounted = False
        self.destroyed = False
        self._detachers: List[Callable[[], None]] = []
        self._markers: List[Any] = []

    def mount(self):
        if self.mounted:
            return self
        if self.destroyed:
            raise MapNotMountedError(f"{type(self).__name__} widget was already torn down")
        self.mounted = True
        self._on_mount()
        return self

    def unmount(self):
        if not self.mounted:
            return
        for detach in self._detachers:
            detach()
        self._detachers = []
        for handle in self._markers:
            self.widget.remove_marker(handle)
        self._markers = []
        self.widget.destroy()
        self.mounted = False
        self.destroyed = True
        logger.debug("%s unmounted", type(self).__name__)

    def __enter__(self):
        return self.mount()

    def __exit__(self, exc_type, exc, tb):
        self.unmount()
        return False

    def _on_mount(self):
        raise NotImplementedError

    def _require_mounted(self):
        if not self.mounted:
            raise MapNotMountedError(f"{type(self).__name__} is not mounted")

    def _place(self, position: Position, style: MarkerStyle, **kwargs) -> Any:
        handle = self.widget.place_marker(position, style, **kwargs)
        self._markers.append(handle)
        return handle

    def _remove(self, handle: Any):
        self.widget.remove_marker(handle)
        self._markers.remove(handle)

    def _listen(self, detach: Callable[[], None]) -> Callable[[], None]:
        self._detachers.append(detach)
        return detach

    def _unlisten(self, detach: Callable[[], None]):
        detach()
        self._detachers.remove(detach)


# =============================================================================
# Browse map
# =============================================================================

def listing_label(listing: Listing) -> str:
    return " · ".join(p for p in (listing.name, listing.city, listing.address) if p)


class BrowseMapController(_MapController):
    """One marker per listing with coordinates, plus the visitor's position."""

    def __init__(
        self,
        widget: MapWidget,
        on_select_restaurant: Optional[Callable[[Listing], None]] = None,
        config: Optional[MapConfig] = None,
    ):
        super().__init__(widget, config)
        self.on_select_restaurant = on_select_restaurant
        self.user_position: Optional[Position] = None
        self._listing_markers: Dict[Any, Listing] = {}
        self._listing_detachers: List[Callable[[], None]] = []
        self._user_marker = None

    @property
    def visible_listings(self) -> List[Listing]:
        return list(self._listing_markers.values())

    def _on_mount(self):
        lat, lng = self.config.default_center
        self.widget.set_viewport(Position(lat, lng), self.config.browse_zoom)

    def set_listings(self, listings: Iterable[Listing]):
        """Replace the marker set and frame the viewport around it."""
        self._require_mounted()

        for detach in self._listing_detachers:
            self._unlisten(detach)
        self._listing_detachers = []
        for handle in list(self._listing_markers):
            self._remove(handle)
        self._listing_markers = {}

        style = MarkerStyle(self.config.restaurant_color, kind="restaurant")
        placed = []
        for listing in listings:
            pos = listing.position
            if pos is None:
                continue
            handle = self._place(pos, style, label=listing_label(listing))
            self._listing_markers[handle] = listing
            self._listing_detachers.append(
                self._listen(self.widget.on_marker_click(handle, self._selector(listing)))
            )
            placed.append(pos)

        bounds = Bounds.around(placed)
        if bounds is not None:
            self.widget.fit_bounds(bounds, self.config.fit_padding_px)
        logger.debug("Browse map showing %d markers", len(placed))

    def unmount(self):
        super().unmount()
        self._listing_markers = {}
        self._listing_detachers = []
        self._user_marker = None

    def _selector(self, listing: Listing) -> Callable[[], None]:
        def select():
            if self.on_select_restaurant:
                self.on_select_restaurant(listing)
        return select

    def set_user_position(self, position: Optional[Position]):
        """Show, move or hide the visitor's marker; recentre on change."""
        self._require_mounted()

        if position is None:
            if self._user_marker is not None:
                self._remove(self._user_marker)
                self._user_marker = None
            self.user_position = None
            return

        if not positions_differ(self.user_position, position):
            return

        if self._user_marker is None:
            self._user_marker = self._place(
                position,
                MarkerStyle(self.config.user_color, size=14, kind="user"),
                label="You are here",
            )
        else:
            self.widget.move_marker(self._user_marker, position)
        self.user_position = position
        self.widget.set_viewport(position, self.config.user_zoom)


# =============================================================================
# Editable pin map
# =============================================================================

class PinSource(enum.Enum):
    DRAG = "drag"
    TAP = "tap"
    GEOCODE = "geocode"
    EXTERNAL = "external"


INTERACTIVE_SOURCES = frozenset({PinSource.DRAG, PinSource.TAP})


@dataclass(frozen=True)
class PinState:
    lat: float
    lng: float
    source: PinSource

    @property
    def position(self) -> Position:
        return Position(self.lat, self.lng)


class PinMapController(_MapController):
    """A single draggable pin whose coordinates the owner edits."""

    def __init__(
        self,
        widget: MapWidget,
        initial: Position,
        on_pin_change: Optional[Callable[[Position], None]] = None,
        config: Optional[MapConfig] = None,
    ):
        super().__init__(widget, config)
        self.on_pin_change = on_pin_change
        self.state = PinState(initial.lat, initial.lng, PinSource.EXTERNAL)
        self._marker = None

    @property
    def position(self) -> Position:
        return self.state.position

    def _on_mount(self):
        pos = self.state.position
        self.widget.set_viewport(pos, self.config.pin_zoom)
        self._marker = self._place(
            pos,
            MarkerStyle(self.config.pin_color, size=14, kind="pin"),
            draggable=True,
        )
        self._listen(self.widget.on_drag_end(self._marker, self._handle_drag_end))
        self._listen(self.widget.on_tap_map(self._handle_tap))

    def unmount(self):
        super().unmount()
        self._marker = None

    def _handle_drag_end(self, position: Position):
        self._commit(position, PinSource.DRAG)

    def _handle_tap(self, position: Position):
        self._commit(position, PinSource.TAP)

    def _commit(self, position: Position, source: PinSource):
        """Authoritative interactive write."""
        self._require_mounted()
        pos = position.rounded(PIN_DECIMALS)
        self.state = PinState(pos.lat, pos.lng, source)
        self._render()
        logger.debug("Pin set by %s to (%.6f, %.6f)", source.value, pos.lat, pos.lng)
        if self.on_pin_change:
            self.on_pin_change(pos)

    def set_external(self, position: Position, source: PinSource = PinSource.EXTERNAL) -> bool:
        """Accept a coordinate from outside the map.

        Returns False (and changes nothing) when the value is within
        COORD_EPSILON of the current pin.
        """
        self._require_mounted()
        if source in INTERACTIVE_SOURCES:
            raise ValueError(f"{source.value} is an interactive source; use the map handlers")
        if not positions_differ(self.state.position, position):
            return False

        self.state = PinState(position.lat, position.lng, source)
        self._render()
        self.widget.set_viewport(position)   # keep the owner's zoom
        logger.debug("Pin moved externally (%s) to (%.6f, %.6f)",
                     source.value, position.lat, position.lng)
        if self.on_pin_change:
            self.on_pin_change(position)
        return True

    def _render(self):
        self.widget.move_marker(self._marker, self.state.position)


# =============================================================================
# Read-only map
# =============================================================================

class ReadOnlyMapController(_MapController):
    """A fixed, non-interactive map around one location."""

    def __init__(
        self,
        widget: MapWidget,
        position: Optional[Position],
        label: Optional[str] = None,
        config: Optional[MapConfig] = None,
    ):
        super().__init__(widget, config)
        self.position = position
        self.label = label

    @classmethod
    def for_listing(cls, widget: MapWidget, listing: Listing, config: Optional[MapConfig] = None):
        return cls(widget, listing.position, label=listing.name or None, config=config)

    def _on_mount(self):
        self.widget.set_interactive(False)
        if self.position is None:
            return
        self.widget.set_viewport(self.position, self.config.readonly_zoom)
        self._place(
            self.position,
            MarkerStyle(self.config.restaurant_color, kind="restaurant"),
            label=self.label,
        )
