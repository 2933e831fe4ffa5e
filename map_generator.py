"""Server-side slippy map widget rendered with staticmap + OSM tiles."""

import io
import base64
import logging
import itertools
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from PIL import ImageDraw
from staticmap import StaticMap, CircleMarker

from discovery_config import CONFIG, MapConfig
from map_sync import BrowseMapController, Bounds, MarkerStyle
from models import Listing, Position

logger = logging.getLogger(__name__)


class NearBiteStaticMap(StaticMap):
    """StaticMap with auto-fit zoom clamped to [3, 17] so single pins stay legible."""

    ZOOM_MIN = 3
    ZOOM_MAX = 17

    def _calculate_zoom(self):
        z = super()._calculate_zoom()
        return max(self.ZOOM_MIN, min(self.ZOOM_MAX, z))


# Minimum framed area (~0.5 km each way) when fitting a single point.
MIN_BBOX_DEG = 0.005


@dataclass
class _Marker:
    position: Position
    style: MarkerStyle
    draggable: bool = False
    label: Optional[str] = None


class WidgetDestroyedError(RuntimeError):
    pass


class StaticMapWidget:
    """MapWidget that keeps marker/viewport state and renders it to PNG.

    There is no live user on a static image, so interaction arrives through
    the ``dispatch_*`` methods (e.g. a tap posted back from the page). They
    are ignored while the widget is non-interactive, and programmatic
    ``move_marker`` calls never produce drag-end events.
    """

    def __init__(self, width: int = 640, height: int = 400, config: Optional[MapConfig] = None):
        self.width = width
        self.height = height
        self.config = config or CONFIG.map
        self.markers: Dict[int, _Marker] = {}
        self.center: Optional[Position] = None
        self.zoom: Optional[int] = None
        self.fit: Optional[Bounds] = None
        self.fit_padding = 0
        self.interactive = True
        self.destroyed = False

        self._ids = itertools.count(1)
        self._click_handlers: Dict[int, List[Callable[[], None]]] = {}
        self._drag_handlers: Dict[int, List[Callable[[Position], None]]] = {}
        self._tap_handlers: List[Callable[[Position], None]] = []

    # ------------------------------------------------------------------
    # MapWidget
    # ------------------------------------------------------------------

    def _check(self):
        if self.destroyed:
            raise WidgetDestroyedError("map widget has been destroyed")

    def place_marker(
        self,
        position: Position,
        style: MarkerStyle,
        draggable: bool = False,
        label: Optional[str] = None,
    ) -> int:
        self._check()
        handle = next(self._ids)
        self.markers[handle] = _Marker(position, style, draggable, label)
        return handle

    def move_marker(self, handle: int, position: Position) -> None:
        self._check()
        self.markers[handle].position = position

    def remove_marker(self, handle: int) -> None:
        self._check()
        self.markers.pop(handle, None)
        self._click_handlers.pop(handle, None)
        self._drag_handlers.pop(handle, None)

    def set_viewport(self, center: Position, zoom: Optional[int] = None) -> None:
        self._check()
        self.center = center
        if zoom is not None:
            self.zoom = zoom
        self.fit = None

    def fit_bounds(self, bounds: Bounds, padding: int) -> None:
        self._check()
        self.fit = bounds
        self.fit_padding = padding

    def set_interactive(self, enabled: bool) -> None:
        self._check()
        self.interactive = enabled

    def on_marker_click(self, handle: int, callback: Callable[[], None]) -> Callable[[], None]:
        self._check()
        handlers = self._click_handlers.setdefault(handle, [])
        handlers.append(callback)
        return self._detacher(handlers, callback)

    def on_drag_end(self, handle: int, callback: Callable[[Position], None]) -> Callable[[], None]:
        self._check()
        handlers = self._drag_handlers.setdefault(handle, [])
        handlers.append(callback)
        return self._detacher(handlers, callback)

    def on_tap_map(self, callback: Callable[[Position], None]) -> Callable[[], None]:
        self._check()
        self._tap_handlers.append(callback)
        return self._detacher(self._tap_handlers, callback)

    def destroy(self) -> None:
        self.markers.clear()
        self._click_handlers.clear()
        self._drag_handlers.clear()
        self._tap_handlers.clear()
        self.destroyed = True

    @staticmethod
    def _detacher(handlers: list, callback) -> Callable[[], None]:
        def detach():
            if callback in handlers:
                handlers.remove(callback)
        return detach

    @property
    def handler_count(self) -> int:
        return (
            sum(len(h) for h in self._click_handlers.values())
            + sum(len(h) for h in self._drag_handlers.values())
            + len(self._tap_handlers)
        )

    # ------------------------------------------------------------------
    # Inbound interaction
    # ------------------------------------------------------------------

    def dispatch_marker_click(self, handle: int) -> None:
        self._check()
        for cb in list(self._click_handlers.get(handle, [])):
            cb()

    def dispatch_drag_end(self, handle: int, position: Position) -> None:
        self._check()
        if not self.interactive or handle not in self.markers:
            return
        if not self.markers[handle].draggable:
            return
        # The user has already moved the marker; mirror that before handlers run
        self.markers[handle].position = position
        for cb in list(self._drag_handlers.get(handle, [])):
            cb(position)

    def dispatch_tap(self, position: Position) -> None:
        self._check()
        if not self.interactive:
            return
        for cb in list(self._tap_handlers):
            cb(position)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self):
        """Render the current state to a PIL image (fetches OSM tiles)."""
        self._check()
        padding = self.fit_padding if self.fit is not None else 0
        m = NearBiteStaticMap(
            self.width,
            self.height,
            padding_x=padding,
            padding_y=padding,
            url_template=self.config.tile_url,
            tile_request_timeout=self.config.tile_request_timeout,
            headers={"User-Agent": CONFIG.geocoder.user_agent},
        )

        # staticmap uses (lng, lat) order
        for marker in self.markers.values():
            p = marker.position
            m.add_marker(CircleMarker((p.lng, p.lat), marker.style.color, marker.style.size))
            m.add_marker(CircleMarker((p.lng, p.lat), "white", max(2, marker.style.size - 6)))

        if self.fit is not None:
            # Invisible corner markers make the auto-zoom frame the whole box
            b = self.fit
            d_lat = max(0.0, (MIN_BBOX_DEG * 2 - (b.north - b.south)) / 2)
            d_lng = max(0.0, (MIN_BBOX_DEG * 2 - (b.east - b.west)) / 2)
            for lng, lat in [
                (b.west - d_lng, b.south - d_lat), (b.east + d_lng, b.south - d_lat),
                (b.west - d_lng, b.north + d_lat), (b.east + d_lng, b.north + d_lat),
            ]:
                m.add_marker(CircleMarker((lng, lat), "#ffffff", 1))
            image = m.render()
        else:
            center = self.center or Position(*self.config.default_center)
            zoom = self.zoom if self.zoom is not None else self.config.browse_zoom
            image = m.render(zoom=zoom, center=(center.lng, center.lat))

        self._draw_attribution(image)
        return image

    def _draw_attribution(self, image):
        draw = ImageDraw.Draw(image)
        text = self.config.attribution
        left, top, right, bottom = draw.textbbox((0, 0), text)
        w, h = right - left, bottom - top
        x = image.width - w - 6
        y = image.height - h - 6
        draw.rectangle((x - 3, y - 2, image.width, image.height), fill="white")
        draw.text((x, y), text, fill="#333333")

    def render_base64(self) -> Optional[str]:
        """Render to a base64 PNG string (no data URI prefix), or None on failure."""
        try:
            image = self.render()
            buffer = io.BytesIO()
            image.save(buffer, format="PNG", optimize=True)
            buffer.seek(0)
            return base64.b64encode(buffer.read()).decode("utf-8")
        except Exception:
            logger.exception("Failed to render static map")
            return None


def generate_listing_map(
    listings: Iterable[Listing],
    user_position: Optional[Position] = None,
    width: int = 640,
    height: int = 400,
) -> Optional[str]:
    """Render the browse map for a listing collection as base64 PNG.

    When a user position is given the view centres on it, as the live
    browse map does after a fix arrives.
    """
    widget = StaticMapWidget(width, height)
    with BrowseMapController(widget) as controller:
        controller.set_listings(listings)
        controller.set_user_position(user_position)
        return widget.render_base64()
