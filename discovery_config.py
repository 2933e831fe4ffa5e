"""
Configuration for NearBite discovery and map sync.

Owns every tunable constant: device fix options, map zooms and colours,
tile template, geocoder endpoint, and the district/category catalogues
the filter chips are built from.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files. A handful of deployment
values can be overridden through environment variables (a local .env
file is honoured).
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class FixOptions:
    """Options handed to the device location capability."""
    high_accuracy: bool = True
    timeout_ms: int = 10_000       # 10 s max wait
    max_age_ms: int = 300_000      # accept a cached fix up to 5 min old


@dataclass(frozen=True)
class MapConfig:
    """Zoom levels, padding and marker styling for the three map modes."""
    default_center: Tuple[float, float] = (0.3187, 32.5840)  # Kampala
    browse_zoom: int = 12
    user_zoom: int = 14
    pin_zoom: int = 13
    readonly_zoom: int = 15
    fit_padding_px: int = 20

    restaurant_color: str = "#D97706"   # amber
    user_color: str = "#3B82F6"         # blue
    pin_color: str = "#16A34A"          # green

    tile_url: str = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
    attribution: str = "© OpenStreetMap contributors"
    tile_request_timeout: int = 10


@dataclass(frozen=True)
class GeocoderConfig:
    """Nominatim-compatible lookup service settings."""
    base_url: str = "https://nominatim.openstreetmap.org"
    user_agent: str = "NearBite/1.0 (restaurant discovery; contact@nearbite.app)"
    country: str = "Uganda"
    timeout_s: float = 10.0


@dataclass(frozen=True)
class DiscoveryConfig:
    fix: FixOptions = field(default_factory=FixOptions)
    map: MapConfig = field(default_factory=MapConfig)
    geocoder: GeocoderConfig = field(default_factory=GeocoderConfig)


# =============================================================================
# Catalogues
# =============================================================================

ALL_DISTRICTS = "All Districts"
ALL_CATEGORIES = "all"

UGANDAN_DISTRICTS: Tuple[str, ...] = (
    "Kampala", "Wakiso", "Mukono", "Entebbe", "Jinja", "Mbarara",
    "Gulu", "Mbale", "Masaka", "Fort Portal", "Lira", "Arua",
    "Hoima", "Kabale", "Soroti", "Tororo",
)

DISTRICTS: Tuple[str, ...] = (ALL_DISTRICTS,) + UGANDAN_DISTRICTS

# (id, label) pairs in chip display order
CATEGORIES: Tuple[Tuple[str, str], ...] = (
    (ALL_CATEGORIES, "All"),
    ("local", "Local Food"),
    ("matooke", "Matooke/Sauce"),
    ("muchomo", "Muchomo"),
    ("luwombo", "Luwombo"),
    ("pilau", "Pilau"),
    ("breakfast", "Breakfast/Chai"),
    ("indian", "Indian"),
    ("fastfood", "Fast Food"),
    ("seafood", "Seafood"),
    ("vegetarian", "Vegetarian"),
)


# =============================================================================
# Environment overrides
# =============================================================================

def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default


def load_config() -> DiscoveryConfig:
    """Build the config, applying NEARBITE_* environment overrides."""
    defaults = GeocoderConfig()
    geocoder = GeocoderConfig(
        base_url=os.environ.get("NEARBITE_GEOCODER_URL", defaults.base_url).rstrip("/"),
        user_agent=os.environ.get("NEARBITE_USER_AGENT", defaults.user_agent),
        country=os.environ.get("NEARBITE_GEOCODE_COUNTRY", defaults.country),
        timeout_s=_env_float("NEARBITE_GEOCODE_TIMEOUT", defaults.timeout_s),
    )
    map_cfg = MapConfig(
        tile_url=os.environ.get("NEARBITE_TILE_URL", MapConfig().tile_url),
    )
    return DiscoveryConfig(geocoder=geocoder, map=map_cfg)


CONFIG = load_config()
