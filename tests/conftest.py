"""Shared fixtures for the NearBite test suite.

Provides a small Kampala listing collection, a position-less and a
positioned geolocation service, and an in-memory StaticMapWidget (no tile
fetches happen unless a test calls render()).
"""

import pytest

from geolocation import FixedLocationProvider, GeolocationService
from map_generator import StaticMapWidget
from models import Listing


def make_listing(id, lat=None, lng=None, **kwargs):
    """Helper: build a Listing with sensible defaults."""
    kwargs.setdefault("name", f"Restaurant {id}")
    kwargs.setdefault("city", "Kampala")
    if "categories" in kwargs:
        kwargs["categories"] = frozenset(kwargs["categories"])
    return Listing(id=str(id), lat=lat, lng=lng, **kwargs)


@pytest.fixture()
def visitor():
    """Visitor standing near Kampala central."""
    return (0.30, 32.58)


@pytest.fixture()
def kampala_listings():
    return [
        make_listing(
            "a", 0.31, 32.59,
            name="Mama Ssali's Kitchen",
            categories={"local", "matooke"},
            address="Plot 4 Kampala Road",
            open_time="08:00", close_time="22:00",
        ),
        make_listing(
            "b", 0.40, 32.70,
            name="Nile Pilau House",
            city="Mukono",
            categories={"pilau"},
            address="Jinja Highway",
            open_time="22:00", close_time="02:00",
            featured=True,
        ),
        make_listing(
            "c",
            name="Rolex Corner",
            categories={"breakfast", "fastfood"},
            address="Wandegeya Market",
        ),
    ]


@pytest.fixture()
def idle_geo():
    return GeolocationService(None)


@pytest.fixture()
def located_geo(visitor):
    geo = GeolocationService(FixedLocationProvider(*visitor, accuracy_m=12.0))
    geo.request_position()
    return geo


@pytest.fixture()
def widget():
    return StaticMapWidget(320, 200)
