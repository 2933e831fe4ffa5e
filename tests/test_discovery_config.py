"""Tests for discovery_config.py — defaults and environment overrides."""

import dataclasses

import pytest

from discovery_config import (
    ALL_CATEGORIES,
    ALL_DISTRICTS,
    CATEGORIES,
    CONFIG,
    DISTRICTS,
    load_config,
)


class TestDefaults:
    def test_fix_options(self):
        assert CONFIG.fix.high_accuracy is True
        assert CONFIG.fix.timeout_ms == 10_000
        assert CONFIG.fix.max_age_ms == 300_000

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            CONFIG.map.browse_zoom = 3

    def test_catalogues_start_with_sentinels(self):
        assert DISTRICTS[0] == ALL_DISTRICTS
        assert CATEGORIES[0][0] == ALL_CATEGORIES
        assert len({cid for cid, _ in CATEGORIES}) == len(CATEGORIES)

    def test_tile_template_is_xyz(self):
        for token in ("{z}", "{x}", "{y}"):
            assert token in CONFIG.map.tile_url
        assert "OpenStreetMap" in CONFIG.map.attribution


class TestEnvOverrides:
    def test_geocoder_overrides(self, monkeypatch):
        monkeypatch.setenv("NEARBITE_GEOCODER_URL", "https://geo.internal/")
        monkeypatch.setenv("NEARBITE_USER_AGENT", "Tester/2.0")
        monkeypatch.setenv("NEARBITE_GEOCODE_COUNTRY", "Kenya")
        monkeypatch.setenv("NEARBITE_GEOCODE_TIMEOUT", "3.5")
        cfg = load_config()
        assert cfg.geocoder.base_url == "https://geo.internal"
        assert cfg.geocoder.user_agent == "Tester/2.0"
        assert cfg.geocoder.country == "Kenya"
        assert cfg.geocoder.timeout_s == 3.5

    def test_tile_override(self, monkeypatch):
        monkeypatch.setenv("NEARBITE_TILE_URL", "https://tiles.test/{z}/{x}/{y}.png")
        assert load_config().map.tile_url == "https://tiles.test/{z}/{x}/{y}.png"

    def test_malformed_timeout_falls_back(self, monkeypatch, caplog):
        monkeypatch.setenv("NEARBITE_GEOCODE_TIMEOUT", "ten seconds")
        with caplog.at_level("WARNING", logger="discovery_config"):
            cfg = load_config()
        assert cfg.geocoder.timeout_s == 10.0
        assert "NEARBITE_GEOCODE_TIMEOUT" in caplog.text
