"""Unit tests for canvas to map projection."""

from __future__ import annotations

import pytest

from pixind.constants import CANVAS_RES, SHARD_DIMENSION
from pixind.domain.projection import global_px_to_lat_lon, shard_center_px, shard_to_lat_lon


def test_canvas_origin_is_top_left_of_mercator_map() -> None:
    """Pixel (0, 0) sits at the north-west corner of the projection."""
    lat, lon = global_px_to_lat_lon(0, 0)

    assert lon == pytest.approx(-180.0)
    assert lat == pytest.approx(85.0511, abs=1e-3)


def test_canvas_center_maps_to_null_island() -> None:
    """The middle of the canvas is (0, 0) on the map."""
    lat, lon = global_px_to_lat_lon(CANVAS_RES / 2, CANVAS_RES / 2)

    assert lat == pytest.approx(0.0, abs=1e-9)
    assert lon == pytest.approx(0.0, abs=1e-9)


def test_shard_is_projected_at_its_center_pixel() -> None:
    """Shards geocode at the middle of their block of pixels."""
    assert shard_center_px(0, 0) == (SHARD_DIMENSION / 2, SHARD_DIMENSION / 2)
    assert shard_to_lat_lon(2, 3) == global_px_to_lat_lon(2.5 * SHARD_DIMENSION, 3.5 * SHARD_DIMENSION)
