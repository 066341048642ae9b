from __future__ import annotations
import math

from ..constants import CANVAS_RES, SHARD_DIMENSION


def global_px_to_lat_lon(px: float, py: float) -> tuple[float, float]:
    """Inverse Web Mercator for a global canvas pixel; returns (lat, lon) in degrees."""
    lon = px / CANVAS_RES * 360.0 - 180.0
    n = math.pi * (1.0 - 2.0 * py / CANVAS_RES)
    lat = math.degrees(math.atan(math.sinh(n)))
    return lat, lon

def shard_center_px(shard_x: int, shard_y: int) -> tuple[float, float]:
    return (shard_x + 0.5) * SHARD_DIMENSION, (shard_y + 0.5) * SHARD_DIMENSION

def shard_to_lat_lon(shard_x: int, shard_y: int) -> tuple[float, float]:
    return global_px_to_lat_lon(*shard_center_px(shard_x, shard_y))
