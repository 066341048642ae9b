from __future__ import annotations

import asyncio
import math
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError

from ..constants import LAND_GRID_PRECISION, OCEAN_GRID_PRECISION
from ..logging_config import get_logger
from ..ports.geocode import PlaceLookup, PlaceResolver
from .sql_store import SqlStore

log = get_logger(__name__)

Throttle = Callable[[], Awaitable[None]]


def _snap(v: float, precision: float) -> float:
    return math.floor(v / precision + 0.5) * precision

def grid_key(lat: float, lon: float, precision: float = LAND_GRID_PRECISION) -> str:
    return f"{_snap(lat, precision):.2f},{_snap(lon, precision):.2f}"

def candidate_keys(lat: float, lon: float) -> list[str]:
    """Exact land cell, its 8 neighbours, then the ocean cell (deduped, ordered)."""
    keys = [grid_key(lat, lon)]
    offsets = (-LAND_GRID_PRECISION, 0.0, LAND_GRID_PRECISION)
    keys += [grid_key(lat + dlat, lon + dlon) for dlat in offsets for dlon in offsets]
    keys.append(grid_key(lat, lon, OCEAN_GRID_PRECISION))
    return list(dict.fromkeys(keys))


class CachedPlaceLookup(PlaceLookup):
    """
    Grid-keyed persistent cache in front of a PlaceResolver.
    Land results are cached at LAND_GRID_PRECISION, water bodies at
    OCEAN_GRID_PRECISION. Cache failures degrade to a plain lookup.
    `throttle` is awaited before each call to the resolver; cache hits
    never wait.
    """

    def __init__(self, resolver: PlaceResolver, store: SqlStore, *, throttle: Throttle | None = None) -> None:
        self.resolver = resolver
        self.store = store
        self.throttle = throttle

    async def lookup(self, lat: float, lon: float) -> str:
        try:
            cached = await asyncio.to_thread(self.store.cached_location, candidate_keys(lat, lon))
        except SQLAlchemyError as e:
            log.warning("geocache_read_failed", error=str(e))
            cached = None
        if cached is not None:
            return cached

        if self.throttle is not None:
            await self.throttle()
        place = await self.resolver.resolve(lat, lon)
        precision = OCEAN_GRID_PRECISION if place.is_water_body else LAND_GRID_PRECISION
        try:
            await asyncio.to_thread(self.store.cache_location, grid_key(lat, lon, precision),
                                    place.name, place.is_water_body)
        except SQLAlchemyError as e:
            log.warning("geocache_write_failed", error=str(e))
        return place.name
