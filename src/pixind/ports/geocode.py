from __future__ import annotations
from typing import Protocol
from ..domain.models import Place


class PlaceLookup(Protocol):
    """Port for the external place-name service."""

    async def lookup(self, lat: float, lon: float) -> str:
        """Return a human-readable place name; raise GeocodeError on failure."""


class PlaceResolver(Protocol):
    """Uncached lookup that also reports whether the place is a water body."""

    async def resolve(self, lat: float, lon: float) -> Place:
        """Raise GeocodeError on failure."""
