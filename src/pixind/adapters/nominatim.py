from __future__ import annotations

from typing import Any

import httpx

from ..constants import GEOCODE_URL, GEOCODE_USER_AGENT
from ..domain.errors import GeocodeError
from ..domain.models import Place
from ..ports.geocode import PlaceLookup, PlaceResolver

_WATER_KEYS = ("ocean", "sea", "bay", "water")
_PLACE_KEYS = ("city", "town", "village", "hamlet", "municipality", "county", "state", "country")


def ocean_name(lat: float, lon: float) -> str:
    """Coarse basin name for coordinates the reverse geocoder cannot name."""
    if lon > 100 or lon < -100:
        return "North Pacific Ocean" if lat > 0 else "South Pacific Ocean"
    if -80 < lon < 0:
        return "North Atlantic Ocean" if lat > 0 else "South Atlantic Ocean"
    if 20 < lon < 100 and lat < 25:
        return "Indian Ocean"
    if lat > 66:
        return "Arctic Ocean"
    if lat < -60:
        return "Southern Ocean"
    return "International Waters"


def place_from_response(data: dict[str, Any], lat: float, lon: float) -> Place:
    if data.get("error"):
        return Place(ocean_name(lat, lon), is_water_body=True)
    address = data.get("address") or {}
    water = next((address[k] for k in _WATER_KEYS if address.get(k)), None)
    if water is None and data.get("type") in ("ocean", "sea") and data.get("name"):
        water = data["name"]
    if water:
        return Place(water, is_water_body=True)
    if not address:
        return Place(ocean_name(lat, lon), is_water_body=True)

    place = next((address[k] for k in _PLACE_KEYS if address.get(k)), "Unknown location")
    country = address.get("country")
    region = address.get("state") or address.get("county")
    if country == "United States" and region:
        return Place(f"{place}, {region}")
    if country and place != country:
        return Place(f"{place}, {country}")
    return Place(place)


class NominatimLookup(PlaceLookup, PlaceResolver):
    """OpenStreetMap Nominatim reverse geocoding. Rate limiting is the caller's job."""

    def __init__(self, url: str = GEOCODE_URL, *, user_agent: str = GEOCODE_USER_AGENT,
                 timeout_s: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    async def resolve(self, lat: float, lon: float) -> Place:
        params = {"format": "json", "lat": f"{lat:.6f}", "lon": f"{lon:.6f}", "zoom": 10, "addressdetails": 1}
        try:
            r = await self.client.get(self.url, params=params)
        except httpx.HTTPError as e:
            raise GeocodeError(f"reverse lookup failed: {type(e).__name__}: {e}") from e
        if not r.is_success:
            raise GeocodeError(f"reverse lookup HTTP {r.status_code}")
        try:
            data = r.json()
        except ValueError as e:
            raise GeocodeError("reverse lookup returned invalid JSON") from e
        if not isinstance(data, dict):
            raise GeocodeError("reverse lookup returned unexpected payload")
        return place_from_response(data, lat, lon)

    async def lookup(self, lat: float, lon: float) -> str:
        return (await self.resolve(lat, lon)).name

    async def aclose(self) -> None:
        await self.client.aclose()
