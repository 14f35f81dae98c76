# leadscout/geocoder.py
"""Location resolution: static city table first, OpenStreetMap Nominatim as fallback."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from leadscout.config import settings
from leadscout.errors import GeocodingRateLimited, UnresolvableLocation, UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class ResolvedLocation:
    lat: float
    lon: float
    display_name: str
    source: str = "table"  # "table" or "nominatim"


class LocationResolver:
    """Maps free-text place names to coordinates.

    The static table is matched by substring: the first table key contained in
    the lowercased input wins, so table order decides between overlapping keys
    ("san jose" vs "san antonio"). Only on a miss is Nominatim queried, once,
    with no retry.
    """

    def __init__(
        self,
        cities: Optional[dict] = None,
        nominatim_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cities = cities if cities is not None else settings.cities
        self.nominatim_url = nominatim_url or settings.nominatim_url
        self.timeout = timeout or settings.detection.geocode_timeout
        self._transport = transport

    def lookup(self, place: str) -> Optional[ResolvedLocation]:
        """Return the first static-table hit for `place`, or None."""
        place_lower = place.lower()
        for key, entry in self.cities.items():
            if key in place_lower:
                return ResolvedLocation(
                    lat=entry["lat"],
                    lon=entry["lon"],
                    display_name=entry["name"],
                    source="table",
                )
        return None

    def _suggestions(self) -> str:
        return ", ".join(list(self.cities.keys())[:10])

    async def _geocode_api(self, place: str) -> httpx.Response:
        """Call Nominatim search API."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.get(
                self.nominatim_url,
                params={"q": place, "format": "json", "limit": 1},
                headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
            )

    async def resolve(self, place: str) -> ResolvedLocation:
        """Resolve `place` to coordinates.

        Raises:
            UnresolvableLocation: no table hit and Nominatim returned nothing.
            GeocodingRateLimited: Nominatim answered 403 or 429.
            UpstreamError: any other transport failure or non-200 status.
        """
        hit = self.lookup(place)
        if hit:
            logger.info("Found: %s (local lookup)", hit.display_name)
            return hit

        logger.info("City not in local table, trying Nominatim for %r", place)
        try:
            response = await self._geocode_api(place)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Geocoding request failed: {e}") from e

        if response.status_code in (403, 429):
            raise GeocodingRateLimited(
                f"Nominatim rate limited. Try one of these cities: {self._suggestions()}",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise UpstreamError(
                f"Geocoding failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            results = response.json()
        except ValueError as e:
            raise UpstreamError(f"Geocoding returned invalid JSON: {e}") from e

        if not isinstance(results, list):
            raise UpstreamError(f"Geocoding returned unexpected payload: {type(results).__name__}")
        if not results:
            raise UnresolvableLocation(
                f"Could not find location: {place}. Try one of: {self._suggestions()}"
            )

        first = results[0]
        try:
            resolved = ResolvedLocation(
                lat=float(first["lat"]),
                lon=float(first["lon"]),
                display_name=first.get("display_name", place),
                source="nominatim",
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamError(f"Geocoding returned malformed candidate: {first!r}") from e
        logger.info("Found: %s", resolved.display_name)
        return resolved
