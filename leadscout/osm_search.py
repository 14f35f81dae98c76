# leadscout/osm_search.py
"""Business search against the OpenStreetMap Overpass API.

One combined union query per search: every tag-predicate of the category
contributes a `node` clause and a `way` clause around the centre point, and
`out body center` gives ways a centroid.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

import httpx

from leadscout.config import settings
from leadscout.errors import UpstreamError

if TYPE_CHECKING:
    from leadscout.tracking_check import TrackingResult

logger = logging.getLogger(__name__)

# Sub-fields joined, in this order, into the one-line address
ADDRESS_TAGS = ["addr:housenumber", "addr:street", "addr:city", "addr:state", "addr:postcode"]


@dataclass
class BusinessRecord:
    name: str
    category: str
    website: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None
    osm_id: Optional[int] = None
    source: str = "OpenStreetMap"
    scraped_at: str = ""
    scraped_city: str = ""
    tracking: Optional[TrackingResult] = None

    @property
    def has_tracking(self) -> bool:
        return self.tracking is not None and (self.tracking.has_analytics or self.tracking.has_pixel)

    def lead_key(self) -> str:
        """Cross-run identity: same name in different scraped cities stays distinct."""
        return f"{self.name.lower()}-{self.scraped_city.lower()}"

    def to_dict(self) -> dict:
        data = asdict(self)
        tracking = data.pop("tracking")
        if tracking is not None:
            data["has_analytics"] = tracking["has_analytics"]
            data["has_pixel"] = tracking["has_pixel"]
            data["tracking_error"] = tracking["error"]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BusinessRecord":
        from leadscout.tracking_check import TrackingResult

        tracking = None
        if "has_analytics" in data or "has_pixel" in data:
            tracking = TrackingResult(
                has_analytics=bool(data.get("has_analytics", False)),
                has_pixel=bool(data.get("has_pixel", False)),
                error=data.get("tracking_error"),
            )
        return cls(
            name=data["name"],
            category=data.get("category", ""),
            website=data.get("website") or "",
            phone=data.get("phone") or "",
            email=data.get("email") or "",
            address=data.get("address") or "",
            city=data.get("city") or "",
            state=data.get("state") or "",
            lat=data.get("lat"),
            lon=data.get("lon"),
            osm_id=data.get("osm_id"),
            source=data.get("source", "OpenStreetMap"),
            scraped_at=data.get("scraped_at", ""),
            scraped_city=data.get("scraped_city", ""),
            tracking=tracking,
        )


def category_tags(category: str, tag_map: Optional[dict] = None) -> list[str]:
    """Tag-predicates for a category; unmapped categories fall back to a name search."""
    tag_map = tag_map if tag_map is not None else settings.category_tags
    tags = tag_map.get(category.lower())
    if tags:
        return list(tags)
    return [f'name~"{category}",i']


def build_query(tags: list[str], lat: float, lon: float, radius_meters: int) -> str:
    """Build the Overpass QL union query for all predicates around (lat, lon)."""
    around = f"(around:{radius_meters},{lat},{lon})"
    node_clauses = [f"node[{tag}]{around};" for tag in tags]
    way_clauses = [f"way[{tag}]{around};" for tag in tags]
    body = "\n    ".join(node_clauses + way_clauses)
    return f"[out:json][timeout:30];\n(\n    {body}\n);\nout body center;"


def format_address(tags: dict) -> str:
    return ", ".join(tags[key] for key in ADDRESS_TAGS if tags.get(key))


class OverpassSearcher:
    """Finds businesses of a category around a point via Overpass."""

    def __init__(
        self,
        overpass_url: str = None,
        timeout: float = None,
        tag_map: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.overpass_url = overpass_url or settings.overpass_url
        self.timeout = timeout or settings.detection.overpass_timeout
        self.tag_map = tag_map
        self._transport = transport

    async def _make_request(self, query: str) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.overpass_url,
                    data={"data": query},
                    headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Overpass API request failed: {e}") from e

        if response.status_code != 200:
            raise UpstreamError(
                f"Overpass API error: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Overpass API returned invalid JSON: {e}") from e

    def _parse_element(self, element: dict, category: str, scraped_city: str, scraped_at: str) -> BusinessRecord:
        tags = element.get("tags") or {}
        center = element.get("center") or {}
        lat = element.get("lat", center.get("lat"))
        lon = element.get("lon", center.get("lon"))

        return BusinessRecord(
            name=tags.get("name") or tags.get("name:en") or "",
            category=category,
            website=tags.get("website") or tags.get("contact:website") or tags.get("url") or "",
            phone=tags.get("phone") or tags.get("contact:phone") or "",
            email=tags.get("email") or tags.get("contact:email") or "",
            address=format_address(tags),
            city=tags.get("addr:city") or scraped_city,
            state=tags.get("addr:state") or "",
            lat=lat,
            lon=lon,
            osm_id=element.get("id"),
            scraped_at=scraped_at,
            scraped_city=scraped_city,
        )

    async def search(
        self,
        category: str,
        lat: float,
        lon: float,
        radius_meters: int = 25000,
        limit: Optional[int] = None,
        scraped_city: str = "",
        require_website: bool = False,
    ) -> list[BusinessRecord]:
        """Search for businesses; an empty result is an empty list, never an error.

        Records without a name (and, with `require_website`, without a website)
        are dropped first, then duplicates by lowercased name (first wins), then
        the list is cut to `limit` when one is given.
        """
        tags = category_tags(category, self.tag_map)
        query = build_query(tags, lat, lon, radius_meters)
        logger.debug("Overpass query:\n%s", query)

        data = await self._make_request(query)
        if not isinstance(data, dict):
            raise UpstreamError(f"Overpass API returned unexpected payload: {type(data).__name__}")
        elements = data.get("elements") or []
        if not isinstance(elements, list):
            raise UpstreamError(f"Overpass API returned unexpected elements: {type(elements).__name__}")
        if not elements:
            return []
        logger.info("Found %d results from OpenStreetMap", len(elements))

        scraped_at = datetime.now(timezone.utc).isoformat()
        results = []
        seen = set()
        for element in elements:
            try:
                record = self._parse_element(element, category, scraped_city, scraped_at)
            except (AttributeError, TypeError) as e:
                raise UpstreamError(f"Overpass API returned malformed element: {element!r}") from e
            if not record.name:
                continue
            if require_website and not record.website:
                continue
            key = record.name.lower()
            if key in seen:
                continue
            seen.add(key)
            results.append(record)

        if limit is not None:
            results = results[:limit]
        return results
