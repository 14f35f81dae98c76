# tests/test_geocoder.py
import httpx
import pytest
from unittest.mock import AsyncMock, patch

from leadscout.errors import GeocodingRateLimited, UnresolvableLocation, UpstreamError
from leadscout.geocoder import LocationResolver


def _transport(status: int, payload=None, seen: list = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload if payload is not None else [])
    return httpx.MockTransport(handler)


# ═══════════════════════════════════════════════════════════════════
# Static table
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_known_city_resolves_without_network():
    resolver = LocationResolver()

    with patch.object(resolver, '_geocode_api', new_callable=AsyncMock) as mock_api:
        location = await resolver.resolve("Los Angeles")
        mock_api.assert_not_called()

    assert location.lat == 34.0522
    assert location.lon == -118.2437
    assert location.display_name == "Los Angeles, CA"
    assert location.source == "table"


@pytest.mark.asyncio
async def test_table_match_is_substring_and_case_insensitive():
    resolver = LocationResolver()

    with patch.object(resolver, '_geocode_api', new_callable=AsyncMock) as mock_api:
        location = await resolver.resolve("Downtown CHICAGO, Illinois, USA")
        mock_api.assert_not_called()

    assert location.display_name == "Chicago, IL"


def test_first_table_entry_wins_on_multiple_matches():
    cities = {
        "san jose": {"lat": 37.3, "lon": -121.9, "name": "San Jose, CA"},
        "san antonio": {"lat": 29.4, "lon": -98.5, "name": "San Antonio, TX"},
    }
    resolver = LocationResolver(cities=cities)

    hit = resolver.lookup("san antonio near san jose")
    assert hit.display_name == "San Jose, CA"

    reordered = LocationResolver(cities=dict(reversed(list(cities.items()))))
    assert reordered.lookup("san antonio near san jose").display_name == "San Antonio, TX"


def test_lookup_miss_returns_none():
    resolver = LocationResolver(cities={"boston": {"lat": 1.0, "lon": 2.0, "name": "Boston, MA"}})
    assert resolver.lookup("Springfield") is None


# ═══════════════════════════════════════════════════════════════════
# Nominatim fallback
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_unknown_city_uses_nominatim():
    seen = []
    payload = [{"lat": "44.0462", "lon": "-123.0220", "display_name": "Eugene, Lane County, Oregon"}]
    resolver = LocationResolver(cities={}, transport=_transport(200, payload, seen))

    location = await resolver.resolve("Eugene, OR")

    assert location.lat == pytest.approx(44.0462)
    assert location.lon == pytest.approx(-123.0220)
    assert location.display_name == "Eugene, Lane County, Oregon"
    assert location.source == "nominatim"
    assert len(seen) == 1
    assert seen[0].method == "GET"
    assert seen[0].url.params["q"] == "Eugene, OR"


@pytest.mark.asyncio
async def test_empty_result_is_unresolvable():
    resolver = LocationResolver(transport=_transport(200, []))

    with pytest.raises(UnresolvableLocation) as exc:
        await resolver.resolve("Nowhereville, Atlantis")

    assert "Nowhereville, Atlantis" in str(exc.value)
    assert "los angeles" in str(exc.value)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429])
async def test_rate_limit_fails_immediately_with_suggestions(status):
    seen = []
    resolver = LocationResolver(transport=_transport(status, {}, seen))

    with pytest.raises(GeocodingRateLimited) as exc:
        await resolver.resolve("Nowhereville, Atlantis")

    assert exc.value.status_code == status
    assert "los angeles" in str(exc.value)
    assert len(seen) == 1  # no retry


@pytest.mark.asyncio
async def test_server_error_is_upstream_error():
    resolver = LocationResolver(transport=_transport(502, {}))

    with pytest.raises(UpstreamError) as exc:
        await resolver.resolve("Nowhereville, Atlantis")

    assert not isinstance(exc.value, GeocodingRateLimited)
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_transport_failure_is_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    resolver = LocationResolver(transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError):
        await resolver.resolve("Nowhereville, Atlantis")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"lat": "44.0", "lon": "-123.0"},
    [{"lon": "-123.0", "display_name": "Missing lat"}],
    [{"lat": "north", "lon": "-123.0"}],
    ["Eugene"],
])
async def test_malformed_payload_is_upstream_error(payload):
    resolver = LocationResolver(cities={}, transport=_transport(200, payload))

    with pytest.raises(UpstreamError):
        await resolver.resolve("Eugene, OR")
