# tests/conftest.py
import os

import pytest
import sys
from pathlib import Path

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from leadscout.osm_search import BusinessRecord


def pytest_configure(config):
    config.addinivalue_line("markers", "live: marks tests that hit real Overpass/Nominatim/websites (deselect with '-m not live')")


def pytest_collection_modifyitems(config, items):
    # Skip live tests unless --run-live is passed or RUN_LIVE_TESTS=1
    run_live = config.getoption("--run-live", default=False) or os.environ.get("RUN_LIVE_TESTS") == "1"
    if not run_live:
        skip_live = pytest.mark.skip(reason="Live tests skipped. Use --run-live or RUN_LIVE_TESTS=1")
        for item in items:
            if "live" in item.keywords:
                item.add_marker(skip_live)


def pytest_addoption(parser):
    parser.addoption("--run-live", action="store_true", default=False, help="Run live integration tests against real services")


class RecordingSleep:
    """Zero-delay stand-in for asyncio.sleep that remembers each requested delay."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def make_record():
    def _make(name: str, website: str = "", scraped_city: str = "Los Angeles", **kwargs) -> BusinessRecord:
        return BusinessRecord(
            name=name,
            category=kwargs.pop("category", "dentist"),
            website=website,
            scraped_city=scraped_city,
            city=kwargs.pop("city", scraped_city),
            **kwargs,
        )
    return _make


@pytest.fixture
def overpass_response():
    return {
        "elements": [
            {
                "type": "node",
                "id": 101,
                "lat": 34.05,
                "lon": -118.24,
                "tags": {
                    "amenity": "dentist",
                    "name": "Smile Dental",
                    "website": "https://smiledental.example",
                    "phone": "+1 213 555 0100",
                    "addr:housenumber": "100",
                    "addr:street": "Main Street",
                    "addr:city": "Los Angeles",
                    "addr:state": "CA",
                    "addr:postcode": "90012",
                },
            },
            {
                "type": "way",
                "id": 202,
                "center": {"lat": 34.06, "lon": -118.25},
                "tags": {
                    "amenity": "dentist",
                    "name": "Bright Teeth",
                    "contact:website": "brightteeth.example",
                    "contact:email": "hello@brightteeth.example",
                    "addr:street": "Spring Street",
                    "addr:postcode": "90013",
                },
            },
            {
                "type": "node",
                "id": 303,
                "lat": 34.07,
                "lon": -118.26,
                "tags": {"amenity": "dentist"},
            },
            {
                "type": "node",
                "id": 404,
                "lat": 34.08,
                "lon": -118.27,
                "tags": {"amenity": "dentist", "name": "SMILE DENTAL", "website": "https://other.example"},
            },
            {
                "type": "node",
                "id": 505,
                "lat": 34.09,
                "lon": -118.28,
                "tags": {"amenity": "dentist", "name": "No Site Dentistry"},
            },
        ]
    }
