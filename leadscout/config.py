# leadscout/config.py
import json
import os
from pathlib import Path
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()

DATA_DIR = Path(__file__).parent / "data"


@dataclass
class SearchSettings:
    """Defaults for one-shot scrape runs."""
    limit: int = 30
    radius_km: int = 25
    detection_delay: float = 0.5  # Seconds before each website check
    pre_request_delay: float = 1.0  # Before geocoding and before the geo-query


@dataclass
class DetectionSettings:
    """Per-call HTTP timeouts (seconds)."""
    page_timeout: float = 15.0
    geocode_timeout: float = 30.0
    overpass_timeout: float = 60.0


@dataclass
class RotationLocation:
    name: str
    lat: float
    lon: float


@dataclass
class RotationSettings:
    """Settings for the scheduled category x location rotation."""
    limit: int = 30
    radius_meters: int = 25000
    detection_delay: float = 0.3
    categories: list[str] = field(default_factory=list)
    locations: list[RotationLocation] = field(default_factory=list)


@dataclass
class StoreSettings:
    data_dir: Path = Path("data") / "store"
    history_max: int = 100


@dataclass
class ApiSettings:
    password: str = ""
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class Settings:
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    nominatim_url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str = "LeadScout/1.0"
    category_tags: dict = field(default_factory=dict)
    cities: dict = field(default_factory=dict)
    search: SearchSettings = field(default_factory=SearchSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    rotation: RotationSettings = field(default_factory=RotationSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    def __post_init__(self):
        self.overpass_url = os.getenv("OVERPASS_URL", self.overpass_url)
        self.nominatim_url = os.getenv("NOMINATIM_URL", self.nominatim_url)
        self.user_agent = os.getenv("LEADSCOUT_USER_AGENT", self.user_agent)

        with open(DATA_DIR / "settings.json") as f:
            config = json.load(f)

        # Key order is the substring-match tie-break order for the resolver
        with open(DATA_DIR / "cities.json") as f:
            self.cities = json.load(f)

        self.category_tags = config.get("category_tags", {})

        search_config = config.get("search", {})
        self.search = SearchSettings(
            limit=search_config.get("limit", 30),
            radius_km=search_config.get("radius_km", 25),
            detection_delay=search_config.get("detection_delay", 0.5),
            pre_request_delay=search_config.get("pre_request_delay", 1.0),
        )

        detection_config = config.get("detection", {})
        self.detection = DetectionSettings(
            page_timeout=detection_config.get("page_timeout", 15),
            geocode_timeout=detection_config.get("geocode_timeout", 30),
            overpass_timeout=detection_config.get("overpass_timeout", 60),
        )

        rotation_config = config.get("rotation", {})
        self.rotation = RotationSettings(
            limit=rotation_config.get("limit", 30),
            radius_meters=rotation_config.get("radius_meters", 25000),
            detection_delay=rotation_config.get("detection_delay", 0.3),
            categories=list(rotation_config.get("categories", [])),
            locations=[
                RotationLocation(name=loc["name"], lat=loc["lat"], lon=loc["lon"])
                for loc in rotation_config.get("locations", [])
            ],
        )

        store_config = config.get("store", {})
        self.store = StoreSettings(
            data_dir=Path(os.getenv("LEADSCOUT_DATA_DIR", str(Path("data") / "store"))),
            history_max=store_config.get("history_max", 100),
        )

        self.api = ApiSettings(
            password=os.getenv("LEADSCOUT_PASSWORD", ""),
            host=os.getenv("LEADSCOUT_HOST", "127.0.0.1"),
            port=int(os.getenv("LEADSCOUT_PORT", "8000")),
        )

    def known_city_names(self, count: int = 10) -> list[str]:
        """First `count` keys of the static city table, for error hints."""
        return list(self.cities.keys())[:count]


settings = Settings()
