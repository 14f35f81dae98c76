# leadscout/pipeline.py
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from leadscout.config import settings
from leadscout.errors import LeadScoutError
from leadscout.geocoder import LocationResolver
from leadscout.lead_store import HistoryEntry, LeadStore, merge_new_leads, push_history
from leadscout.osm_search import BusinessRecord, OverpassSearcher
from leadscout.rotation import advance, current
from leadscout.tracking_check import ProgressCallback, TrackingChecker

logger = logging.getLogger(__name__)


class RunStage(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    LOCATING = "locating"
    DETECTING = "detecting"
    PERSISTING = "persisting"
    DONE = "done"
    NO_RESULTS = "no_results"
    FAILED = "failed"


class TrackingMode(str, Enum):
    NONE = "none"  # no website checks
    CHECK = "check"  # check websites, keep everything
    FILTER = "filter"  # check websites, keep only records with tracking

    @classmethod
    def from_flags(cls, filter_tracking: bool = False, check_tracking: bool = False) -> "TrackingMode":
        if filter_tracking:
            return cls.FILTER
        if check_tracking:
            return cls.CHECK
        return cls.NONE


@dataclass
class RunResult:
    category: str
    location: str
    mode: TrackingMode = TrackingMode.FILTER
    stage: RunStage = RunStage.IDLE
    businesses_found: int = 0
    with_website: int = 0
    records: list[BusinessRecord] = field(default_factory=list)
    detection_errors: int = 0
    leads_added: int = 0
    total_leads: int = 0
    run_number: int = 0
    error: Optional[str] = None
    next_category: Optional[str] = None
    next_location: Optional[str] = None


def select_candidates(records: list[BusinessRecord], mode: TrackingMode, limit: Optional[int]) -> list[BusinessRecord]:
    """Records eligible for detection/output.

    Filter mode drops website-less records before the limit; the other modes
    cut the located set as it came back.
    """
    if mode is TrackingMode.FILTER:
        records = [r for r in records if r.website]
    if limit is not None:
        records = records[:limit]
    return records


class Pipeline:
    """Resolve -> locate -> detect -> filter, and for rotation runs -> persist."""

    def __init__(
        self,
        resolver: LocationResolver = None,
        searcher: OverpassSearcher = None,
        checker: TrackingChecker = None,
        store: LeadStore = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        pre_request_delay: float = None,
    ):
        self.resolver = resolver or LocationResolver()
        self.searcher = searcher or OverpassSearcher()
        self.checker = checker or TrackingChecker(sleep=sleep)
        self.store = store
        self._sleep = sleep
        self.pre_request_delay = (
            settings.search.pre_request_delay if pre_request_delay is None else pre_request_delay
        )

    def _enter(self, result: RunResult, stage: RunStage):
        result.stage = stage
        logger.debug("%s in %s -> %s", result.category, result.location, stage.value)

    async def _locate_and_qualify(
        self,
        result: RunResult,
        lat: float,
        lon: float,
        radius_meters: int,
        limit: Optional[int],
        on_progress: Optional[ProgressCallback] = None,
        detection_delay: Optional[float] = None,
    ) -> list[BusinessRecord]:
        self._enter(result, RunStage.LOCATING)
        await self._sleep(self.pre_request_delay)
        located = await self.searcher.search(
            result.category, lat, lon,
            radius_meters=radius_meters,
            scraped_city=result.location,
            require_website=result.mode is TrackingMode.FILTER,
        )
        result.businesses_found = len(located)
        result.with_website = sum(1 for r in located if r.website)
        logger.info(
            "Found %d businesses, %d with websites", result.businesses_found, result.with_website
        )

        candidates = select_candidates(located, result.mode, limit)
        if not candidates:
            self._enter(result, RunStage.NO_RESULTS)
            return []

        if result.mode is TrackingMode.NONE:
            return candidates

        self._enter(result, RunStage.DETECTING)
        checked = await self.checker.detect_all(candidates, on_progress=on_progress, delay=detection_delay)
        result.detection_errors = sum(
            1 for r in checked if r.website and r.tracking and r.tracking.error
        )
        if result.detection_errors:
            logger.info("%d website checks failed", result.detection_errors)

        if result.mode is TrackingMode.FILTER:
            qualified = [r for r in checked if r.has_tracking]
            logger.info("%d of %d have GA or FB Pixel", len(qualified), len(checked))
            if not qualified:
                self._enter(result, RunStage.NO_RESULTS)
            return qualified
        return checked

    async def scrape(
        self,
        category: str,
        location: str,
        limit: int = None,
        radius_meters: int = None,
        mode: TrackingMode = TrackingMode.NONE,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunResult:
        """One-shot run for a free-text location. Nothing is persisted.

        Raises UnresolvableLocation / UpstreamError when resolving or locating
        fails.
        """
        limit = settings.search.limit if limit is None else limit
        radius_meters = radius_meters or settings.search.radius_km * 1000
        result = RunResult(category=category, location=location, mode=mode)

        self._enter(result, RunStage.RESOLVING)
        await self._sleep(self.pre_request_delay)
        try:
            resolved = await self.resolver.resolve(location)
        except Exception:
            self._enter(result, RunStage.FAILED)
            raise
        result.location = resolved.display_name

        try:
            records = await self._locate_and_qualify(
                result, resolved.lat, resolved.lon, radius_meters, limit, on_progress
            )
        except Exception:
            self._enter(result, RunStage.FAILED)
            raise

        result.records = records
        if result.stage is not RunStage.NO_RESULTS:
            self._enter(result, RunStage.DONE)
        return result

    async def rotate(self, on_progress: Optional[ProgressCallback] = None) -> RunResult:
        """One scheduled run: next (category, location), filter mode, accumulate.

        The rotation cursor advances and a history entry is written whether
        or not the run succeeds; leads are only written when new ones were added.
        """
        store = self.store or LeadStore()
        rotation_settings = settings.rotation
        categories = rotation_settings.categories
        locations = rotation_settings.locations

        snapshot = store.load()
        category, location = current(snapshot.rotation, categories, locations)
        result = RunResult(
            category=category,
            location=location.name,
            mode=TrackingMode.FILTER,
            run_number=snapshot.rotation.total_runs + 1,
            total_leads=len(snapshot.leads),
        )
        logger.info("Scraping: %s in %s (run #%d)", category, location.name, result.run_number)

        leads_to_write = None
        try:
            self._enter(result, RunStage.RESOLVING)
            records = await self._locate_and_qualify(
                result,
                location.lat,
                location.lon,
                rotation_settings.radius_meters,
                rotation_settings.limit,
                on_progress,
                detection_delay=rotation_settings.detection_delay,
            )
            merged, added = merge_new_leads(snapshot.leads, records)
            result.records = added
            result.leads_added = len(added)
            result.total_leads = len(merged)
            if added:
                leads_to_write = merged
            logger.info("%d new unique leads to add", len(added))
        except LeadScoutError as e:
            self._enter(result, RunStage.FAILED)
            result.error = str(e)
            logger.error(
                "Run #%d failed for %s in %s: %s",
                result.run_number, category, location.name, result.error,
            )
        except Exception as e:
            self._enter(result, RunStage.FAILED)
            result.error = f"{type(e).__name__}: {e}"
            logger.exception(
                "Run #%d failed for %s in %s", result.run_number, category, location.name
            )

        entry = HistoryEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            location=location.name,
            category=category,
            businesses_found=result.businesses_found,
            leads_added=result.leads_added,
            total_leads_after=result.total_leads,
            error=result.error,
        )
        next_state = advance(snapshot.rotation, len(categories), len(locations))

        outcome = result.stage
        if outcome is not RunStage.FAILED:
            self._enter(result, RunStage.PERSISTING)
        store.commit(
            leads=leads_to_write,
            rotation=next_state,
            history=push_history(snapshot.history, entry, store.history_max),
        )

        next_category, next_location = current(next_state, categories, locations)
        result.next_category = next_category
        result.next_location = next_location.name
        if outcome in (RunStage.FAILED, RunStage.NO_RESULTS):
            result.stage = outcome
        else:
            self._enter(result, RunStage.DONE)

        logger.info(
            "Complete! Total leads: %d. Next: %s in %s",
            result.total_leads, next_category, next_location.name,
        )
        return result
