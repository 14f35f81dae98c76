# leadscout/lead_store.py
"""Durable lead collection, rotation cursor and run history.

Three independent JSON slots (`leads`, `rotation`, `history`), each read and
replaced as a whole document. There is no transaction across slots; the host
must not run two rotations against the same directory at once.
"""
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional

from leadscout.config import settings
from leadscout.errors import PersistenceReadMiss, StoreCorrupted
from leadscout.osm_search import BusinessRecord
from leadscout.rotation import RotationState, current

logger = logging.getLogger(__name__)

LEADS_SLOT = "leads"
ROTATION_SLOT = "rotation"
HISTORY_SLOT = "history"


class JsonSlotStore:
    """One JSON file per slot under `directory`; writes replace the file atomically."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, slot: str) -> Path:
        return self.directory / f"{slot}.json"

    def get(self, slot: str) -> Any:
        path = self._path(slot)
        if not path.exists():
            raise PersistenceReadMiss(slot)
        try:
            with open(path) as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StoreCorrupted(f"Slot {slot!r} at {path} is not valid JSON: {e}") from e

    def set(self, slot: str, value: Any):
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{slot}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(value, f, indent=2)
            os.replace(tmp_path, self._path(slot))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: str
    location: str
    category: str
    businesses_found: int
    leads_added: int
    total_leads_after: int
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["error"] is None:
            del data["error"]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            timestamp=data.get("timestamp", ""),
            location=data.get("location", ""),
            category=data.get("category", ""),
            businesses_found=data.get("businesses_found", 0),
            leads_added=data.get("leads_added", 0),
            total_leads_after=data.get("total_leads_after", 0),
            error=data.get("error"),
        )


@dataclass
class StoreSnapshot:
    leads: list[BusinessRecord] = field(default_factory=list)
    rotation: RotationState = field(default_factory=RotationState)
    history: list[HistoryEntry] = field(default_factory=list)


def merge_new_leads(
    existing: list[BusinessRecord], candidates: list[BusinessRecord]
) -> tuple[list[BusinessRecord], list[BusinessRecord]]:
    """Append candidates whose name+city key is unseen. Existing leads are never touched.

    Returns (merged collection, newly added leads).
    """
    seen = {lead.lead_key() for lead in existing}
    added = []
    for lead in candidates:
        key = lead.lead_key()
        if key in seen:
            continue
        seen.add(key)
        added.append(lead)
    return existing + added, added


def push_history(history: list[HistoryEntry], entry: HistoryEntry, max_entries: int) -> list[HistoryEntry]:
    """Newest first, oldest dropped beyond `max_entries`."""
    return ([entry] + history)[:max_entries]


class LeadStore:
    def __init__(self, slots: JsonSlotStore = None, history_max: int = None):
        self.slots = slots or JsonSlotStore(settings.store.data_dir)
        self.history_max = history_max or settings.store.history_max

    def _read(self, slot: str, default, reset_corrupted: bool = False):
        try:
            return self.slots.get(slot)
        except PersistenceReadMiss:
            logger.debug("Slot %s not written yet, using empty default", slot)
            return default
        except StoreCorrupted as e:
            if not reset_corrupted:
                raise
            logger.warning("%s; resetting it to empty", e)
            return default

    def load(self) -> StoreSnapshot:
        """Read all three slots.

        A corrupted leads slot raises StoreCorrupted. Corrupted rotation or
        history slots are reset so the rotation keeps moving.
        """
        leads = self._read(LEADS_SLOT, []) or []
        rotation = self._read(ROTATION_SLOT, {}, reset_corrupted=True)
        history = self._read(HISTORY_SLOT, [], reset_corrupted=True)
        if not isinstance(rotation, dict):
            logger.warning("Slot %s holds %s, resetting it", ROTATION_SLOT, type(rotation).__name__)
            rotation = {}
        if not isinstance(history, list):
            logger.warning("Slot %s holds %s, resetting it", HISTORY_SLOT, type(history).__name__)
            history = []
        return StoreSnapshot(
            leads=[BusinessRecord.from_dict(d) for d in leads],
            rotation=RotationState.from_dict(rotation),
            history=[HistoryEntry.from_dict(d) for d in history],
        )

    def commit(
        self,
        leads: Optional[list[BusinessRecord]] = None,
        rotation: Optional[RotationState] = None,
        history: Optional[list[HistoryEntry]] = None,
    ):
        """Replace each given slot; slots passed as None are left alone."""
        if leads is not None:
            self.slots.set(LEADS_SLOT, [lead.to_dict() for lead in leads])
        if rotation is not None:
            self.slots.set(ROTATION_SLOT, rotation.to_dict())
        if history is not None:
            self.slots.set(HISTORY_SLOT, [entry.to_dict() for entry in history[: self.history_max]])


def status_report(snapshot: StoreSnapshot, categories: list[str] = None, locations: list = None) -> dict:
    """Aggregate counts and recent activity for the status view."""
    categories = categories if categories is not None else settings.rotation.categories
    locations = locations if locations is not None else settings.rotation.locations
    leads = snapshot.leads

    report = {
        "total_leads": len(leads),
        "cities_scraped": len({lead.scraped_city for lead in leads}),
        "with_analytics": sum(1 for lead in leads if lead.tracking and lead.tracking.has_analytics),
        "with_pixel": sum(1 for lead in leads if lead.tracking and lead.tracking.has_pixel),
        "with_tracking": sum(1 for lead in leads if lead.has_tracking),
        "next_category_index": snapshot.rotation.category_index,
        "next_location_index": snapshot.rotation.location_index,
        "total_runs": snapshot.rotation.total_runs,
        "recent_leads": [lead.to_dict() for lead in reversed(leads[-20:])],
        "history": [entry.to_dict() for entry in snapshot.history[:20]],
    }
    if categories and locations:
        category, location = current(snapshot.rotation, categories, locations)
        report["next_category"] = category
        report["next_location"] = getattr(location, "name", location)
    return report
