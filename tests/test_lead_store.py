# tests/test_lead_store.py
import json

import pytest

from leadscout.config import RotationLocation
from leadscout.errors import PersistenceReadMiss, StoreCorrupted
from leadscout.lead_store import (
    HistoryEntry,
    JsonSlotStore,
    LeadStore,
    StoreSnapshot,
    merge_new_leads,
    push_history,
    status_report,
)
from leadscout.rotation import RotationState
from leadscout.tracking_check import TrackingResult


def _entry(n: int, error: str = None) -> HistoryEntry:
    return HistoryEntry(
        timestamp=f"2026-01-01T00:00:{n:02d}+00:00",
        location="Los Angeles",
        category="dentist",
        businesses_found=n,
        leads_added=n,
        total_leads_after=n,
        error=error,
    )


@pytest.fixture
def store(tmp_path):
    return LeadStore(slots=JsonSlotStore(tmp_path), history_max=5)


# ═══════════════════════════════════════════════════════════════════
# Slots
# ═══════════════════════════════════════════════════════════════════

def test_unwritten_slot_is_read_miss(tmp_path):
    with pytest.raises(PersistenceReadMiss):
        JsonSlotStore(tmp_path).get("leads")


def test_slot_round_trip_leaves_no_temp_files(tmp_path):
    slots = JsonSlotStore(tmp_path / "nested")
    slots.set("rotation", {"category_index": 1})
    slots.set("rotation", {"category_index": 2})

    assert slots.get("rotation") == {"category_index": 2}
    assert sorted(p.name for p in (tmp_path / "nested").iterdir()) == ["rotation.json"]


def test_corrupted_slot_raises(tmp_path):
    (tmp_path / "leads.json").write_text("[{\"name\": ")
    with pytest.raises(StoreCorrupted):
        JsonSlotStore(tmp_path).get("leads")


def test_corrupted_slot_is_not_treated_as_empty(tmp_path):
    (tmp_path / "leads.json").write_text("not json")
    with pytest.raises(StoreCorrupted):
        LeadStore(slots=JsonSlotStore(tmp_path)).load()


@pytest.mark.parametrize("slot,payload", [
    ("history", "[{\"timestamp\": "),
    ("rotation", "{oops"),
    ("history", "{\"not\": \"a list\"}"),
    ("rotation", "[1, 2]"),
])
def test_corrupted_rotation_or_history_resets_to_empty(tmp_path, make_record, slot, payload):
    store = LeadStore(slots=JsonSlotStore(tmp_path))
    store.commit(leads=[make_record("Smile Dental")])
    (tmp_path / f"{slot}.json").write_text(payload)

    snapshot = store.load()

    assert [lead.name for lead in snapshot.leads] == ["Smile Dental"]
    assert snapshot.rotation == RotationState()
    assert snapshot.history == []


# ═══════════════════════════════════════════════════════════════════
# Load / commit
# ═══════════════════════════════════════════════════════════════════

def test_empty_store_loads_zero_defaults(store):
    snapshot = store.load()
    assert snapshot.leads == []
    assert snapshot.rotation == RotationState()
    assert snapshot.history == []


def test_commit_and_load_round_trip(store, make_record):
    lead = make_record("Smile Dental", website="https://smile.example")
    lead.tracking = TrackingResult(has_analytics=True, has_pixel=False)

    store.commit(
        leads=[lead],
        rotation=RotationState(category_index=3, location_index=1, total_runs=17),
        history=[_entry(1, error="Overpass API error: 504")],
    )
    snapshot = store.load()

    assert snapshot.leads == [lead]
    assert snapshot.leads[0].has_tracking is True
    assert snapshot.rotation == RotationState(category_index=3, location_index=1, total_runs=17)
    assert snapshot.history[0].error == "Overpass API error: 504"


def test_commit_leaves_none_slots_untouched(store, tmp_path, make_record):
    store.commit(leads=[make_record("Smile Dental")], rotation=RotationState(total_runs=1))
    before = (tmp_path / "leads.json").read_text()

    store.commit(rotation=RotationState(total_runs=2))

    assert (tmp_path / "leads.json").read_text() == before
    assert not (tmp_path / "history.json").exists()
    assert store.load().rotation.total_runs == 2


def test_history_error_field_omitted_when_none(store, tmp_path):
    store.commit(history=[_entry(1)])
    saved = json.loads((tmp_path / "history.json").read_text())
    assert "error" not in saved[0]
    assert saved[0]["businesses_found"] == 1


def test_commit_caps_history(store):
    store.commit(history=[_entry(n) for n in range(8)])
    assert len(store.load().history) == 5


# ═══════════════════════════════════════════════════════════════════
# Merging and history
# ═══════════════════════════════════════════════════════════════════

def test_merge_is_idempotent(make_record):
    candidates = [make_record("Smile Dental"), make_record("Bright Teeth")]

    merged, added = merge_new_leads([], candidates)
    assert len(added) == 2

    merged_again, added_again = merge_new_leads(merged, [make_record("Smile Dental"), make_record("Bright Teeth")])
    assert added_again == []
    assert len(merged_again) == 2


def test_same_name_in_other_city_is_new_lead(make_record):
    existing = [make_record("Smile Dental", scraped_city="Los Angeles")]

    merged, added = merge_new_leads(existing, [make_record("SMILE DENTAL", scraped_city="Chicago")])

    assert len(added) == 1
    assert len(merged) == 2


def test_first_write_wins(make_record):
    original = make_record("Smile Dental", website="https://old.example")
    newer = make_record("smile dental", website="https://new.example")

    merged, added = merge_new_leads([original], [newer])

    assert added == []
    assert merged[0].website == "https://old.example"


def test_duplicates_within_one_batch_collapse(make_record):
    _, added = merge_new_leads([], [make_record("A", website="a1"), make_record("a", website="a2")])
    assert [lead.website for lead in added] == ["a1"]


def test_push_history_newest_first_and_truncated():
    history = []
    for n in range(7):
        history = push_history(history, _entry(n), max_entries=5)

    assert len(history) == 5
    assert [e.businesses_found for e in history] == [6, 5, 4, 3, 2]


# ═══════════════════════════════════════════════════════════════════
# Status report
# ═══════════════════════════════════════════════════════════════════

def test_status_report_counts(make_record):
    ga = make_record("GA Only", scraped_city="Los Angeles")
    ga.tracking = TrackingResult(has_analytics=True)
    both = make_record("Both", scraped_city="Chicago")
    both.tracking = TrackingResult(has_analytics=True, has_pixel=True)
    neither = make_record("Neither", scraped_city="Chicago")
    neither.tracking = TrackingResult()

    snapshot = StoreSnapshot(
        leads=[ga, both, neither],
        rotation=RotationState(category_index=1, location_index=0, total_runs=1),
        history=[_entry(1)],
    )
    report = status_report(
        snapshot,
        categories=["dentist", "lawyer"],
        locations=[RotationLocation(name="Los Angeles", lat=34.0522, lon=-118.2437)],
    )

    assert report["total_leads"] == 3
    assert report["cities_scraped"] == 2
    assert report["with_analytics"] == 2
    assert report["with_pixel"] == 1
    assert report["with_tracking"] == 2
    assert report["total_runs"] == 1
    assert report["next_category"] == "lawyer"
    assert report["next_location"] == "Los Angeles"
    assert [lead["name"] for lead in report["recent_leads"]] == ["Neither", "Both", "GA Only"]
    assert len(report["history"]) == 1


def test_status_report_recent_leads_capped(make_record):
    leads = [make_record(f"Biz {i}") for i in range(25)]
    report = status_report(StoreSnapshot(leads=leads), categories=[], locations=[])

    assert len(report["recent_leads"]) == 20
    assert report["recent_leads"][0]["name"] == "Biz 24"
    assert "next_category" not in report
