# leadscout/export.py
"""CSV encoding of lead collections."""
import csv
from pathlib import Path
from typing import Optional

import pandas as pd

from leadscout.osm_search import BusinessRecord

# Column order of the query-surface export
LEAD_COLUMNS = [
    "Business Name", "Category", "Website", "Phone", "Email",
    "Address", "City", "State", "Has GA?", "Has FB Pixel?",
    "Scraped At", "Source",
]

# Column order of one-shot scrape files (blank outreach columns for manual tracking)
SCRAPE_COLUMNS = [
    "Business Name", "Category", "Website", "Phone", "Email",
    "Address", "City", "State", "Has GA?", "Has FB Pixel?",
    "Contacted?", "Notes", "Source",
]


def _yes(flag: bool) -> str:
    return "YES" if flag else ""


def _row(record: BusinessRecord) -> dict:
    tracking = record.tracking
    return {
        "Business Name": record.name,
        "Category": record.category,
        "Website": record.website,
        "Phone": record.phone,
        "Email": record.email,
        "Address": record.address,
        "City": record.city,
        "State": record.state,
        "Has GA?": _yes(tracking is not None and tracking.has_analytics),
        "Has FB Pixel?": _yes(tracking is not None and tracking.has_pixel),
        "Contacted?": "",
        "Notes": "",
        "Scraped At": record.scraped_at,
        "Source": record.source,
    }


def leads_to_frame(records: list[BusinessRecord], columns: list[str] = LEAD_COLUMNS) -> pd.DataFrame:
    return pd.DataFrame([_row(r) for r in records], columns=columns, dtype=str).fillna("")


def leads_to_csv(records: list[BusinessRecord], columns: list[str] = LEAD_COLUMNS) -> str:
    """Encode records; fields holding a comma, quote or newline are quoted with doubled quotes."""
    return leads_to_frame(records, columns).to_csv(
        index=False, quoting=csv.QUOTE_MINIMAL, lineterminator="\n"
    )


def write_csv(records: list[BusinessRecord], path: Path, columns: Optional[list[str]] = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(leads_to_csv(records, columns or LEAD_COLUMNS), encoding="utf-8")
    return path
