import json
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

CAMPGROUND_URL = "https://www.recreation.gov/camping/campgrounds"


@dataclass(frozen=True)
class Offer:
    """
    One notifiable unit: a source URL plus an optional (start, end) date range.

    Equality is structural, so an undated offer only ever matches another undated offer.
    `name` is a display label only and takes no part in identity.
    """
    source_url: str
    date_range: Optional[tuple[date, date]] = None
    name: str = field(default="", compare=False)

    def __post_init__(self):
        if self.date_range is not None and len(self.date_range) != 2:
            raise ValueError(f"date_range must be a (start, end) pair, got {self.date_range!r}")

    @property
    def start_date(self) -> Optional[date]:
        return self.date_range[0] if self.date_range else None

    @property
    def end_date(self) -> Optional[date]:
        return self.date_range[1] if self.date_range else None


def identity_key(offer: Offer) -> str:
    start, end = offer.start_date, offer.end_date
    return json.dumps([
        offer.source_url,
        start.isoformat() if start else None,
        end.isoformat() if end else None,
    ])


def offers_equal(a: Offer, b: Offer) -> bool:
    return a.source_url == b.source_url and a.date_range == b.date_range


def park_url(park_id: str) -> str:
    return f"{CAMPGROUND_URL}/{park_id}"


def dedupe(offers: list) -> list:
    """Collapse offers with the same identity, keeping first-seen order."""
    seen = set()
    unique = []
    for offer in offers:
        key = identity_key(offer)
        if key not in seen:
            seen.add(key)
            unique.append(offer)
    return unique
