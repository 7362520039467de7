"""
Domain types shared by the scraper, importer, search and submission paths.

Categories, units and sources are closed enums.  Every normalization site
goes through ``coerce_category`` / ``coerce_unit`` in ``parser.py`` so an
unknown string never reaches the store as-is.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Category(str, Enum):
    MATERIALS = "materials"
    EQUIPMENT = "equipment"
    FEES = "fees"


class Unit(str, Enum):
    EACH = "each"
    FOOT = "foot"
    SQFT = "sqft"
    GALLON = "gallon"
    LB = "lb"
    JOB = "job"


class Source(str, Enum):
    """Retail sites the scraper knows how to name."""

    HOMEDEPOT = "homedepot"
    LOWES = "lowes"
    MENARDS = "menards"
    GRAINGER = "grainger"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Contribution sources accepted by community_prices besides scraper_<name>.
SUBMISSION_SOURCES = ("manual", "price_tag_scan", "import")


def scraper_source(source: Source) -> str:
    """``Source.HOMEDEPOT`` -> ``"scraper_homedepot"``."""
    return f"scraper_{source.value}"


@dataclass(frozen=True)
class CategoryConfig:
    """One retailer listing to crawl and the community category it feeds."""

    name: str
    path: str
    category: Category


@dataclass
class RawListing:
    """Fields pulled off one product card, before any parsing."""

    name: str
    price_text: str
    sku: str = ""
    unit_hint: str = ""
    url: str = ""


@dataclass
class ScrapedItem:
    source: Source
    source_sku: str
    name: str
    category: Category
    price: float
    unit: Unit
    url: str
    subcategory: str | None = None
    scraped_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def as_dict(self) -> dict[str, Any]:
        row = asdict(self)
        row["source"] = self.source.value
        row["category"] = self.category.value
        row["unit"] = self.unit.value
        return row


@dataclass
class Normalized:
    """Result of a normalization step: either ``data`` or a ``reason``."""

    valid: bool
    data: Any = None
    reason: str | None = None

    @classmethod
    def ok(cls, data: Any) -> "Normalized":
        return cls(valid=True, data=data)

    @classmethod
    def invalid(cls, reason: str) -> "Normalized":
        return cls(valid=False, reason=reason)
