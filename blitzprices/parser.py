"""
Normalization of scraped listings and imported catalog records.

Takes the raw card fields produced by the platform scrapers (``RawListing``)
or the JSON records of a catalog dump and turns them into canonical records:
parsed price, canonical unit, normalized name, category tag.

All functions are pure (no I/O) and operate on plain strings so they are
easy to unit-test independently of Playwright and Supabase.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any

from blitzprices.config.sources import MAX_SANE_PRICE
from blitzprices.models import (
    Category,
    CategoryConfig,
    Normalized,
    RawListing,
    ScrapedItem,
    Source,
    Unit,
    scraper_source,
)

# =====================================================================
# 1. Price
# =====================================================================

_RE_NON_NUMERIC = re.compile(r"[^0-9.]")
_RE_LEADING_NUMBER = re.compile(r"\d+(?:\.\d+)?|\.\d+")


def parse_price(value: Any) -> float | None:
    """Parse a price-like value into a float, or ``None`` when unusable.

    Everything except digits and dots is stripped first, so currency
    symbols and thousands separators are tolerated.  The leading number
    wins, so unit suffixes ("$2.49 /sq. ft.") leave stray dots behind
    without spoiling the price.

    >>> parse_price("$1,234.56")
    1234.56
    >>> parse_price("N/A") is None
    True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    else:
        cleaned = _RE_NON_NUMERIC.sub("", str(value))
        if not cleaned:
            return None
        match = _RE_LEADING_NUMBER.match(cleaned)
        if match is None:
            return None
        price = float(match.group())
    if not math.isfinite(price):
        return None
    return price


def parse_rating(value: Any) -> float | None:
    if value is None:
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    return rating if math.isfinite(rating) else None


def parse_review_count(value: Any) -> int | None:
    if value is None:
        return None
    digits = re.sub(r"[^0-9]", "", str(value))
    return int(digits) if digits else None


# =====================================================================
# 2. Unit
# =====================================================================

# Ordered: substrings overlap ("/sq. ft" must not be read as "/ft"), so the
# first matching rule wins.
_UNIT_RULES: list[tuple[tuple[str, ...], Unit]] = [
    (("/ft", "per ft", "linear"), Unit.FOOT),
    (("/sq", "per sq"), Unit.SQFT),
    (("/lb", "per lb"), Unit.LB),
    (("/gal", "per gal"), Unit.GALLON),
]


def normalize_unit(hint: str | None) -> Unit:
    """Map free-form unit text ("/ft.", "per sq. ft.", ...) to a ``Unit``.

    Anything unrecognized is ``Unit.EACH``.
    """
    if not hint:
        return Unit.EACH
    lower = hint.lower()
    for needles, unit in _UNIT_RULES:
        if any(n in lower for n in needles):
            return unit
    return Unit.EACH


def coerce_unit(value: str | Unit | None) -> Unit | None:
    """Return the ``Unit`` whose value is exactly *value*, else ``None``."""
    if isinstance(value, Unit):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Unit(value.strip().lower())
    except ValueError:
        return None


# =====================================================================
# 3. Category
# =====================================================================

_CATEGORY_KEYWORDS: list[tuple[re.Pattern[str], Category]] = [
    (re.compile(r"\b(?:fees?|permits?|disposal|delivery|haul(?:ing)?|service call)\b", re.I), Category.FEES),
    (re.compile(r"\b(?:tools?|equipment|rental|saws?|drills?|compressors?|ladders?)\b", re.I), Category.EQUIPMENT),
]


def coerce_category(value: str | Category | None) -> Category | None:
    """Return the ``Category`` whose value is exactly *value*, else ``None``."""
    if isinstance(value, Category):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Category(value.strip().lower())
    except ValueError:
        return None


_RE_REGION = re.compile(r"[A-Z]{2}")
REGION_ERROR = "Invalid region. Must be a 2-letter state code or US"


def coerce_region(value: str | None) -> str | None:
    """Upper-cased 2-letter state code (or "US"), else ``None``."""
    if not isinstance(value, str):
        return None
    region = value.strip().upper()
    return region if _RE_REGION.fullmatch(region) else None


def guess_category(text: str | None, default: Category = Category.MATERIALS) -> Category:
    """Best-guess category for free text such as a department name."""
    exact = coerce_category(text)
    if exact is not None:
        return exact
    if text:
        for pattern, category in _CATEGORY_KEYWORDS:
            if pattern.search(text):
                return category
    return default


# =====================================================================
# 4. Names
# =====================================================================

_RE_WS = re.compile(r"\s+")


def normalize_name(name: str | None) -> str:
    """Lowercase, trim, collapse whitespace.  Join/de-dup key only."""
    if not name:
        return ""
    return _RE_WS.sub(" ", name).strip().lower()


def clean_display_name(name: str | None) -> str:
    """Collapse whitespace but keep the original casing for display."""
    if not name:
        return ""
    return _RE_WS.sub(" ", name).strip()


# =====================================================================
# 5. Scraped listings
# =====================================================================


def normalize_listing(
    raw: RawListing,
    *,
    source: Source,
    category: CategoryConfig | Category | str,
) -> Normalized:
    """Turn a ``RawListing`` into a ``ScrapedItem``.

    Invalid listings (no name, unparsable price, price outside
    ``(0, MAX_SANE_PRICE]``) come back with a reason instead of data.
    """
    name = clean_display_name(raw.name)
    if not name:
        return Normalized.invalid("Missing name")

    price = parse_price(raw.price_text)
    if price is None:
        return Normalized.invalid(f"Unparsable price {raw.price_text!r}")
    if price <= 0 or price > MAX_SANE_PRICE:
        return Normalized.invalid(f"Price out of range: {price}")

    if isinstance(category, CategoryConfig):
        blitz_category = category.category
        subcategory = category.name
    else:
        blitz_category = guess_category(category)
        subcategory = None

    # The unit label is usually next to the price; fall back to the name
    # ("... 10 ft. Copper Pipe /ft") when the card had none.
    unit = normalize_unit(raw.unit_hint) if raw.unit_hint else normalize_unit(name)

    return Normalized.ok(
        ScrapedItem(
            source=source,
            source_sku=(raw.sku or "").strip(),
            name=name,
            category=blitz_category,
            subcategory=subcategory,
            price=round(price, 2),
            unit=unit,
            url=raw.url,
        )
    )


def scraped_dedupe_key(name_normalized: str, region: str, category: str, unit: str) -> str:
    """Upsert key for scraped rows.  Community submissions leave it NULL."""
    return "|".join((name_normalized, region, category, unit))


def to_community_row(item: ScrapedItem, region: str) -> dict[str, Any]:
    """Map a ``ScrapedItem`` onto a ``community_prices`` row."""
    name_normalized = normalize_name(item.name)
    region = region.upper()
    return {
        "name": item.name,
        "name_normalized": name_normalized,
        "category": item.category.value,
        "unit": item.unit.value,
        "cost": item.price,
        "region": region,
        "dedupe_key": scraped_dedupe_key(
            name_normalized, region, item.category.value, item.unit.value,
        ),
        "source": scraper_source(item.source),
        "sku": item.source_sku or None,
        "is_outlier": False,
    }


# =====================================================================
# 6. Catalog import records
# =====================================================================


def detect_source(url: str | None) -> str:
    """Retailer slug for a product URL ("unknown" when unrecognized)."""
    if not url:
        return "unknown"
    if "homedepot.com" in url:
        return Source.HOMEDEPOT.value
    if "lowes.com" in url:
        return Source.LOWES.value
    return "unknown"


def _nested_name(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("name") or None
    return value or None


def transform_catalog_record(raw: dict[str, Any]) -> Normalized:
    """Map one catalog dump record onto a ``products`` row.

    A record needs an identifier (``product_id`` or ``sku``) and a
    ``product_name``; anything else is optional.
    """
    if not isinstance(raw, dict):
        return Normalized.invalid("Record is not an object")
    if not raw.get("product_id") and not raw.get("sku"):
        return Normalized.invalid("Missing product_id and sku")
    if not raw.get("product_name"):
        return Normalized.invalid("Missing product_name")

    in_stock = raw.get("in_stock")
    return Normalized.ok(
        {
            "source": detect_source(raw.get("url")),
            "source_product_id": str(raw.get("product_id") or raw.get("sku")),
            "source_url": raw.get("url") or None,
            "sku": raw.get("sku") or None,
            "model_number": raw.get("model_number") or None,
            # GTIN-13 is preferred over the short UPC when both are present
            "upc": raw.get("upcgtin13") or raw.get("upc") or None,
            "name": raw["product_name"],
            "description": raw.get("description") or None,
            "manufacturer": raw.get("manufacturer") or None,
            "price": parse_price(raw.get("final_price")),
            "original_price": parse_price(raw.get("initial_price")),
            "in_stock": True if in_stock is None else bool(in_stock),
            "category": _nested_name(raw.get("category")),
            "root_category": _nested_name(raw.get("root_category")),
            "rating": parse_rating(raw.get("rating")),
            "review_count": parse_review_count(raw.get("reviews_count")),
            "image_url": raw.get("main_image") or None,
            "dimensions": raw.get("dimensions") or None,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
    )
