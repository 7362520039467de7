"""
User price submissions with outlier flagging.

Validation runs in a fixed order (required fields, category, unit, cost)
and rejects before the store is touched.  A valid submission is always
inserted; a price far from the current community average is inserted with
``is_outlier=True`` so it can be reviewed instead of silently dropped.

The average lookup and the insert are two separate requests.  Two
concurrent submissions for the same item can both be judged against the
same (stale) average; nothing here serializes them.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any

from blitzprices.config.sources import OUTLIER_HIGH_MULTIPLIER, OUTLIER_LOW_MULTIPLIER
from blitzprices.models import SUBMISSION_SOURCES, Category, Source, Unit, scraper_source
from blitzprices.parser import (
    REGION_ERROR,
    clean_display_name,
    coerce_category,
    coerce_region,
    coerce_unit,
    normalize_name,
)

logger = logging.getLogger(__name__)

_ALLOWED_SOURCES = frozenset(SUBMISSION_SOURCES) | {scraper_source(s) for s in Source}

MSG_OK = "Price submitted successfully"
MSG_FLAGGED = "Price submitted but flagged for review (significantly different from average)"


class SubmissionError(ValueError):
    """Submission rejected by validation; nothing was written."""


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return dec if dec.is_finite() else None


class SubmissionGuard:
    """Validate, flag and insert community price contributions."""

    def __init__(
        self,
        db: Any,
        *,
        high_multiplier: Decimal = OUTLIER_HIGH_MULTIPLIER,
        low_multiplier: Decimal = OUTLIER_LOW_MULTIPLIER,
    ) -> None:
        self.db = db
        self.high_multiplier = Decimal(str(high_multiplier))
        self.low_multiplier = Decimal(str(low_multiplier))

    def is_outlier(self, cost: Decimal, avg_cost: Decimal) -> bool:
        """``cost > high * avg`` (exclusive) or ``cost <= low * avg`` (inclusive)."""
        if avg_cost <= 0:
            return False
        return cost > avg_cost * self.high_multiplier or cost <= avg_cost * self.low_multiplier

    def _average_for(self, name_normalized: str, region: str) -> Decimal | None:
        try:
            resp = (
                self.db.table("price_aggregates")
                .select("avg_cost")
                .eq("name_normalized", name_normalized)
                .eq("region", region)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            logger.warning("Average lookup failed for %r/%s: %s", name_normalized, region, exc)
            return None
        rows = resp.data or []
        if not rows:
            return None
        return _to_decimal(rows[0].get("avg_cost"))

    def submit(
        self,
        name: str,
        category: str,
        unit: str,
        cost: Any,
        region: str,
        zip_code: str | None = None,
        trade: str | None = None,
        source: str | None = None,
        upc: str | None = None,
        sku: str | None = None,
    ) -> dict[str, Any]:
        display_name = clean_display_name(name) if isinstance(name, str) else ""
        region = region.strip().upper() if isinstance(region, str) else ""
        if not display_name or not category or not unit or cost is None or not region:
            raise SubmissionError("name, category, unit, cost, and region are required")

        cat = coerce_category(category)
        if cat is None:
            raise SubmissionError(
                f"Invalid category. Must be one of: {', '.join(c.value for c in Category)}"
            )
        unit_value = coerce_unit(unit)
        if unit_value is None:
            raise SubmissionError(
                f"Invalid unit. Must be one of: {', '.join(u.value for u in Unit)}"
            )
        cost_dec = _to_decimal(cost)
        if cost_dec is None or cost_dec < 0:
            raise SubmissionError("Cost must be a positive number")

        source = source or "manual"
        if source not in _ALLOWED_SOURCES:
            raise SubmissionError(f"Invalid source: {source}")
        region = coerce_region(region)
        if region is None:
            raise SubmissionError(REGION_ERROR)

        name_normalized = normalize_name(display_name)
        avg = self._average_for(name_normalized, region)
        flagged = avg is not None and self.is_outlier(cost_dec, avg)
        if flagged:
            logger.info(
                "Outlier: %r in %s at %s vs avg %s", name_normalized, region, cost_dec, avg,
            )

        resp = (
            self.db.table("community_prices")
            .insert(
                {
                    "name": display_name,
                    "name_normalized": name_normalized,
                    "category": cat.value,
                    "unit": unit_value.value,
                    "cost": float(cost_dec),
                    "region": region,
                    "zip_code": zip_code,
                    "trade": trade,
                    "source": source,
                    "upc": upc,
                    "sku": sku,
                    "is_outlier": flagged,
                }
            )
            .execute()
        )
        return {
            "success": True,
            "id": resp.data[0]["id"],
            "is_outlier": flagged,
            "message": MSG_FLAGGED if flagged else MSG_OK,
        }
