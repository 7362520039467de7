"""
Community price search.

Fuzzy matching is delegated to the ``search_blitzprices`` database function
(pg_trgm similarity over ``price_aggregates``).  This module validates the
request, re-applies the similarity threshold, annotates each hit with a
confidence band and records a *search miss* when nothing matched, so gaps
in community coverage can be reviewed later.

Recording a miss is best effort: a failure there is logged and never
changes the search response.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from blitzprices.config.sources import (
    HIGH_CONFIDENCE_MIN,
    MAX_FANOUT_TERMS,
    MEDIUM_CONFIDENCE_MIN,
    SEARCH_MISS_SUGGESTION,
    SIMILARITY_THRESHOLD,
)
from blitzprices.models import Category, Confidence, Unit
from blitzprices.parser import REGION_ERROR, coerce_category, coerce_region

logger = logging.getLogger(__name__)

METADATA_KINDS = ("categories", "units", "regions")


class SearchError(ValueError):
    """Invalid search request."""


class SearchUnavailable(SearchError):
    """The store rejected or failed the search call."""


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class PriceSearchService:
    """Search ``price_aggregates`` and report the misses."""

    def __init__(
        self,
        db: Any,
        *,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        high_confidence_min: int = HIGH_CONFIDENCE_MIN,
        medium_confidence_min: int = MEDIUM_CONFIDENCE_MIN,
    ) -> None:
        if medium_confidence_min > high_confidence_min:
            raise ValueError("medium_confidence_min must not exceed high_confidence_min")
        self.db = db
        self.similarity_threshold = similarity_threshold
        self.high_confidence_min = high_confidence_min
        self.medium_confidence_min = medium_confidence_min

    def confidence_for(self, sample_size: int | None) -> Confidence:
        n = sample_size or 0
        if n >= self.high_confidence_min:
            return Confidence.HIGH
        if n >= self.medium_confidence_min:
            return Confidence.MEDIUM
        return Confidence.LOW

    def _to_result(self, row: dict[str, Any], similarity: float) -> dict[str, Any]:
        sample_size = int(row.get("sample_size") or 0)
        return {
            "name": row.get("name"),
            "category": row.get("category"),
            "unit": row.get("unit"),
            "avg_cost": _as_float(row.get("avg_cost")),
            "min_cost": _as_float(row.get("min_cost")),
            "max_cost": _as_float(row.get("max_cost")),
            "sample_size": sample_size,
            "similarity": round(similarity, 2),
            "confidence": self.confidence_for(sample_size).value,
            "last_updated": row.get("last_updated"),
        }

    def search(
        self,
        query: str,
        region: str,
        category: str | Category | None = None,
        limit: int = 10,
        *,
        user_id: str | None = None,
        source: str = "direct_search",
    ) -> dict[str, Any]:
        """Ranked community prices for *query* in *region*.

        Raises ``SearchError`` for a missing query/region or an unknown
        category, ``SearchUnavailable`` when the store call fails.
        """
        query = (query or "").strip() if isinstance(query, str) else ""
        region = (region or "").strip().upper() if isinstance(region, str) else ""
        if not query or not region:
            raise SearchError("query and region are required")
        region = coerce_region(region)
        if region is None:
            raise SearchError(REGION_ERROR)

        cat: Category | None = None
        if category:
            cat = coerce_category(category)
            if cat is None:
                valid = ", ".join(c.value for c in Category)
                raise SearchError(f"Invalid category. Must be one of: {valid}")

        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise SearchError("limit must be an integer") from None
        if limit < 1:
            raise SearchError("limit must be at least 1")

        try:
            resp = self.db.rpc(
                "search_blitzprices",
                {
                    "search_query": query,
                    "search_region": region,
                    "search_category": cat.value if cat else None,
                    "similarity_threshold": self.similarity_threshold,
                    "result_limit": limit,
                },
            ).execute()
        except Exception as exc:
            logger.error("Search failed for %r in %s: %s", query, region, exc)
            raise SearchUnavailable(f"Search failed: {exc}") from exc

        results = []
        for row in resp.data or []:
            similarity = _as_float(row.get("similarity")) or 0.0
            if similarity < self.similarity_threshold:
                continue
            results.append(self._to_result(row, similarity))
        results = results[:limit]

        has_match = bool(results)
        if not has_match:
            self._log_miss(query, region, cat, source, user_id)

        return {
            "query": query,
            "region": region,
            "has_match": has_match,
            "results": results,
            "suggestion": None if has_match else SEARCH_MISS_SUGGESTION,
        }

    def _log_miss(
        self,
        query: str,
        region: str,
        category: Category | None,
        source: str,
        user_id: str | None,
    ) -> None:
        try:
            self.db.rpc(
                "log_search_miss",
                {
                    "p_query": query,
                    "p_region": region,
                    "p_category": category.value if category else None,
                    "p_source": source,
                    "p_user_id": user_id,
                },
            ).execute()
        except Exception as exc:
            logger.warning("Failed to log search miss for %r: %s", query, exc)

    async def search_many(
        self,
        terms: list[str],
        region: str,
        category: str | Category | None = None,
        limit: int = 5,
        *,
        user_id: str | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Look up several line-item terms at once.

        At most ``MAX_FANOUT_TERMS`` distinct, non-blank terms are searched,
        concurrently; the mapping preserves their input order.
        """
        if not isinstance(terms, (list, tuple)):
            raise SearchError("terms must be a list of strings")
        unique: list[str] = []
        for term in terms:
            if not isinstance(term, str) or not term.strip():
                continue
            term = term.strip()
            if term not in unique:
                unique.append(term)
        if len(unique) > MAX_FANOUT_TERMS:
            logger.info("search_many: %d terms, searching first %d", len(unique), MAX_FANOUT_TERMS)
            unique = unique[:MAX_FANOUT_TERMS]
        if not unique:
            return {}

        responses = await asyncio.gather(
            *(
                asyncio.to_thread(
                    self.search, term, region, category, limit,
                    user_id=user_id, source="quote_hint",
                )
                for term in unique
            )
        )
        return dict(zip(unique, responses))

    def metadata(self, kind: str) -> list[str]:
        """Enumerations for clients: ``categories``, ``units`` or ``regions``."""
        if kind == "categories":
            return [c.value for c in Category]
        if kind == "units":
            return [u.value for u in Unit]
        if kind == "regions":
            try:
                resp = self.db.table("price_aggregates").select("region").limit(1000).execute()
            except Exception as exc:
                raise SearchUnavailable(f"Failed to get regions: {exc}") from exc
            return sorted({r["region"] for r in resp.data or [] if r.get("region")})
        raise SearchError(f"Unknown metadata type: {kind}. Valid types: {', '.join(METADATA_KINDS)}")
