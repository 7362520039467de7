"""
Pagination policy for offset-paginated listing pages.

Listing sites here are paginated by URL offset, not by clicking a "next"
control, so the only decisions are *whether* to fetch another page and
*how long* to wait before doing so.  A short page is the expected
end-of-results signal, not an error.
"""

from __future__ import annotations

import random

from blitzprices.config.sources import (
    CATEGORY_DELAY_FACTOR,
    DELAY_JITTER,
    FULL_PAGE_THRESHOLD,
    MAX_ITEMS_PER_CATEGORY,
    MAX_PAGES_PER_CATEGORY,
)


def jittered_delay(base_ms: float, *, jitter: float = DELAY_JITTER, rng: random.Random | None = None) -> float:
    """Return a delay in **seconds** drawn from ``base_ms * U(1-jitter, 1+jitter)``."""
    if base_ms <= 0:
        return 0.0
    uniform = (rng or random).uniform
    return base_ms * uniform(1.0 - jitter, 1.0 + jitter) / 1000.0


def category_delay(base_ms: float, *, rng: random.Random | None = None) -> float:
    """Longer pause between categories."""
    return jittered_delay(base_ms * CATEGORY_DELAY_FACTOR, rng=rng)


def has_next_page(
    page_number: int,
    items_on_page: int,
    items_in_category: int,
    *,
    max_pages: int = MAX_PAGES_PER_CATEGORY,
    max_items: int = MAX_ITEMS_PER_CATEGORY,
    full_page: int = FULL_PAGE_THRESHOLD,
) -> bool:
    """Decide whether page ``page_number + 1`` should be fetched.

    Parameters
    ----------
    page_number:
        1-indexed number of the page just scraped.
    items_on_page:
        Valid items that page produced.
    items_in_category:
        Running total for the category, including this page.

    Returns
    -------
    bool
        ``False`` on a short page (fewer than ``full_page`` items), at the
        page cap, or once the category item cap is reached.
    """
    if items_on_page < full_page:
        return False
    if page_number >= max_pages:
        return False
    return items_in_category < max_items
