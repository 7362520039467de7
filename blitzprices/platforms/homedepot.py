"""
Scraper for Home Depot department listing pages.

Flow per page:
  1. Navigate to ``base + category.path`` (``?Nao=<offset>`` after page 1).
  2. Wait for the product grid (bounded timeout).
  3. Read the rendered HTML once and parse it with ``parse_listing_html``.
  4. Normalize every card; malformed cards are skipped and logged.

``parse_listing_html`` is pure, so the selector logic is unit-tested
against saved HTML in ``tests/fixtures`` without a browser.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from blitzprices.config.sources import (
    GOTO_TIMEOUT_MS,
    HOMEDEPOT_BASE_URL,
    PAGE_SIZE,
    SELECTOR_TIMEOUT_MS,
    WAIT_UNTIL,
)
from blitzprices.models import CategoryConfig, RawListing, ScrapedItem, Source
from blitzprices.parser import normalize_listing
from .base import BaseScraper, BrowserPage

logger = logging.getLogger(__name__)

# Anything that signals the grid rendered.
GRID_READY_SELECTOR = '[data-testid="product-pod"], .product-pod, div[data-product-id]'

# Primary: cards inside the results grid.  Fallback: any card-shaped node on
# the page, for layout drift where the grid wrapper was renamed.
_GRID_SELECTOR = '#browse-search-pods-1, [data-testid="product-grid"], .browse-search__pods'
_CARD_SELECTOR = '[data-testid="product-pod"], .product-pod'
_FALLBACK_CARD_SELECTOR = 'div[data-product-id], [data-testid="product-pod"], .product-pod'

_BRAND_SELECTORS = (
    '[data-testid="attribute-brandname-above"]',
    ".product-header__title__brand",
    '[data-testid="product-brand"]',
)
_LABEL_SELECTORS = (
    '[data-testid="product-header"] h3',
    ".product-header__title-product",
    '[data-testid="product-title"]',
)
_PRICE_SELECTOR = '[data-testid="price-simple"], [data-testid="price-format"], .price-format__main-price, .price'
_DOLLARS_SELECTOR = '[class*="sui-text-4xl"], [class*="sui-text-3xl"], .price-dollars'
_CENTS_SELECTOR = '[class*="sui-text-xs"], .price-cents'
_UNIT_SELECTORS = (
    '[data-testid="price-unit"]',
    ".price-format__unit",
    ".price__unit",
)
_LINK_SELECTOR = 'a[href*="/p/"]'

_SKU_ATTRS = ("data-product-id", "data-itemid", "data-sku")
_RE_DIGITS = re.compile(r"[^0-9]")


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ", strip=True).split())


def _first_text(card: Tag, selectors: tuple[str, ...]) -> str:
    for sel in selectors:
        text = _text(card.select_one(sel))
        if text:
            return text
    return ""


def _card_price_text(card: Tag) -> str:
    """Compose "dollars.cents" from split price nodes.

    The listing renders ``$`` / ``12`` / ``97`` as separate elements; when
    the dollars element is missing we fall back to the whole price text.
    """
    price_el = card.select_one(_PRICE_SELECTOR)
    if price_el is None:
        return ""
    dollars = _text(price_el.select_one(_DOLLARS_SELECTOR))
    if dollars:
        cents_nodes = price_el.select(_CENTS_SELECTOR)
        cents = _RE_DIGITS.sub("", _text(cents_nodes[-1])) if cents_nodes else ""
        return f"{dollars}.{cents or '00'}"
    return _text(price_el)


def _card_sku(card: Tag) -> str:
    for attr in _SKU_ATTRS:
        value = card.get(attr)
        if value:
            return str(value).strip()
    nested = card.select_one("[data-product-id]")
    if nested is not None:
        return str(nested.get("data-product-id", "")).strip()
    return ""


def _card_unit_hint(card: Tag, price_text: str) -> str:
    hint = _first_text(card, _UNIT_SELECTORS)
    if hint:
        return hint
    price_el = card.select_one(_PRICE_SELECTOR)
    return _text(price_el) if price_el is not None else price_text


def parse_listing_html(html: str, base_url: str = HOMEDEPOT_BASE_URL) -> list[RawListing]:
    """Extract one ``RawListing`` per well-formed product card in *html*.

    Cards without a name or a price are dropped here; the normalizer
    decides whether the price text is actually usable.
    """
    soup = BeautifulSoup(html, "html.parser")

    grid = soup.select_one(_GRID_SELECTOR)
    if grid is not None:
        cards = grid.select(_CARD_SELECTOR)
    else:
        cards = soup.select(_FALLBACK_CARD_SELECTOR)
        if cards:
            logger.info("Product grid container missing -- page-wide scan found %d cards", len(cards))

    listings: list[RawListing] = []
    seen: set[int] = set()
    for card in cards:
        # A fallback scan can match both a wrapper and its child pod.
        if any(id(parent) in seen for parent in card.parents):
            continue
        seen.add(id(card))

        brand = _first_text(card, _BRAND_SELECTORS)
        label = _first_text(card, _LABEL_SELECTORS)
        name = f"{brand} {label}".strip() if label else ""
        price_text = _card_price_text(card)
        if not name or not price_text:
            continue

        link = card.select_one(_LINK_SELECTOR)
        href = link.get("href", "") if link is not None else ""
        listings.append(
            RawListing(
                name=name,
                price_text=price_text,
                sku=_card_sku(card),
                unit_hint=_card_unit_hint(card, price_text),
                url=urljoin(base_url, str(href)) if href else "",
            )
        )
    return listings


def page_url(category: CategoryConfig, page_number: int, base_url: str = HOMEDEPOT_BASE_URL) -> str:
    """Listing URL for 1-indexed *page_number* of *category*."""
    url = f"{base_url}{category.path}"
    if page_number > 1:
        url += f"?Nao={(page_number - 1) * PAGE_SIZE}"
    return url


async def extract_category_page(
    page: BrowserPage,
    category: CategoryConfig,
    page_number: int,
    *,
    base_url: str = HOMEDEPOT_BASE_URL,
) -> list[ScrapedItem]:
    """Navigate *page* to one listing page and return its normalized items.

    Raises Playwright's ``TimeoutError`` / ``Error`` on navigation or grid
    wait failures.
    """
    url = page_url(category, page_number, base_url)
    logger.info("[homedepot] %s page %d: %s", category.name, page_number, url)
    await page.goto(url, wait_until=WAIT_UNTIL, timeout=GOTO_TIMEOUT_MS)
    await page.wait_for_selector(GRID_READY_SELECTOR, timeout=SELECTOR_TIMEOUT_MS)

    html = await page.content()
    raw_listings = parse_listing_html(html, base_url)

    items: list[ScrapedItem] = []
    skipped = 0
    for raw in raw_listings:
        result = normalize_listing(raw, source=Source.HOMEDEPOT, category=category)
        if result.valid:
            items.append(result.data)
        else:
            skipped += 1
            logger.debug("[homedepot] Skipped %r: %s", raw.name, result.reason)

    logger.info(
        "[homedepot] %s page %d: %d cards, %d items, %d skipped",
        category.name, page_number, len(raw_listings), len(items), skipped,
    )
    return items


class HomeDepotScraper(BaseScraper):
    """Home Depot department listings."""

    source = Source.HOMEDEPOT
    base_url = HOMEDEPOT_BASE_URL

    async def extract_category_page(
        self,
        category: CategoryConfig,
        page_number: int,
    ) -> list[ScrapedItem]:
        try:
            return await extract_category_page(
                self.page, category, page_number, base_url=self.base_url,
            )
        finally:
            if self.debug:
                slug = re.sub(r"[^a-z0-9]+", "-", category.name.lower()).strip("-")
                await self.save_debug_info(f"{slug}_p{page_number}")
