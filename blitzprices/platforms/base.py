"""
Abstract base class for retailer listing scrapers.

Owns the browser lifecycle for a crawl: one browser, one context, one page,
held for the whole run and released on exit.  Subclasses implement
``extract_category_page()`` with their site-specific URL scheme and card
parsing.

Stealth stack (applied to every scraper):
  1. Real Chrome binary via ``channel="chrome"`` when installed, bundled
     Chromium otherwise.
  2. playwright-stealth patches on the context (webdriver, plugins,
     languages, chrome.runtime, permissions, WebGL, ...).
  3. Analytics domain blocking.
  4. Randomized viewport + User-Agent per run.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import Any, Protocol

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)
from playwright_stealth import Stealth

from blitzprices.config.sources import (
    BROWSER_ARGS,
    BROWSER_CHANNEL,
    DEBUG_DIR,
    get_user_agent,
    get_viewport,
)
from blitzprices.models import CategoryConfig, ScrapedItem, Source

logger = logging.getLogger(__name__)

_BLOCKED_ANALYTICS_PATTERNS = [
    "*google-analytics.com*",
    "*googletagmanager.com*",
    "*facebook.net*",
    "*doubleclick.net*",
    "*hotjar.com*",
    "*quantummetric.com*",
]


class BrowserPage(Protocol):
    """The slice of a browser page the extractors rely on.

    Playwright's ``Page`` satisfies it as-is; tests pass a small fake that
    serves fixture HTML.
    """

    async def goto(self, url: str, **kwargs: Any) -> Any: ...

    async def wait_for_selector(self, selector: str, **kwargs: Any) -> Any: ...

    async def content(self) -> str: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def screenshot(self, **kwargs: Any) -> bytes: ...


async def launch_stealth_browser(
    pw: Playwright,
    *,
    extra_args: list[str] | None = None,
) -> Browser:
    """Launch headless Chrome, falling back to bundled Chromium."""
    args = BROWSER_ARGS + (extra_args or [])
    try:
        browser = await pw.chromium.launch(
            headless=True,
            channel=BROWSER_CHANNEL,
            args=args,
        )
        logger.info("Browser launched: channel=%s", BROWSER_CHANNEL)
        return browser
    except Exception as exc:
        logger.warning(
            "Chrome channel %r unavailable (%s) -- falling back to bundled "
            "Chromium.  Run 'playwright install chrome' to use real Chrome.",
            BROWSER_CHANNEL, exc,
        )

    browser = await pw.chromium.launch(headless=True, args=args)
    logger.info("Browser launched: bundled Chromium (fallback)")
    return browser


class BaseScraper(abc.ABC):
    """Skeleton shared by every listing scraper.

    Usage::

        async with HomeDepotScraper() as scraper:
            items = await scraper.extract_category_page(category, 1)
    """

    source: Source
    base_url: str

    def __init__(self, *, debug: bool = False, debug_dir: str | Path = DEBUG_DIR) -> None:
        self.debug = debug
        self.debug_dir = Path(debug_dir)

        # Set by __aenter__
        self._pw: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    # ------------------------------------------------------------------
    # Async context manager -- browser lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "BaseScraper":
        self._pw = await async_playwright().start()
        self._browser = await launch_stealth_browser(self._pw)
        self._context = await self._browser.new_context(
            viewport=get_viewport(),
            user_agent=get_user_agent(),
            locale="en-US",
            timezone_id="America/New_York",
        )
        await Stealth().apply_stealth_async(self._context)
        self._page = await self._context.new_page()

        async def _block_route(route):
            await route.abort()

        for pattern in _BLOCKED_ANALYTICS_PATTERNS:
            await self._page.route(pattern, _block_route)

        logger.info("[%s] Browser ready", self.source.value)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        for obj in (self._page, self._context, self._browser):
            if obj is None:
                continue
            try:
                await obj.close()
            except Exception as exc:
                logger.debug("[%s] Close failed: %s", self.source.value, exc)
        if self._pw:
            await self._pw.stop()
        logger.info("[%s] Cleanup done", self.source.value)

    @property
    def page(self) -> Page:
        assert self._page is not None, "BaseScraper must be used as an async context manager"
        return self._page

    # ------------------------------------------------------------------
    # Debug helpers
    # ------------------------------------------------------------------

    async def save_debug_info(self, label: str, target: BrowserPage | None = None) -> None:
        """Save a screenshot and an HTML dump under ``debug_dir``.

        Used to diagnose selector drift.  Errors are logged, never raised,
        so this cannot break a crawl.
        """
        target = target or self.page
        prefix = f"{self.source.value}_{label}"
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            await target.screenshot(path=str(self.debug_dir / f"{prefix}.png"), full_page=True)
            html = await target.content()
            (self.debug_dir / f"{prefix}.html").write_text(html[:50_000], encoding="utf-8")
            logger.info("[%s] Debug artifacts saved: %s", self.source.value, self.debug_dir / prefix)
        except Exception as exc:
            logger.warning("[%s] Failed to save debug info: %s", self.source.value, exc)

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def extract_category_page(
        self,
        category: CategoryConfig,
        page_number: int,
    ) -> list[ScrapedItem]:
        """Load one listing page of *category* and return its valid items.

        Navigation and selector timeouts propagate; the orchestrator treats
        them as the end of that category.
        """
        ...
