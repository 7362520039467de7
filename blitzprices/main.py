"""
BlitzPrices crawl orchestrator.

Drives one listing scraper across its configured categories, strictly one
page at a time, normalizes every card and feeds the rows to a
``BatchUpserter`` targeting ``community_prices``.

Usage:
    python -m blitzprices run                     # crawl every category
    python -m blitzprices run --source=homedepot  # one source
    python -m blitzprices run --test              # first category, one page
    python -m blitzprices run --dry-run           # scrape only, no DB writes
    python -m blitzprices run --debug             # screenshot + HTML per page

Environment variables:
    SUPABASE_URL / SUPABASE_SERVICE_KEY   store credentials (not needed for --dry-run)
    SCRAPE_DELAY_MS                       base delay between pages (default 1500)
    MAX_PAGES_PER_CATEGORY                page cap per category (default 10)
    MAX_ITEMS_PER_CATEGORY                item cap per category (default 1000)
    CHECKPOINT_FILE                       resume file (default checkpoint.json)
"""

from __future__ import annotations

import asyncio
import logging
import random
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from blitzprices.config.sources import (
    DEFAULT_REGION,
    MAX_ITEMS_PER_CATEGORY,
    MAX_PAGES_PER_CATEGORY,
    SCRAPE_DELAY_MS,
    SOURCES,
    get_categories,
)
from blitzprices.db import StoreConfigError, check_connection, get_client, refresh_aggregates
from blitzprices.handlers import (
    Checkpoint,
    CheckpointStore,
    category_delay,
    has_next_page,
    jittered_delay,
)
from blitzprices.models import CategoryConfig, ScrapedItem, Source
from blitzprices.parser import to_community_row
from blitzprices.platforms import HomeDepotScraper
from blitzprices.upserter import COMMUNITY_PRICES_KEY, BatchUpserter

logger = logging.getLogger("orchestrator")

# ---------------------------------------------------------------------------
# Platform router
# ---------------------------------------------------------------------------

SCRAPER_MAP = {
    Source.HOMEDEPOT: HomeDepotScraper,
}


class CategoryExtractor(Protocol):
    async def extract_category_page(
        self, category: CategoryConfig, page_number: int,
    ) -> list[ScrapedItem]: ...


class CategoryState(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class CrawlStats:
    total: int = 0
    saved: int = 0
    errors: int = 0


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CrawlOrchestrator:
    """Sequential category -> page crawl with polite, jittered pacing.

    A page failure (navigation error, timeout, extraction exception) counts
    one error and ends that category as ``errored``; the crawl moves on to
    the next category.
    """

    def __init__(
        self,
        extractor: CategoryExtractor,
        upserter: BatchUpserter,
        categories: list[CategoryConfig],
        *,
        region: str = DEFAULT_REGION,
        max_pages: int = MAX_PAGES_PER_CATEGORY,
        max_items: int = MAX_ITEMS_PER_CATEGORY,
        test_mode: bool = False,
        delay_ms: float = SCRAPE_DELAY_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        checkpoint: CheckpointStore | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if test_mode:
            categories = categories[:1]
            max_pages = 1
            checkpoint = None
        self.extractor = extractor
        self.upserter = upserter
        self.categories = list(categories)
        self.region = region
        self.max_pages = max_pages
        self.max_items = max_items
        self.test_mode = test_mode
        self.delay_ms = delay_ms
        self._sleep = sleep
        self.checkpoint = checkpoint
        self._rng = rng

        self.states: dict[str, CategoryState] = {
            c.name: CategoryState.PENDING for c in self.categories
        }
        self.pages_scraped: dict[str, int] = {c.name: 0 for c in self.categories}
        self._total = 0
        self._page_errors = 0

    # ------------------------------------------------------------------

    @property
    def stats(self) -> CrawlStats:
        return CrawlStats(
            total=self._total,
            saved=self.upserter.stats.success,
            errors=self._page_errors + self.upserter.stats.failed,
        )

    async def run(self) -> CrawlStats:
        resume = self.checkpoint.load() if self.checkpoint else None
        todo = self.categories
        if resume is not None:
            names = [c.name for c in todo]
            if resume.category in names:
                idx = names.index(resume.category)
                for done in todo[:idx]:
                    self.states[done.name] = CategoryState.DONE
                todo = todo[idx:]
            else:
                logger.warning("Checkpoint category %r not configured, ignoring", resume.category)
                resume = None

        try:
            for i, category in enumerate(todo):
                if i > 0:
                    await self._sleep(category_delay(self.delay_ms, rng=self._rng))
                if resume is not None and resume.category == category.name:
                    await self._crawl_category(category, resume.page + 1, resume.items_scraped)
                else:
                    await self._crawl_category(category, 1, 0)
        finally:
            self.upserter.flush()

        return self.stats

    async def _crawl_category(
        self,
        category: CategoryConfig,
        start_page: int,
        items_in_category: int,
    ) -> None:
        logger.info("=" * 60)
        logger.info("Scraping category: %s (from page %d)", category.name, start_page)
        logger.info("=" * 60)
        self.states[category.name] = CategoryState.SCRAPING

        page_number = start_page
        while page_number <= self.max_pages and items_in_category < self.max_items:
            if page_number > start_page:
                await self._sleep(jittered_delay(self.delay_ms, rng=self._rng))

            try:
                items = await self.extractor.extract_category_page(category, page_number)
            except Exception as exc:
                self._page_errors += 1
                self.states[category.name] = CategoryState.ERRORED
                logger.error(
                    "[%s] Page %d failed (%s): %s",
                    category.name, page_number, type(exc).__name__, exc,
                )
                self._clear_checkpoint()
                return

            found = len(items)
            items = items[: self.max_items - items_in_category]
            for item in items:
                self.upserter.add(to_community_row(item, self.region))
            self._total += len(items)
            items_in_category += len(items)
            self.pages_scraped[category.name] += 1

            logger.info(
                "[%s] Page %d: %d items (%d in category)",
                category.name, page_number, len(items), items_in_category,
            )
            if self.checkpoint is not None:
                self.checkpoint.save(Checkpoint(category.name, page_number, items_in_category))

            if not has_next_page(
                page_number, found, items_in_category,
                max_pages=self.max_pages, max_items=self.max_items,
            ):
                break
            page_number += 1

        self.states[category.name] = CategoryState.DONE
        self._clear_checkpoint()

    def _clear_checkpoint(self) -> None:
        if self.checkpoint is not None:
            self.checkpoint.clear()


# ---------------------------------------------------------------------------
# `run` command
# ---------------------------------------------------------------------------


def _connect(dry_run: bool) -> Any:
    """Return a verified store client, or ``None`` for dry runs.

    Exits the process with status 1 when the store is not configured or
    cannot be reached; nothing has been scraped at that point.
    """
    if dry_run:
        logger.info("[DRY RUN] Skipping database connectivity check")
        return None
    try:
        db = get_client()
        check_connection(db)
    except StoreConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except Exception as exc:
        logger.error("Database connection failed: %s", exc)
        logger.error("Make sure SUPABASE_URL / SUPABASE_SERVICE_KEY are set and community_prices exists")
        sys.exit(1)
    logger.info("Database connected")
    return db


async def run(
    source: Source | str = Source.HOMEDEPOT,
    *,
    test: bool = False,
    dry_run: bool = False,
    debug: bool = False,
) -> CrawlStats:
    """Run the full crawl for *source*."""
    source = Source(source)
    if source not in SOURCES:
        raise ValueError(f"No listing scraper configured for {source.value!r}")

    start = time.time()
    logger.info("=" * 60)
    logger.info("BlitzPrices Scraper Starting")
    logger.info("  SOURCE:     %s", source.value)
    logger.info("  TEST MODE:  %s", test)
    logger.info("  DRY_RUN:    %s", dry_run)
    logger.info("  DEBUG:      %s", debug)
    logger.info("=" * 60)

    db = _connect(dry_run)
    upserter = BatchUpserter(db, "community_prices", COMMUNITY_PRICES_KEY, dry_run=dry_run)
    # Dry runs must not consume or clear a live crawl's resume point.
    checkpoint = None if (test or dry_run) else CheckpointStore()

    async with SCRAPER_MAP[source](debug=debug) as scraper:
        orchestrator = CrawlOrchestrator(
            scraper,
            upserter,
            get_categories(source),
            test_mode=test,
            checkpoint=checkpoint,
        )
        stats = await orchestrator.run()

    if db is not None:
        refresh_aggregates(db)

    elapsed = time.time() - start
    logger.info("=" * 60)
    logger.info("SCRAPE COMPLETE%s", " [DRY RUN]" if dry_run else "")
    logger.info("  Total:      %d", stats.total)
    logger.info("  Saved:      %d", stats.saved)
    logger.info("  Errors:     %d", stats.errors)
    for name, state in orchestrator.states.items():
        logger.info("    - %s: %s (%d pages)", name, state.value, orchestrator.pages_scraped[name])
    if upserter.stats.errors:
        logger.info("  Batch errors:")
        for err in upserter.stats.errors[:10]:
            logger.info("    - %s", err)
    logger.info("  Duration:   %.1f min", elapsed / 60)
    logger.info("=" * 60)
    return stats
