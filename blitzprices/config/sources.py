"""
Retail source configuration, browser defaults and pipeline policy constants.

Sources:
  - homedepot: listing pages under ``/b/<department>/<N-id>``, 24 cards per
    page, paginated with the ``Nao`` item-offset query parameter.

lowes / menards / grainger are valid ``source`` values on stored rows but
have no listing scraper yet; ``SOURCES`` only lists what ``run`` can crawl.

Policy constants (similarity threshold, confidence cutoffs, outlier
multipliers) are read from the environment so they can be tuned without a
release.
"""

from __future__ import annotations

import os
import random as _random
from decimal import Decimal

from dotenv import load_dotenv

from blitzprices.models import Category, CategoryConfig, Source

load_dotenv()

# ---------------------------------------------------------------------------
# Browser / Playwright defaults
# ---------------------------------------------------------------------------

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-gpu",
]

# Real Chrome gives a TLS fingerprint that matches a shipping browser;
# bundled Chromium is the fallback when it is not installed.
BROWSER_CHANNEL = os.getenv("BROWSER_CHANNEL", "chrome")

_USER_AGENT_POOL = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]


def get_user_agent() -> str:
    """Return a randomly selected realistic Chrome User-Agent."""
    return _random.choice(_USER_AGENT_POOL)


_VIEWPORT_BASES = [
    (1920, 1080),
    (1440, 900),
    (1536, 864),
]


def get_viewport() -> dict[str, int]:
    """Return a slightly randomized desktop viewport."""
    w, h = _random.choice(_VIEWPORT_BASES)
    return {
        "width": w + _random.randint(-16, 16),
        "height": h + _random.randint(-8, 8),
    }


# 'domcontentloaded' rather than 'networkidle': listing pages keep
# analytics and recommendation widgets polling forever.
WAIT_UNTIL = "domcontentloaded"

GOTO_TIMEOUT_MS = 30_000
SELECTOR_TIMEOUT_MS = 15_000

# ---------------------------------------------------------------------------
# Crawl policy
# ---------------------------------------------------------------------------

SCRAPE_DELAY_MS = int(os.getenv("SCRAPE_DELAY_MS", "1500"))
CATEGORY_DELAY_FACTOR = 3
DELAY_JITTER = 0.2  # +/- 20 % around the base interval

MAX_PAGES_PER_CATEGORY = int(os.getenv("MAX_PAGES_PER_CATEGORY", "10"))
MAX_ITEMS_PER_CATEGORY = int(os.getenv("MAX_ITEMS_PER_CATEGORY", "1000"))

# A page with fewer cards than this is treated as the last page.
PAGE_SIZE = 24
FULL_PAGE_THRESHOLD = 20

BATCH_SIZE = 50
DEFAULT_REGION = os.getenv("DEFAULT_REGION", "US")

DEBUG_DIR = os.getenv("DEBUG_DIR", "debug")
CHECKPOINT_FILE = os.getenv("CHECKPOINT_FILE", "checkpoint.json")

# Prices above this are almost always scraping errors (bundles, pallets).
MAX_SANE_PRICE = 100_000.0

# ---------------------------------------------------------------------------
# Search / submission policy
# ---------------------------------------------------------------------------

SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.3"))

# confidence: high >= HIGH_CONFIDENCE_MIN samples, medium >= MEDIUM_CONFIDENCE_MIN
HIGH_CONFIDENCE_MIN = int(os.getenv("HIGH_CONFIDENCE_MIN", "10"))
MEDIUM_CONFIDENCE_MIN = int(os.getenv("MEDIUM_CONFIDENCE_MIN", "3"))

OUTLIER_HIGH_MULTIPLIER = Decimal(os.getenv("OUTLIER_HIGH_MULTIPLIER", "3"))
OUTLIER_LOW_MULTIPLIER = Decimal(os.getenv("OUTLIER_LOW_MULTIPLIER", "0.3"))

MAX_FANOUT_TERMS = 6

SEARCH_MISS_SUGGESTION = "No community data available for this item."

# ---------------------------------------------------------------------------
# Source definitions
# ---------------------------------------------------------------------------

HOMEDEPOT_BASE_URL = "https://www.homedepot.com"

HOMEDEPOT_CATEGORIES = [
    CategoryConfig("Plumbing", "/b/Plumbing/N-5yc1vZbqew", Category.MATERIALS),
    CategoryConfig("Electrical", "/b/Electrical/N-5yc1vZarcd", Category.MATERIALS),
    CategoryConfig(
        "Heating, Venting & Cooling",
        "/b/Heating-Venting-Cooling/N-5yc1vZc4k8",
        Category.MATERIALS,
    ),
    CategoryConfig("Building Materials", "/b/Building-Materials/N-5yc1vZaqns", Category.MATERIALS),
    CategoryConfig("Hardware", "/b/Hardware/N-5yc1vZc21m", Category.MATERIALS),
    CategoryConfig("Tools", "/b/Tools/N-5yc1vZc1xy", Category.EQUIPMENT),
]

SOURCES: dict[Source, dict] = {
    Source.HOMEDEPOT: {
        "base_url": HOMEDEPOT_BASE_URL,
        "categories": HOMEDEPOT_CATEGORIES,
    },
}


def get_categories(source: Source) -> list[CategoryConfig]:
    """Return the configured listing categories for *source* (empty if none)."""
    cfg = SOURCES.get(source)
    return list(cfg["categories"]) if cfg else []
