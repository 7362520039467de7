from .base import BaseScraper, BrowserPage, launch_stealth_browser
from .homedepot import HomeDepotScraper

__all__ = [
    "BaseScraper",
    "BrowserPage",
    "HomeDepotScraper",
    "launch_stealth_browser",
]
