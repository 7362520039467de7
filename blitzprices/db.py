"""
Supabase client construction.

The client is created once per process by the CLI / API entry points and
passed explicitly to every component that needs the store.

Environment variables:
    SUPABASE_URL
    SUPABASE_SERVICE_KEY   (SUPABASE_KEY is accepted for older .env files)
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

logger = logging.getLogger(__name__)


class StoreConfigError(RuntimeError):
    """Store URL or key missing from the environment."""


def get_credentials() -> tuple[str, str]:
    url = os.getenv("SUPABASE_URL", "")
    key = os.getenv("SUPABASE_SERVICE_KEY", "") or os.getenv("SUPABASE_KEY", "")
    if not url or not key:
        raise StoreConfigError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
    return url, key


def get_client() -> Client:
    url, key = get_credentials()
    client = create_client(url, key)
    logger.info("Supabase client created for %s...", url[:40])
    return client


def check_connection(db: Client, table: str = "community_prices") -> None:
    """Cheap read against *table*; raises if the store is unreachable."""
    db.table(table).select("id").limit(1).execute()


def refresh_aggregates(db: Client) -> bool:
    """Rebuild ``price_aggregates`` so new rows reach search and outlier checks.

    Failures are logged and reported as ``False``; the rows themselves are
    already stored and the next refresh picks them up.
    """
    try:
        db.rpc("refresh_price_aggregates").execute()
    except Exception as exc:
        logger.warning("price_aggregates refresh failed: %s", exc)
        return False
    logger.info("price_aggregates refreshed")
    return True
