"""
Bulk import of catalog JSON dumps into the ``products`` table.

Usage:
    python -m blitzprices migrate ./data/plumbing.json
    python -m blitzprices migrate ./data/plumbing.json --dry-run

The file holds a JSON array of catalog records (a single object is treated
as a one-element array).  Each record is normalized with
``transform_catalog_record``; invalid records are *skipped* with a reason,
valid ones are upserted 50 at a time on ``(source, source_product_id)``.
Store credentials are required even for ``--dry-run`` so a dry run
validates the same configuration a live run would use.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from blitzprices.config.sources import BATCH_SIZE
from blitzprices.db import StoreConfigError, get_client, get_credentials
from blitzprices.parser import transform_catalog_record
from blitzprices.upserter import PRODUCTS_KEY, BatchUpserter, UpsertResult

logger = logging.getLogger("migrate")

BATCH_DELAY_SEC = 0.1
LOG_INTERVAL = 100
REPORT_ERRORS = 10


class MigrationError(Exception):
    """Input file or environment problem detected before any work starts."""


@dataclass
class MigrationStats:
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


def load_records(path: str | Path) -> list[Any]:
    """Read *path* as JSON; a top-level object becomes a one-element list."""
    path = Path(path)
    if not path.is_file():
        raise MigrationError(f"File not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MigrationError(f"Error parsing JSON: {exc}") from exc
    if not isinstance(data, list):
        data = [data]
    return data


def migrate(
    records: list[Any],
    upserter: BatchUpserter,
    *,
    sleep: Callable[[float], Any] = time.sleep,
    batch_delay: float = BATCH_DELAY_SEC,
) -> MigrationStats:
    """Normalize and upsert *records*, returning the run's counters."""
    stats = MigrationStats(total=len(records))
    last_logged = 0

    def _account(result: UpsertResult | None, index: int | None) -> None:
        nonlocal last_logged
        if result is None:
            return
        stats.successful += result.success
        stats.failed += result.failed
        stats.processed += result.success + result.failed
        if result.error:
            stats.errors.append({"index": index, "reason": result.error, "batch": True})
        if stats.processed // LOG_INTERVAL > last_logged // LOG_INTERVAL:
            pct = stats.processed / stats.total * 100 if stats.total else 100.0
            logger.info(
                "  Processed %d/%d (%.1f%%) - %d ok, %d failed, %d skipped",
                stats.processed, stats.total, pct,
                stats.successful, stats.failed, stats.skipped,
            )
            last_logged = stats.processed

    for i, raw in enumerate(records):
        result = transform_catalog_record(raw)
        if not result.valid:
            stats.skipped += 1
            product_id = raw.get("product_id") if isinstance(raw, dict) else None
            stats.errors.append(
                {"index": i, "product_id": product_id or "unknown", "reason": result.reason}
            )
            continue

        flushed = upserter.add(result.data)
        if flushed is not None:
            _account(flushed, i)
            sleep(batch_delay)

    _account(upserter.flush(), None)
    return stats


def log_report(stats: MigrationStats) -> None:
    logger.info("=" * 60)
    logger.info("Migration Complete")
    logger.info("=" * 60)
    logger.info("Total products:  %d", stats.total)
    logger.info("Successful:      %d", stats.successful)
    logger.info("Failed:          %d", stats.failed)
    logger.info("Skipped:         %d", stats.skipped)
    if stats.errors:
        logger.info("Errors (first %d):", REPORT_ERRORS)
        for n, err in enumerate(stats.errors[:REPORT_ERRORS], start=1):
            suffix = f" (product: {err['product_id']})" if err.get("product_id") else ""
            logger.info("  %d. %s%s", n, err["reason"], suffix)
        if len(stats.errors) > REPORT_ERRORS:
            logger.info("  ... and %d more", len(stats.errors) - REPORT_ERRORS)


def run_migration(
    path: str | Path,
    *,
    dry_run: bool = False,
    db: Any = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> MigrationStats:
    """Validate inputs, import *path*, log the final report.

    Exits with status 1 when the file is missing, is not valid JSON, or the
    store credentials are not configured.
    """
    logger.info("=" * 60)
    logger.info("BlitzPrices Data Migration")
    logger.info("=" * 60)

    try:
        if not Path(path).is_file():
            raise MigrationError(f"File not found: {path}")
        get_credentials()
        records = load_records(path)
    except (MigrationError, StoreConfigError) as exc:
        logger.error("Error: %s", exc)
        sys.exit(1)

    logger.info("File: %s", Path(path).name)
    logger.info("Mode: %s", "DRY RUN (no changes)" if dry_run else "LIVE")
    logger.info("Batch size: %d", BATCH_SIZE)
    logger.info("Found %d products", len(records))

    if db is None and not dry_run:
        db = get_client()
    upserter = BatchUpserter(db, "products", PRODUCTS_KEY, dry_run=dry_run)

    stats = migrate(records, upserter, sleep=sleep)
    log_report(stats)
    return stats
