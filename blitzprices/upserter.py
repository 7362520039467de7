"""
Batched, idempotent upserts into Supabase.

Records are buffered and written ``batch_size`` at a time with a single
``upsert(..., on_conflict=<natural key>, ignore_duplicates=False)`` call, so
re-running a job overwrites rows in place (last write wins) instead of
duplicating them.

A failed batch is failed as a whole: no partial-batch accounting and no
retry.  The error message is kept on the ``UpsertResult`` so the caller can
put it in its final report.  Re-running the job is the recovery path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from blitzprices.config.sources import BATCH_SIZE

logger = logging.getLogger(__name__)

# Natural keys.  Scraped community_prices rows carry
# name_normalized|region|category|unit in dedupe_key; submissions leave it
# NULL so they never collide.
COMMUNITY_PRICES_KEY = "dedupe_key"
PRODUCTS_KEY = "source,source_product_id"


@dataclass
class UpsertResult:
    success: int = 0
    failed: int = 0
    error: str | None = None


@dataclass
class UpsertStats:
    batches: int = 0
    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class BatchUpserter:
    """Accumulate rows and upsert them into *table* in fixed-size batches.

    Usage::

        upserter = BatchUpserter(db, "community_prices", COMMUNITY_PRICES_KEY)
        for row in rows:
            upserter.add(row)
        upserter.flush()
        print(upserter.stats.success, upserter.stats.failed)
    """

    def __init__(
        self,
        db: Any,
        table: str,
        on_conflict: str,
        *,
        batch_size: int = BATCH_SIZE,
        dry_run: bool = False,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if db is None and not dry_run:
            raise ValueError("a store client is required unless dry_run is set")
        self.db = db
        self.table = table
        self.on_conflict = on_conflict
        self.key_columns = [c.strip() for c in on_conflict.split(",")]
        self.batch_size = batch_size
        self.dry_run = dry_run
        self.stats = UpsertStats()
        self._buffer: list[dict[str, Any]] = []

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def add(self, record: dict[str, Any]) -> UpsertResult | None:
        """Buffer *record*; returns the batch result when this add flushed."""
        self._buffer.append(record)
        if len(self._buffer) >= self.batch_size:
            return self.flush()
        return None

    def flush(self) -> UpsertResult | None:
        """Write whatever is buffered.  ``None`` when the buffer was empty."""
        if not self._buffer:
            return None
        batch, self._buffer = self._buffer, []
        return self.upsert_batch(batch)

    def _dedupe(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Collapse rows sharing a natural key; later rows win.

        Postgres rejects an ON CONFLICT DO UPDATE that touches the same row
        twice in one statement.
        """
        deduped: dict[tuple, dict[str, Any]] = {}
        for row in records:
            key = tuple(row.get(col) for col in self.key_columns)
            deduped[key] = row
        return list(deduped.values())

    def upsert_batch(self, records: list[dict[str, Any]]) -> UpsertResult:
        """Upsert *records* as one request and account for them as a unit."""
        if not records:
            return UpsertResult()

        rows = self._dedupe(records)
        if len(rows) < len(records):
            logger.info(
                "[%s] Collapsed %d -> %d rows on (%s)",
                self.table, len(records), len(rows), self.on_conflict,
            )

        self.stats.batches += 1

        if self.dry_run:
            logger.info("[DRY RUN] Would upsert %d rows into %s", len(rows), self.table)
            for row in rows:
                logger.debug("[DRY RUN]   %s", row)
            result = UpsertResult(success=len(records))
        else:
            try:
                (
                    self.db.table(self.table)
                    .upsert(rows, on_conflict=self.on_conflict, ignore_duplicates=False)
                    .execute()
                )
            except Exception as exc:
                logger.error(
                    "[%s] Upsert of %d rows failed: %s", self.table, len(rows), exc,
                )
                result = UpsertResult(failed=len(records), error=str(exc))
            else:
                logger.info("[%s] Upserted %d rows", self.table, len(rows))
                result = UpsertResult(success=len(records))

        self.stats.success += result.success
        self.stats.failed += result.failed
        if result.error:
            self.stats.errors.append(result.error)
        return result
