"""
Resumable crawl checkpoint.

A small JSON file records the last completed page of the category being
crawled::

    {"category": "Plumbing", "page": 3, "items_scraped": 71}

It is rewritten after every page and removed once the category finishes,
so a crashed run picks up on the next page instead of starting over.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from blitzprices.config.sources import CHECKPOINT_FILE

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    category: str
    page: int
    items_scraped: int = 0


class CheckpointStore:
    """Load, save and clear the checkpoint file at *path*."""

    def __init__(self, path: str | Path = CHECKPOINT_FILE) -> None:
        self.path = Path(path)

    def load(self) -> Checkpoint | None:
        if not self.path.exists():
            logger.info("No checkpoint found, starting fresh")
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            checkpoint = Checkpoint(
                category=str(data["category"]),
                page=int(data["page"]),
                items_scraped=int(data.get("items_scraped", 0)),
            )
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable checkpoint %s: %s", self.path, exc)
            return None
        logger.info(
            "Resuming from checkpoint: %s, page %d (%d items)",
            checkpoint.category, checkpoint.page, checkpoint.items_scraped,
        )
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        self.path.write_text(json.dumps(asdict(checkpoint), indent=2), encoding="utf-8")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
