"""Rebuild the search index from the SQLite store."""

import logging
import time
from typing import Callable

from ingest.core.database import PaperStore, row_to_paper
from ingest.core.errors import IndexerError
from ingest.drivers.progress import ImportProgress

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 10.0  # seconds between progress lines


def run_reindex(
    store: PaperStore,
    index,
    batch_size: int = 500,
    category: str | None = None,
    limit: int | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ImportProgress:
    """Bulk-index every stored paper with a title (or one primary category).

    Rows that no longer validate are skipped; failed bulk requests are
    counted as errors and the scan continues.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    total = store.count_indexable(category)
    if limit and limit < total:
        total = limit
    progress = ImportProgress(total=total, clock=clock)
    logger.info(
        "Papers to index: %d%s", total, f" (category {category})" if category else ""
    )

    last_log = clock()
    for rows in store.iter_rows(batch_size, category=category, limit=limit or None):
        papers = []
        for row in rows:
            try:
                papers.append(row_to_paper(row))
            except ValueError as exc:
                logger.warning("Skipped stored row %s/%s: %s", row["source"], row["external_id"], exc)
        progress.record_page(len(papers), len(rows) - len(papers))
        if not papers:
            continue

        try:
            accepted = index.bulk_index(papers)
        except IndexerError as exc:
            logger.error("Bulk indexing failed: %s", exc)
            progress.record_failed_batch(len(papers))
        else:
            progress.record_batch(len(papers), accepted)

        if clock() - last_log >= PROGRESS_INTERVAL:
            logger.info("%s", progress)
            last_log = clock()

    logger.info("=" * 40)
    logger.info("Reindex finished")
    logger.info("Indexed: %d", progress.indexed)
    logger.info("Skipped: %d", progress.skipped)
    logger.info("Errors:  %d", progress.errors)
    logger.info("Time:    %.0fs", progress.elapsed)
    logger.info("=" * 40)
    return progress
