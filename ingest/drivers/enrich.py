"""Citation-count enrichment of stored papers.

Papers at citation_count = 0 are looked up in batches. A positive answer is
written back; no match (or zero) marks the paper with a sentinel so the next
selection skips it. When the run ends, however it ends, the sentinels are
reset to zero again.
"""

import logging
import time
from typing import Callable

from pydantic import BaseModel

from ingest.core.database import PaperStore
from ingest.core.errors import UpstreamError
from ingest.sources.openalex import MAX_LOOKUP_BATCH, lookup_citations

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 10.0  # seconds between progress lines

LookupFn = Callable[[list[str]], dict[str, int]]


class EnrichmentStats(BaseModel):
    processed: int = 0
    enriched: int = 0
    not_found: int = 0
    errors: int = 0
    failures: int = 0  # failed lookup calls, each followed by a cooldown
    aborted: bool = False
    sentinels_reset: int = 0


def run_enrichment(
    store: PaperStore,
    lookup: LookupFn = lookup_citations,
    batch_size: int = MAX_LOOKUP_BATCH,
    limit: int | None = None,
    delay: float = 0.1,
    cooldown: float = 10.0,
    max_consecutive_failures: int = 5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> EnrichmentStats:
    """Enrich up to ``limit`` papers (all unenriched ones if None)."""
    batch_size = min(max(batch_size, 1), MAX_LOOKUP_BATCH)
    stats = EnrichmentStats()

    unenriched = store.count_unenriched()
    logger.info("Papers needing enrichment: %d", unenriched)
    if unenriched == 0:
        logger.info("No papers need enrichment")
        return stats

    to_process = unenriched if not limit else min(limit, unenriched)
    logger.info("Will enrich up to %d papers in batches of %d", to_process, batch_size)

    started = clock()
    last_log = started
    consecutive_failures = 0

    try:
        while stats.processed < to_process:
            ids = store.select_unenriched(min(batch_size, to_process - stats.processed))
            if not ids:
                break

            try:
                counts = lookup(ids)
            except (UpstreamError, OSError) as exc:
                # Leave the batch unmarked and select it again after a pause
                stats.failures += 1
                consecutive_failures += 1
                if consecutive_failures > max_consecutive_failures:
                    logger.error(
                        "Citation lookup failed %d times in a row, stopping: %s",
                        consecutive_failures, exc,
                    )
                    stats.aborted = True
                    break
                logger.warning(
                    "Citation lookup failed (%d/%d): %s, cooling down %.0fs",
                    consecutive_failures, max_consecutive_failures, exc, cooldown,
                )
                sleep(cooldown)
                continue
            consecutive_failures = 0

            _apply(store, ids, counts, stats)
            stats.processed += len(ids)

            sleep(delay)

            now = clock()
            if now - last_log >= PROGRESS_INTERVAL:
                _log_progress(stats, to_process, now - started)
                last_log = now
    finally:
        stats.sentinels_reset = store.reset_sentinels()

    logger.info("=== Enrichment %s ===", "aborted" if stats.aborted else "complete")
    logger.info("Processed: %d", stats.processed)
    logger.info("Enriched:  %d (citation count updated)", stats.enriched)
    logger.info("Not found: %d (no citations found)", stats.not_found)
    logger.info("Errors:    %d", stats.errors)
    logger.info("Failures:  %d lookup calls", stats.failures)
    logger.info("Duration:  %.0fs", clock() - started)
    return stats


def _apply(store: PaperStore, ids: list[str], counts: dict[str, int], stats: EnrichmentStats) -> None:
    checked = []
    for arxiv_id in ids:
        count = counts.get(arxiv_id, 0)
        if count <= 0:
            checked.append(arxiv_id)
            continue
        if store.set_citation_count(arxiv_id, count):
            stats.enriched += 1
        else:
            logger.warning("Failed to update %s", arxiv_id)
            stats.errors += 1
            checked.append(arxiv_id)
    stats.not_found += len(checked)
    store.mark_checked(checked)


def _log_progress(stats: EnrichmentStats, to_process: int, elapsed: float) -> None:
    rate = stats.processed / elapsed if elapsed > 0 else 0.0
    eta = (to_process - stats.processed) / rate if rate > 0 else 0.0
    logger.info(
        "Progress: %d/%d processed, %d enriched, %d not found, %d errors | %.0f/sec | ETA %.0fs",
        stats.processed, to_process, stats.enriched, stats.not_found, stats.errors, rate, eta,
    )
