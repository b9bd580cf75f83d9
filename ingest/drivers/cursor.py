"""Resumable cursor-paginated import into the search index."""

import logging
import time
from typing import Callable, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from ingest.core.errors import IndexerError, IngestError
from ingest.core.retry import RetryPolicy
from ingest.drivers.progress import ImportProgress
from ingest.sources.models import Paper

logger = logging.getLogger(__name__)

START_CURSOR = "*"
LOG_EVERY_PAGES = 50
LOG_FIRST_PAGES = 5
DIAGNOSTIC_PAGES = 3
_CURSOR_PREVIEW = 20


class CursorPage(Protocol):
    results: list
    total: int
    next_cursor: Optional[str]


class CursorSource(Protocol):
    """What the driver needs from a paginated source."""

    name: str

    def fetch_page(self, cursor: str) -> CursorPage: ...

    def convert(self, item) -> Paper | None: ...


class BulkIndex(Protocol):
    def bulk_index(self, papers: list[Paper]) -> int: ...


class CursorRunResult(BaseModel):
    """Outcome of one run. ``last_cursor`` is where to resume."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    progress: ImportProgress
    last_cursor: str
    completed: bool
    aborted: bool = False
    error: Optional[str] = None


# ── Driver ───────────────────────────────────────────────────────────


def run_cursor_import(
    source: CursorSource,
    index: BulkIndex,
    start_cursor: str = START_CURSOR,
    batch_size: int = 500,
    page_delay: float = 0.12,
    policy: RetryPolicy | None = None,
    max_pages: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    store=None,
) -> CursorRunResult:
    """Fetch, convert and index page after page until the cursor runs out.

    Fetch failures are retried by ``policy``; once it gives up the run stops
    and reports the cursor of the page that failed so it can be restarted
    from exactly there. Index failures are counted and the run continues.
    With a ``store``, converted papers are also upserted there.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    policy = policy or RetryPolicy(name=source.name, sleep=sleep)
    progress = ImportProgress()
    cursor = start_cursor or START_CURSOR

    logger.info("Starting %s import from cursor %s", source.name, _preview(cursor))

    while True:
        try:
            page = policy.call(source.fetch_page, cursor)
        except IngestError as exc:
            logger.error("%s fetch failed: %s", source.name, exc)
            logger.error("Resume with --cursor=%s", cursor)
            _log_summary(source.name, progress)
            return CursorRunResult(
                progress=progress, last_cursor=cursor, completed=False,
                aborted=True, error=str(exc),
            )

        if progress.pages == 0:
            progress.total = page.total
            logger.info("Total records reported by %s: %d", source.name, page.total)

        papers, skipped = _convert_page(source, page.results, progress.pages)
        progress.record_page(len(papers), skipped)
        if store is not None and papers:
            store.add_papers(papers)
        _index_in_batches(index, papers, batch_size, progress)

        if progress.pages % LOG_EVERY_PAGES == 0 or progress.pages <= LOG_FIRST_PAGES:
            logger.info("%s | Cursor: %s", progress, _preview(cursor))

        if not page.next_cursor or not page.results:
            logger.info("No more results, %s import complete", source.name)
            _log_summary(source.name, progress)
            return CursorRunResult(progress=progress, last_cursor=cursor, completed=True)

        cursor = page.next_cursor
        if max_pages is not None and progress.pages >= max_pages:
            logger.info("Stopping after %d pages; resume with --cursor=%s", progress.pages, cursor)
            _log_summary(source.name, progress)
            return CursorRunResult(progress=progress, last_cursor=cursor, completed=False)

        # Politeness delay between pages
        sleep(page_delay)


# ── Steps ────────────────────────────────────────────────────────────


def _convert_page(source: CursorSource, items: list, page_number: int) -> tuple[list[Paper], int]:
    papers: list[Paper] = []
    skipped = 0
    diagnostics = page_number < DIAGNOSTIC_PAGES
    describe = getattr(source, "describe", repr)

    for item in items:
        try:
            paper = source.convert(item)
        except ValueError as exc:
            # pydantic.ValidationError is a ValueError
            logger.warning("Dropped unconvertible record %s: %s", describe(item), exc)
            paper = None
        if paper is None:
            skipped += 1
            if diagnostics:
                logger.info("DEBUG skipped: %s", describe(item))
            continue
        papers.append(paper)

    if diagnostics:
        if items:
            logger.info("DEBUG page %d first record: %s", page_number + 1, describe(items[0]))
        logger.info(
            "DEBUG page %d: %d results, %d converted, %d skipped",
            page_number + 1, len(items), len(papers), skipped,
        )
    return papers, skipped


def _index_in_batches(
    index: BulkIndex,
    papers: list[Paper],
    batch_size: int,
    progress: ImportProgress,
) -> None:
    for start in range(0, len(papers), batch_size):
        batch = papers[start:start + batch_size]
        try:
            accepted = index.bulk_index(batch)
        except IndexerError as exc:
            logger.error("Bulk indexing failed: %s", exc)
            progress.record_failed_batch(len(batch))
            continue
        progress.record_batch(len(batch), accepted)


def _preview(cursor: str) -> str:
    if len(cursor) <= _CURSOR_PREVIEW:
        return cursor
    return cursor[:_CURSOR_PREVIEW] + "..."


def _log_summary(name: str, progress: ImportProgress) -> None:
    logger.info("=" * 40)
    logger.info("%s import finished", name)
    logger.info("Pages:   %d", progress.pages)
    logger.info("Indexed: %d", progress.indexed)
    logger.info("Skipped: %d", progress.skipped)
    logger.info("Errors:  %d", progress.errors)
    logger.info("Time:    %.0fs", progress.elapsed)
    logger.info("=" * 40)
