"""Query several adapters, merge their results and write them out."""

import logging
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from ingest.core.errors import IndexerError, IngestError
from ingest.sources.dedup import deduplicate
from ingest.sources.models import Paper, SearchResult

logger = logging.getLogger(__name__)


class SearchAdapter(Protocol):
    def search(self, query: str, limit: int = 20, offset: int = 0) -> SearchResult: ...


class SearchIngestResult(BaseModel):
    papers: list[Paper] = Field(default_factory=list)
    totals: dict[str, int] = Field(default_factory=dict)  # source-reported totals
    failed_sources: dict[str, str] = Field(default_factory=dict)
    dedup_stats: dict = Field(default_factory=dict)
    stored: int = 0
    indexed: int = 0
    index_error: Optional[str] = None


def ingest_search(
    adapters: dict[str, SearchAdapter],
    query: str,
    limit: int = 20,
    store=None,
    index=None,
) -> SearchIngestResult:
    """Run ``query`` against every adapter and keep one record per paper.

    A failing adapter is logged and skipped. Results are deduplicated in
    adapter order, then written to ``store`` and ``index`` when given.
    """
    result = SearchIngestResult()
    gathered: list[Paper] = []

    for name, adapter in adapters.items():
        try:
            found = adapter.search(query, limit=limit)
        except IngestError as exc:
            logger.error("%s search failed: %s", name, exc)
            result.failed_sources[name] = str(exc)
            continue
        result.totals[name] = found.total
        gathered.extend(found.papers)
        logger.info("%s: %d papers", name, len(found.papers))

    dedup = deduplicate(gathered)
    result.papers = dedup.unique_papers
    result.dedup_stats = dedup.stats

    if store is not None and result.papers:
        result.stored = store.add_papers(result.papers)
    if index is not None and result.papers:
        try:
            result.indexed = index.bulk_index(result.papers)
        except IndexerError as exc:
            logger.error("Bulk indexing failed: %s", exc)
            result.index_error = str(exc)

    logger.info(
        "Search %r: %d unique papers, %d stored, %d indexed",
        query, len(result.papers), result.stored, result.indexed,
    )
    return result
