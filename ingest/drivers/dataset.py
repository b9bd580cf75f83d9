"""Bulk dataset import: every file of the latest release into the index."""

import logging
from typing import Callable, Optional

from pydantic import BaseModel, Field

from ingest.core.errors import (
    BatchCallbackError,
    IndexerError,
    RetriesExhausted,
    StreamDecodeError,
    UpstreamError,
)
from ingest.drivers.progress import ImportProgress
from ingest.sources.jsonl import ScanStats
from ingest.sources.s2_datasets import (
    S2DatasetClient,
    S2DatasetPaper,
    dataset_paper_to_paper,
    has_title,
    has_title_and_arxiv_id,
)

logger = logging.getLogger(__name__)

# Failures that end one file but not the run
_FILE_ERRORS = (StreamDecodeError, BatchCallbackError, RetriesExhausted, UpstreamError)


class FileResult(BaseModel):
    index: int
    matched: int = 0
    scanned: int = 0
    malformed: int = 0
    error: Optional[str] = None


class DatasetImportResult(BaseModel):
    """Per-file outcome plus run totals. ``failed_files`` can be re-run."""

    release_id: str
    dataset: str
    files_total: int
    start_file: int
    files: list[FileResult] = Field(default_factory=list)
    failed_files: list[int] = Field(default_factory=list)
    matched: int = 0
    indexed: int = 0
    skipped: int = 0
    errors: int = 0


def run_dataset_import(
    client: S2DatasetClient,
    index,
    dataset: str = "papers",
    batch_size: int = 500,
    start_file: int = 0,
    arxiv_only: bool = True,
    predicate: Callable[[S2DatasetPaper], bool] | None = None,
    max_files: int | None = None,
    store=None,
) -> DatasetImportResult:
    """Stream every file of ``dataset`` from ``start_file`` on into ``index``.

    A file that fails to download or decode is logged and recorded in
    ``failed_files``; the remaining files are still imported.
    With a ``store``, converted papers are also upserted there.
    """
    if predicate is None:
        predicate = has_title_and_arxiv_id if arxiv_only else has_title

    release = client.get_latest_release()
    manifest = client.get_dataset(release.release_id, dataset)
    files = manifest.files
    logger.info(
        "Release %s, dataset '%s': %d files (starting at %d)",
        release.release_id, dataset, len(files), start_file,
    )

    result = DatasetImportResult(
        release_id=release.release_id,
        dataset=dataset,
        files_total=len(files),
        start_file=start_file,
    )
    progress = ImportProgress()

    def on_batch(batch: list[S2DatasetPaper]) -> None:
        papers = []
        for record in batch:
            try:
                paper = dataset_paper_to_paper(record)
            except ValueError as exc:
                logger.warning("Dropped corpus id %s: %s", record.corpusid, exc)
                paper = None
            if paper is None:
                progress.skipped += 1
            else:
                papers.append(paper)
        progress.converted += len(papers)
        if not papers:
            return
        if store is not None:
            store.add_papers(papers)
        try:
            accepted = index.bulk_index(papers)
        except IndexerError as exc:
            logger.error("Bulk indexing failed: %s", exc)
            progress.record_failed_batch(len(papers))
            return
        progress.record_batch(len(papers), accepted)

    selected = list(enumerate(files))[start_file:]
    if max_files is not None:
        selected = selected[:max_files]

    for i, url in selected:
        logger.info("File %d/%d", i + 1, len(files))
        stats = ScanStats()
        file_result = FileResult(index=i)
        try:
            client.stream_papers(url, batch_size, on_batch, predicate=predicate, stats=stats)
        except _FILE_ERRORS as exc:
            logger.error("File %d failed: %s", i, exc)
            logger.error("Resume with --start-file=%d", i)
            file_result.error = str(exc)
            result.failed_files.append(i)
        progress.pages += 1

        file_result.matched = stats.matched
        file_result.scanned = stats.scanned
        file_result.malformed = stats.malformed
        result.files.append(file_result)
        result.matched += stats.matched
        logger.info(
            "File %d done: %d matched / %d scanned | %d indexed total, %d errors",
            i, stats.matched, stats.scanned, progress.indexed, progress.errors,
        )

    result.indexed = progress.indexed
    result.skipped = progress.skipped
    result.errors = progress.errors

    logger.info("=" * 40)
    logger.info("Dataset import finished")
    logger.info("Files:   %d (%d failed)", len(result.files), len(result.failed_files))
    logger.info("Matched: %d", result.matched)
    logger.info("Indexed: %d", result.indexed)
    logger.info("Errors:  %d", result.errors)
    logger.info("=" * 40)
    return result
