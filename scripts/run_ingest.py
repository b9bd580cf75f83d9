#!/usr/bin/env python3
"""Paper ingestion runner: cursor import, dataset import, reindex, enrichment, search."""

import argparse
import json
import logging
import sys
import time
from functools import partial
from pathlib import Path

import requests

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from ingest.core.config import (
    IngestSettings,
    load_settings,
    require_index_endpoint,
    require_s2_api_key,
)
from ingest.core.database import PaperStore
from ingest.core.errors import ConfigError, IndexerError
from ingest.core.retry import RetryPolicy
from ingest.drivers.cursor import run_cursor_import
from ingest.drivers.dataset import run_dataset_import
from ingest.drivers.enrich import run_enrichment
from ingest.drivers.reindex import run_reindex
from ingest.drivers.search import ingest_search
from ingest.index.opensearch import PaperIndex
from ingest.sources.arxiv import ArxivClient
from ingest.sources.openalex import OpenAlexWorksSource, configure_mailto, lookup_citations
from ingest.sources.pubmed import PubMedClient
from ingest.sources.s2_datasets import S2DatasetClient
from ingest.sources.semanticscholar import SemanticScholarClient

logger = logging.getLogger("ingest")

SOURCES = ("arxiv", "pubmed", "semanticscholar")
DEFAULT_CONFIG = PROJECT_ROOT / "config" / "ingest.yaml"


# ── Commands ─────────────────────────────────────────────────────────


def cmd_openalex(settings: IngestSettings, args) -> int:
    index = _open_index(settings, recreate=args.recreate_index)
    oa = settings.openalex
    source = OpenAlexWorksSource(
        source_id=oa.arxiv_source_id,
        per_page=oa.per_page,
        mailto=oa.mailto,
        timeout=oa.timeout_seconds,
    )
    logger.info("OpenAlex mailto: %s", oa.mailto or "(none, common pool)")

    store = PaperStore(settings.store.path) if args.store else None
    try:
        result = run_cursor_import(
            source,
            index,
            start_cursor=args.cursor or oa.start_cursor,
            batch_size=settings.batch_size,
            page_delay=oa.page_delay_seconds,
            policy=RetryPolicy.from_settings(settings.retry, name="OpenAlex"),
            max_pages=args.max_pages,
            store=store,
        )
    finally:
        if store is not None:
            store.close()
    _log_doc_count(index, "Final")
    if not result.completed:
        logger.info("Resume cursor: %s", result.last_cursor)
    return 1 if result.aborted else 0


def cmd_s2(settings: IngestSettings, args) -> int:
    api_key = require_s2_api_key(settings)
    index = _open_index(settings, recreate=args.recreate_index)
    s2 = settings.semanticscholar
    client = S2DatasetClient(
        api_key, policy=RetryPolicy.from_settings(settings.retry, name="S2 datasets")
    )

    store = PaperStore(settings.store.path) if args.store else None
    try:
        result = run_dataset_import(
            client,
            index,
            dataset=s2.dataset,
            batch_size=settings.batch_size,
            start_file=args.start_file if args.start_file is not None else s2.start_file,
            arxiv_only=not args.all_papers and s2.arxiv_only,
            max_files=args.max_files,
            store=store,
        )
    finally:
        if store is not None:
            store.close()
    _log_doc_count(index, "Final")
    if result.failed_files:
        logger.warning("Failed files: %s", result.failed_files)
        return 1
    return 0


def cmd_reindex(settings: IngestSettings, args) -> int:
    index = _open_index(settings, recreate=args.recreate_index)
    store = PaperStore(settings.store.path)
    try:
        progress = run_reindex(
            store,
            index,
            batch_size=args.batch or settings.batch_size,
            category=args.category,
            limit=args.limit,
        )
    finally:
        store.close()
    _log_doc_count(index, "Final")
    return 1 if progress.errors else 0


def cmd_enrich(settings: IngestSettings, args) -> int:
    store = PaperStore(settings.store.path)
    oa = settings.openalex
    configure_mailto(oa.mailto)
    try:
        stats = run_enrichment(
            store,
            lookup=partial(lookup_citations, session=requests.Session(), timeout=oa.timeout_seconds),
            batch_size=oa.enrich_batch_size,
            limit=args.limit,
            delay=oa.enrich_delay_seconds,
            cooldown=oa.enrich_cooldown_seconds,
            max_consecutive_failures=settings.retry.max_attempts,
        )
    finally:
        store.close()
    logger.info("Enrichment stats: %s", json.dumps(stats.model_dump(), indent=2))
    return 1 if stats.aborted else 0


def cmd_search(settings: IngestSettings, args) -> int:
    adapters = _build_adapters(settings, args.sources)
    store = PaperStore(settings.store.path) if args.store else None
    index = _open_index(settings) if args.index else None
    try:
        result = ingest_search(adapters, args.query, limit=args.limit, store=store, index=index)
    finally:
        if store is not None:
            store.close()

    for paper in result.papers:
        print(f"{paper.doc_id:<28} {paper.year or '':<5} {paper.title[:90]}")
    if result.failed_sources:
        logger.warning("Failed sources: %s", ", ".join(result.failed_sources))
    return 0


# ── Helpers ──────────────────────────────────────────────────────────


def _build_adapters(settings: IngestSettings, names: list[str]) -> dict:
    adapters = {}
    for name in names:
        policy = RetryPolicy.from_settings(settings.retry, name=name)
        if name == "arxiv":
            adapters[name] = ArxivClient(policy=policy)
        elif name == "pubmed":
            pm = settings.pubmed
            adapters[name] = PubMedClient(pm.email, pm.api_key, pm.tool, policy=policy)
        elif name == "semanticscholar":
            adapters[name] = SemanticScholarClient(settings.semanticscholar.api_key, policy=policy)
    return adapters


def _open_index(settings: IngestSettings, recreate: bool = False) -> PaperIndex:
    require_index_endpoint(settings)
    index = PaperIndex.from_settings(settings.index)
    logger.info("Index: %s", index.index_url)
    if recreate:
        logger.info("Deleting existing index...")
        index.delete_index()
        time.sleep(1)
    index.create_index()
    _log_doc_count(index, "Current")
    return index


def _log_doc_count(index: PaperIndex, label: str) -> None:
    try:
        logger.info("%s index doc count: %d", label, index.doc_count())
    except IndexerError as exc:
        logger.warning("Could not read doc count: %s", exc)


# ── CLI ──────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest paper metadata into the search index")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Path to settings YAML file")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("openalex", help="Cursor import of arXiv works from OpenAlex")
    p.add_argument("--cursor", default=None, help="Resume cursor (default: start from '*')")
    p.add_argument("--max-pages", type=int, default=None, help="Stop after N pages")
    p.add_argument("--store", action="store_true", help="Also write to the SQLite store")
    p.add_argument("--recreate-index", action="store_true", help="Delete the index first")
    p.set_defaults(func=cmd_openalex)

    p = sub.add_parser("s2", help="Import the Semantic Scholar bulk dataset")
    p.add_argument("--start-file", type=int, default=None, help="File index to resume from")
    p.add_argument("--max-files", type=int, default=None, help="Stop after N files")
    p.add_argument("--all-papers", action="store_true", help="Do not require an arXiv id")
    p.add_argument("--store", action="store_true", help="Also write to the SQLite store")
    p.add_argument("--recreate-index", action="store_true", help="Delete the index first")
    p.set_defaults(func=cmd_s2)

    p = sub.add_parser("reindex", help="Rebuild the search index from the SQLite store")
    p.add_argument("--category", default=None, help="Only papers with this primary category")
    p.add_argument("--limit", type=int, default=None, help="Max papers to index")
    p.add_argument("--batch", type=int, default=None, help="Documents per bulk request")
    p.add_argument("--recreate-index", action="store_true", help="Delete the index first")
    p.set_defaults(func=cmd_reindex)

    p = sub.add_parser("enrich", help="Fill citation counts from OpenAlex")
    p.add_argument("--limit", type=int, default=None, help="Max papers to enrich")
    p.set_defaults(func=cmd_enrich)

    p = sub.add_parser("search", help="Search adapters and ingest the merged results")
    p.add_argument("query")
    p.add_argument("--sources", nargs="+", choices=SOURCES, default=list(SOURCES))
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--store", action="store_true", help="Also write to the SQLite store")
    p.add_argument("--index", action="store_true", help="Also write to the search index")
    p.set_defaults(func=cmd_search)

    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Settings hash: %s", settings.settings_hash()[:12])

    try:
        return args.func(settings, args)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
