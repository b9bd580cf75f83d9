"""Deduplicate papers gathered from several source adapters."""

import logging

from pydantic import BaseModel

from ingest.sources.ids import normalize_doi
from ingest.sources.models import Paper

logger = logging.getLogger(__name__)

# Optional fields a duplicate may fill in when the primary lacks them
_FILLABLE = (
    "abstract",
    "authors",
    "published_date",
    "year",
    "pdf_url",
    "primary_category",
    "categories",
    "doi",
    "venue",
    "journal_ref",
    "publication_types",
    "source_url",
    "html_url",
    "pmc_id",
    "tldr",
)
_COUNTS = ("citation_count", "reference_count", "influential_citation_count")


# ── Result Model ─────────────────────────────────────────────────────


class DedupResult(BaseModel):
    """Result of deduplication across sources."""

    unique_papers: list[Paper]
    duplicate_pairs: list[tuple[str, str]]  # (kept doc id, removed doc id)
    stats: dict


# ── Public API ───────────────────────────────────────────────────────


def deduplicate(papers: list[Paper]) -> DedupResult:
    """Collapse papers describing the same work, keeping first-seen order.

    Matches on document id, then (source, external id), then normalized DOI.
    The first record seen is primary; later duplicates only fill its gaps.
    """
    doc_index: dict[str, int] = {}
    ext_index: dict[tuple[str, str], int] = {}
    doi_index: dict[str, int] = {}

    unique: list[Paper] = []
    duplicate_pairs: list[tuple[str, str]] = []

    for paper in papers:
        match_idx = _find_match(paper, doc_index, ext_index, doi_index)

        if match_idx is not None:
            unique[match_idx] = _merge(unique[match_idx], paper)
            duplicate_pairs.append((unique[match_idx].doc_id, paper.doc_id))
            # The merged record may have gained a DOI
            _index(unique[match_idx], match_idx, doc_index, ext_index, doi_index)
        else:
            idx = len(unique)
            unique.append(paper)
            _index(paper, idx, doc_index, ext_index, doi_index)

    stats = {
        "input_total": len(papers),
        "duplicates_found": len(duplicate_pairs),
        "unique_total": len(unique),
    }
    by_source: dict[str, int] = {}
    for paper in papers:
        by_source[paper.source] = by_source.get(paper.source, 0) + 1
    stats["by_source"] = by_source

    logger.info(
        "Deduplication: %d papers → %d unique (%d duplicates removed)",
        stats["input_total"],
        stats["unique_total"],
        stats["duplicates_found"],
    )

    return DedupResult(
        unique_papers=unique,
        duplicate_pairs=duplicate_pairs,
        stats=stats,
    )


# ── Matching ─────────────────────────────────────────────────────────


def _doi_key(paper: Paper) -> str | None:
    doi = normalize_doi(paper.doi)
    return doi.lower() if doi else None


def _index(
    paper: Paper,
    idx: int,
    doc_index: dict[str, int],
    ext_index: dict[tuple[str, str], int],
    doi_index: dict[str, int],
) -> None:
    doc_index.setdefault(paper.doc_id, idx)
    ext_index.setdefault((paper.source, paper.external_id), idx)
    key = _doi_key(paper)
    if key:
        doi_index.setdefault(key, idx)


def _find_match(
    paper: Paper,
    doc_index: dict[str, int],
    ext_index: dict[tuple[str, str], int],
    doi_index: dict[str, int],
) -> int | None:
    """Find the index of an already-seen matching paper, or None."""
    # Priority 1: document id
    if paper.doc_id in doc_index:
        return doc_index[paper.doc_id]

    # Priority 2: same source-native id
    key = (paper.source, paper.external_id)
    if key in ext_index:
        return ext_index[key]

    # Priority 3: DOI, case-insensitive
    doi = _doi_key(paper)
    if doi and doi in doi_index:
        return doi_index[doi]

    return None


# ── Merging ──────────────────────────────────────────────────────────


def _merge(primary: Paper, secondary: Paper) -> Paper:
    """Fill missing fields in primary from secondary into a new record."""
    data = primary.model_dump()
    for field in _FILLABLE:
        if not data.get(field) and getattr(secondary, field):
            data[field] = getattr(secondary, field)
    for field in _COUNTS:
        data[field] = max(data[field], getattr(secondary, field))
    data["is_open_access"] = primary.is_open_access or secondary.is_open_access
    return Paper.model_validate(data)
