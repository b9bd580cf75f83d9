"""arXiv id extraction, DOI normalization, document ids and abstract rebuild."""

import re
from typing import Iterable

from pyalex import invert_abstract

ARXIV_PDF_BASE = "https://arxiv.org/pdf/"

# Tried in this order against every location URL; the first hit wins.
#   arxiv.org/abs/2301.01234            canonical abstract page
#   arxiv.org/pdf/2301.01234            PDF page (also export.arxiv.org mirror)
#   arxiv.org/abs/hep-ph/9901234        old-style, category-prefixed
_ARXIV_URL_PATTERNS = (
    re.compile(r"arxiv\.org/abs/([0-9]+\.[0-9]+)"),
    re.compile(r"arxiv\.org/pdf/([0-9]+\.[0-9]+)"),
    re.compile(r"arxiv\.org/abs/([a-z-]+(?:\.[a-z]{2})?/[0-9]+)"),
    re.compile(r"arxiv\.org/pdf/([a-z-]+(?:\.[a-z]{2})?/[0-9]+)"),
)
_ARXIV_DOI_RE = re.compile(r"10\.48550/arxiv\.([0-9]+\.[0-9]+|[a-z-]+(?:\.[a-z]{2})?/[0-9]+)")
_VERSION_RE = re.compile(r"v[0-9]+$")
_DOI_PREFIXES = ("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/", "doi:")


# ── arXiv ids ────────────────────────────────────────────────────────


def strip_version(arxiv_id: str) -> str:
    """Drop a trailing version suffix: ``2301.00001v3`` -> ``2301.00001``."""
    return _VERSION_RE.sub("", arxiv_id)


def arxiv_id_from_abs_url(url: str) -> str | None:
    """Feed-entry rule: the segment after ``/abs/``, version stripped."""
    parts = url.split("/abs/")
    if len(parts) != 2:
        return None
    arxiv_id = strip_version(parts[1].strip().strip("/"))
    return arxiv_id or None


def match_arxiv_url(url: str) -> str | None:
    """Match one URL against the arXiv URL shapes, in priority order."""
    lowered = (url or "").lower()
    if not lowered:
        return None
    for pattern in _ARXIV_URL_PATTERNS:
        m = pattern.search(lowered)
        if m:
            return m.group(1)
    return None


def match_arxiv_doi(text: str | None) -> str | None:
    """Match the arXiv DataCite DOI ``10.48550/arXiv.<id>``."""
    if not text:
        return None
    m = _ARXIV_DOI_RE.search(text.lower())
    return m.group(1) if m else None


def extract_arxiv_id(urls: Iterable[str], doi: str | None = None) -> str | None:
    """Resolve an arXiv id from location URLs, falling back to DOIs.

    Pass 1 tries every URL against the URL shapes. Pass 2 tries the DOI
    pattern on the record's own DOI, then on each URL.
    """
    urls = [u for u in urls if u]
    for url in urls:
        found = match_arxiv_url(url)
        if found:
            return found
    found = match_arxiv_doi(doi)
    if found:
        return found
    for url in urls:
        found = match_arxiv_doi(url)
        if found:
            return found
    return None


def arxiv_pdf_url(arxiv_id: str) -> str:
    return ARXIV_PDF_BASE + arxiv_id


def arxiv_doi(arxiv_id: str) -> str:
    return f"10.48550/arXiv.{arxiv_id}"


# ── DOIs and document ids ────────────────────────────────────────────


def normalize_doi(doi: str | None) -> str | None:
    """Strip protocol/host prefixes from a DOI. Empty input gives None."""
    if not doi:
        return None
    doi = doi.strip()
    lowered = doi.lower()
    for prefix in _DOI_PREFIXES:
        if lowered.startswith(prefix):
            doi = doi[len(prefix):]
            break
    return doi or None


def resolve_doc_id(
    pmid: str | None = None,
    arxiv_id: str | None = None,
    fallback: str | None = None,
) -> str | None:
    """Deterministic document id: PubMed id > arXiv id > source fallback.

    Ids are namespaced so numeric ids from different registries never
    collide, while the same arXiv paper seen through different sources
    always lands on the same document.
    """
    if pmid:
        return f"pmid:{pmid}"
    if arxiv_id:
        return f"arxiv:{arxiv_id}"
    return fallback or None


# ── Abstract reconstruction ──────────────────────────────────────────


def reconstruct_abstract(inverted_index: dict | None) -> str | None:
    """Reassemble abstract text from a {word: [position, ...]} index.

    Returns None if the inverted index is empty or None.
    """
    if not inverted_index:
        return None
    return invert_abstract(inverted_index)
