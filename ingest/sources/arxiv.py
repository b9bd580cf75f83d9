"""arXiv Atom feed adapter (export.arxiv.org query API)."""

import logging
from datetime import date, datetime
from xml.etree import ElementTree
from xml.etree.ElementTree import Element

import requests

from ingest.core.errors import raise_for_status
from ingest.core.retry import RetryPolicy
from ingest.sources.ids import arxiv_id_from_abs_url, arxiv_pdf_url, normalize_doi, resolve_doc_id
from ingest.sources.models import Author, Paper, SearchResult

logger = logging.getLogger(__name__)

BASE_URL = "http://export.arxiv.org/api/query"
_TIMEOUT = 30
_DEFAULT_LIMIT = 20
_MAX_LIMIT = 100

_NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "arxiv": "http://arxiv.org/schemas/atom",
    "opensearch": "http://a9.com/-/spec/opensearch/1.1/",
}


class ArxivClient:
    """Keyword search and id lookup against the arXiv query API."""

    def __init__(self, session: requests.Session | None = None, policy: RetryPolicy | None = None):
        self.session = session or requests.Session()
        self.policy = policy or RetryPolicy(name="arXiv")

    # ── Public API ───────────────────────────────────────────

    def search(self, query: str, limit: int = _DEFAULT_LIMIT, offset: int = 0) -> SearchResult:
        """Relevance-sorted keyword search. ``limit`` is clamped to 1..100."""
        limit = clamp_limit(limit)
        params = {
            "search_query": f"all:{query}",
            "start": max(offset, 0),
            "max_results": limit,
            "sortBy": "relevance",
            "sortOrder": "descending",
        }
        root = self.policy.call(self._get_feed, params)
        papers, total = parse_feed(root)
        logger.info("arXiv query %r: %d results (total %d)", query, len(papers), total)
        return SearchResult(papers=papers, total=total)

    def get_paper(self, arxiv_id: str) -> Paper | None:
        """Fetch one paper by arXiv id, or None if arXiv has no such entry."""
        root = self.policy.call(self._get_feed, {"id_list": arxiv_id})
        papers, _ = parse_feed(root)
        return papers[0] if papers else None

    # ── HTTP ─────────────────────────────────────────────────

    def _get_feed(self, params: dict) -> Element:
        resp = self.session.get(BASE_URL, params=params, timeout=_TIMEOUT)
        raise_for_status(resp, "arXiv query")
        return ElementTree.fromstring(resp.content)


# ── Feed Parsing ─────────────────────────────────────────────────────


def clamp_limit(limit: int) -> int:
    if limit <= 0:
        return _DEFAULT_LIMIT
    return min(limit, _MAX_LIMIT)


def parse_feed(root: Element) -> tuple[list[Paper], int]:
    """Convert an Atom feed into papers plus the reported total."""
    total_text = root.findtext("opensearch:totalResults", default="0", namespaces=_NS)
    try:
        total = int(total_text.strip())
    except ValueError:
        total = 0

    papers = []
    for entry in root.findall("atom:entry", _NS):
        paper = entry_to_paper(entry)
        if paper is not None:
            papers.append(paper)
    return papers, total


def entry_to_paper(entry: Element) -> Paper | None:
    """Convert one Atom entry. Returns None if no arXiv id can be resolved."""
    arxiv_id = arxiv_id_from_abs_url(_text(entry, "atom:id"))
    title = _clean(_text(entry, "atom:title"))
    if not arxiv_id or not title:
        return None

    authors = []
    for author in entry.findall("atom:author", _NS):
        name = _text(author, "atom:name").strip()
        if not name:
            continue
        affiliation = _text(author, "arxiv:affiliation").strip() or None
        authors.append(Author(name=name, affiliation=affiliation))

    # PDF link by title/type, else the conventional URL
    pdf_url = arxiv_pdf_url(arxiv_id)
    for link in entry.findall("atom:link", _NS):
        if link.get("title") == "pdf" or link.get("type") == "application/pdf":
            pdf_url = link.get("href") or pdf_url
            break

    categories = [c.get("term") for c in entry.findall("atom:category", _NS) if c.get("term")]
    primary = entry.find("arxiv:primary_category", _NS)
    primary_category = primary.get("term") if primary is not None else None

    return Paper(
        doc_id=resolve_doc_id(arxiv_id=arxiv_id),
        external_id=arxiv_id,
        source="arxiv",
        title=title,
        abstract=_clean(_text(entry, "atom:summary")),
        authors=authors,
        published_date=parse_timestamp(_text(entry, "atom:published")),
        pdf_url=pdf_url,
        primary_category=primary_category,
        categories=categories,
        doi=normalize_doi(_text(entry, "arxiv:doi")),
        journal_ref=_clean(_text(entry, "arxiv:journal_ref")) or None,
        is_open_access=True,
        source_url=f"https://arxiv.org/abs/{arxiv_id}",
        html_url=f"https://ar5iv.labs.arxiv.org/html/{arxiv_id}",
    )


# ── Helpers ──────────────────────────────────────────────────────────


def parse_timestamp(value: str) -> date | None:
    """RFC 3339 timestamp (``2023-01-02T18:00:00Z``) to a calendar date."""
    value = value.strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _text(el: Element, path: str) -> str:
    return el.findtext(path, default="", namespaces=_NS) or ""


def _clean(text: str) -> str:
    """Collapse the hard-wrapped whitespace arXiv puts in titles/summaries."""
    return " ".join(text.split())
