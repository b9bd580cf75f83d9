"""OpenAlex works listing (cursor pagination) and citation lookup.

pyalex builds the query URLs; the requests go through a ``requests.Session``
so every call carries a timeout.
"""

import logging
from typing import Optional

import pyalex
import requests
from pyalex import Works
from pyalex.api import QueryError
from pydantic import BaseModel, Field

from ingest.core.errors import UpstreamError, raise_for_status
from ingest.sources.ids import (
    arxiv_doi,
    arxiv_pdf_url,
    extract_arxiv_id,
    match_arxiv_url,
    normalize_doi,
    reconstruct_abstract,
    resolve_doc_id,
)
from ingest.sources.models import Author, Paper
from ingest.sources.semanticscholar import parse_date

logger = logging.getLogger(__name__)

ARXIV_SOURCE_ID = "S4306400194"  # arXiv repository in OpenAlex
MAX_LOOKUP_BATCH = 50
DEFAULT_TIMEOUT = 30.0  # seconds per request

_WORK_FIELDS = [
    "id",
    "ids",
    "title",
    "abstract_inverted_index",
    "authorships",
    "cited_by_count",
    "publication_date",
    "publication_year",
    "doi",
    "locations",
    "topics",
    "type",
    "open_access",
]
_OPENALEX_PREFIX = "https://openalex.org/"
_PUBMED_PREFIX = "https://pubmed.ncbi.nlm.nih.gov/"


def configure_mailto(mailto: str | None) -> None:
    """Send a contact address with every request (unlocks the polite pool)."""
    if mailto:
        pyalex.config.email = mailto


class WorksPage(BaseModel):
    """One cursor page: raw works, the reported total, and the next cursor."""

    results: list[dict] = Field(default_factory=list)
    total: int = 0
    next_cursor: Optional[str] = None


# ── Cursor Source ────────────────────────────────────────────────────


class OpenAlexWorksSource:
    """Works hosted by one OpenAlex source, most-cited first.

    ``fetch_page`` makes exactly one request; retrying and pacing are left
    to the cursor driver.
    """

    name = "OpenAlex"

    def __init__(
        self,
        source_id: str = ARXIV_SOURCE_ID,
        per_page: int = 200,
        mailto: str | None = None,
        arxiv_only: bool = True,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        configure_mailto(mailto)
        self.source_id = source_id
        self.per_page = min(max(per_page, 1), 200)
        self.arxiv_only = arxiv_only
        self.session = session or requests.Session()
        self.timeout = timeout

    def query(self):
        return (
            Works()
            .filter(locations={"source": {"id": self.source_id}})
            .sort(cited_by_count="desc")
            .select(_WORK_FIELDS)
        )

    def fetch_page(self, cursor: str) -> WorksPage:
        data = _get_json(
            self.session,
            self.query,
            {"per-page": self.per_page, "cursor": cursor},
            self.timeout,
        )
        meta = data.get("meta") or {}
        return WorksPage(
            results=[dict(w) for w in data.get("results") or []],
            total=int(meta.get("count") or 0),
            next_cursor=meta.get("next_cursor") or None,
        )

    def convert(self, work: dict) -> Paper | None:
        return work_to_paper(work, arxiv_only=self.arxiv_only)

    @staticmethod
    def describe(work: dict) -> str:
        """Short label for diagnostics."""
        title = (work.get("title") or "")[:50]
        return f"cit={work.get('cited_by_count') or 0} title={title!r} id={work.get('id')}"


# ── Citation Lookup ──────────────────────────────────────────────────


def lookup_citations(
    arxiv_ids: list[str],
    session: requests.Session | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> dict[str, int]:
    """Citation counts for arXiv papers, matched through their DataCite DOIs.

    Returns {arxiv_id: cited_by_count} for the ids OpenAlex knows; ids it
    does not return are simply absent. At most 50 ids per call.
    """
    if not arxiv_ids:
        return {}
    if len(arxiv_ids) > MAX_LOOKUP_BATCH:
        raise ValueError(f"at most {MAX_LOOKUP_BATCH} ids per lookup, got {len(arxiv_ids)}")

    by_doi = {arxiv_doi(i).lower(): i for i in arxiv_ids}
    doi_filter = "|".join(arxiv_doi(i) for i in arxiv_ids)

    data = _get_json(
        session or requests.Session(),
        lambda: Works().filter(doi=doi_filter).select(["doi", "cited_by_count"]),
        {"per-page": len(arxiv_ids)},
        timeout,
    )

    counts: dict[str, int] = {}
    for work in data.get("results") or []:
        doi = (normalize_doi(work.get("doi")) or "").lower()
        arxiv_id = by_doi.get(doi)
        if arxiv_id is not None:
            counts[arxiv_id] = int(work.get("cited_by_count") or 0)
    logger.debug("OpenAlex lookup: %d of %d ids matched", len(counts), len(arxiv_ids))
    return counts


# ── Work → Paper ─────────────────────────────────────────────────────


def work_to_paper(work: dict, arxiv_only: bool = True) -> Paper | None:
    """Convert an OpenAlex Work dict into a Paper.

    Returns None without a title, or without an arXiv id when ``arxiv_only``.
    """
    title = (work.get("title") or "").strip()
    if not title:
        return None

    locations = work.get("locations") or []
    raw_doi = work.get("doi")
    arxiv_id, pdf_url = _arxiv_location(locations, raw_doi)
    if arxiv_id is None and arxiv_only:
        return None

    openalex_id = (work.get("id") or "").replace(_OPENALEX_PREFIX, "").strip()
    ids = work.get("ids") or {}
    pmid = (ids.get("pmid") or "").replace(_PUBMED_PREFIX, "").strip("/ ") or None

    external_id = arxiv_id or openalex_id
    doc_id = resolve_doc_id(
        pmid=pmid,
        arxiv_id=arxiv_id,
        fallback=f"openalex:{openalex_id}" if openalex_id else None,
    )
    if not external_id or not doc_id:
        return None

    # Authors with their first institution
    authors = []
    for authorship in work.get("authorships") or []:
        author = authorship.get("author") or {}
        name = (author.get("display_name") or "").strip()
        if not name:
            continue
        institutions = authorship.get("institutions") or []
        affiliation = (institutions[0].get("display_name") or None) if institutions else None
        authors.append(
            Author(
                name=name,
                affiliation=affiliation,
                author_id=(author.get("id") or "").replace(_OPENALEX_PREFIX, "") or None,
            )
        )

    categories = [
        (topic.get("field") or {}).get("display_name")
        for topic in work.get("topics") or []
    ]

    # Venue: first location whose source is not arXiv itself
    venue = None
    for loc in locations:
        name = ((loc.get("source") or {}).get("display_name") or "").strip()
        if name and "arxiv" not in name.lower():
            venue = name
            break

    return Paper(
        doc_id=doc_id,
        external_id=external_id,
        source="arxiv" if arxiv_id else "openalex",
        title=title,
        abstract=reconstruct_abstract(work.get("abstract_inverted_index")) or "",
        authors=authors,
        published_date=parse_date(work.get("publication_date")),
        year=work.get("publication_year") or None,
        pdf_url=pdf_url,
        categories=categories,
        doi=normalize_doi(raw_doi),
        venue=venue,
        citation_count=max(int(work.get("cited_by_count") or 0), 0),
        is_open_access=bool((work.get("open_access") or {}).get("is_oa")),
        publication_types=[work["type"]] if work.get("type") else [],
        source_url=f"https://arxiv.org/abs/{arxiv_id}" if arxiv_id else work.get("id") or None,
    )


def _arxiv_location(locations: list[dict], doi: str | None) -> tuple[str | None, str | None]:
    """arXiv id plus the PDF URL of the location it came from (or a built one)."""
    for loc in locations:
        arxiv_id = match_arxiv_url(loc.get("landing_page_url") or "")
        if arxiv_id:
            return arxiv_id, loc.get("pdf_url") or arxiv_pdf_url(arxiv_id)

    # No URL shape matched: fall back to the DOI pattern
    urls = [loc.get("landing_page_url") or "" for loc in locations]
    arxiv_id = extract_arxiv_id(urls, doi=doi)
    if arxiv_id is None:
        return None, None
    return arxiv_id, arxiv_pdf_url(arxiv_id)


def _get_json(session: requests.Session, build_query, params: dict, timeout: float) -> dict:
    """One GET of a pyalex-built query, failures mapped onto the ingest errors."""
    try:
        url = build_query().url
    except QueryError as exc:
        raise UpstreamError(f"OpenAlex: invalid query: {exc}", status=400) from exc

    params = dict(params)
    if pyalex.config.get("email"):
        params["mailto"] = pyalex.config.email
    if pyalex.config.get("api_key"):
        params["api_key"] = pyalex.config.api_key

    try:
        resp = session.get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise UpstreamError(f"OpenAlex: request failed: {exc}") from exc
    raise_for_status(resp, "OpenAlex")
    try:
        data = resp.json()
    except ValueError as exc:
        raise UpstreamError(
            f"OpenAlex: unreadable response body: {exc}", status=resp.status_code
        ) from exc
    if not isinstance(data, dict):
        raise UpstreamError(
            f"OpenAlex: unexpected response format ({type(data).__name__})",
            status=resp.status_code,
        )
    return data
