"""Semantic Scholar Graph API relevance-search adapter."""

import logging
from datetime import date
from typing import Literal

import requests

from ingest.core.errors import UpstreamError, raise_for_status
from ingest.core.retry import RetryPolicy
from ingest.sources.ids import arxiv_pdf_url, normalize_doi, resolve_doc_id
from ingest.sources.models import (
    Author,
    Paper,
    SearchResult,
    arxiv_id_of,
    doi_of,
    external_id,
    pubmed_id_of,
    scalar_ids,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.semanticscholar.org/graph/v1"
_TIMEOUT = 15
_DEFAULT_LIMIT = 20
_MAX_LIMIT = 100
_FIELDS = (
    "title,abstract,year,citationCount,referenceCount,influentialCitationCount,"
    "url,authors,externalIds,openAccessPdf,isOpenAccess,publicationDate,venue,"
    "publicationTypes,s2FieldsOfStudy,tldr"
)

SortMode = Literal["relevance", "citationCount", "publicationDate"]
_SORT_PARAMS = {
    "citationCount": "citationCount:desc",
    "publicationDate": "publicationDate:desc",
}


class SemanticScholarClient:
    """Single-page relevance search with three sort modes."""

    def __init__(
        self,
        api_key: str | None = None,
        session: requests.Session | None = None,
        policy: RetryPolicy | None = None,
    ):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "paper-ingest/0.1 (academic-reader)"})
        if api_key:
            self.session.headers["x-api-key"] = api_key
        self.policy = policy or RetryPolicy(name="Semantic Scholar")

    # ── Public API ───────────────────────────────────────────

    def search(
        self,
        query: str,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
        sort: SortMode = "relevance",
    ) -> SearchResult:
        limit = _DEFAULT_LIMIT if limit <= 0 else min(limit, _MAX_LIMIT)
        params = {
            "query": query,
            "offset": max(offset, 0),
            "limit": limit,
            "fields": _FIELDS,
        }
        # relevance is the API default: no sort parameter
        if sort in _SORT_PARAMS:
            params["sort"] = _SORT_PARAMS[sort]

        data = self.policy.call(self._get_json, f"{API_BASE}/paper/search", params)
        papers = []
        for item in data.get("data") or []:
            paper = result_to_paper(item)
            if paper is not None:
                papers.append(paper)
        total = int(data.get("total") or 0)
        logger.info("Semantic Scholar query %r (%s): %d results (total %d)", query, sort, len(papers), total)
        return SearchResult(papers=papers, total=total)

    def get_paper(self, paper_id: str) -> Paper | None:
        """Look up one paper by S2 id or prefixed id (``ArXiv:``, ``DOI:``, ...)."""
        try:
            data = self.policy.call(
                self._get_json, f"{API_BASE}/paper/{paper_id}", {"fields": _FIELDS}
            )
        except UpstreamError as exc:
            if exc.status == 404:
                return None
            raise
        return result_to_paper(data)

    # ── HTTP ─────────────────────────────────────────────────

    def _get_json(self, url: str, params: dict) -> dict:
        resp = self.session.get(url, params=params, timeout=_TIMEOUT)
        raise_for_status(resp, "Semantic Scholar")
        return resp.json()


# ── Result → Paper ───────────────────────────────────────────────────


def result_to_paper(r: dict) -> Paper | None:
    """Convert a Graph API paper object. Returns None without a title/id."""
    title = (r.get("title") or "").strip()
    if not title:
        return None

    ids = scalar_ids(r.get("externalIds"))
    arxiv_id = arxiv_id_of(ids)
    pmid = pubmed_id_of(ids)
    doi = normalize_doi(doi_of(ids))
    paper_id = (r.get("paperId") or "").strip()

    # arXiv id > PubMed id > DOI > S2 paper id
    if arxiv_id:
        source, ext_id = "arxiv", arxiv_id
    elif pmid:
        source, ext_id = "pubmed", pmid
    elif doi:
        source, ext_id = "semanticscholar", doi
    else:
        source, ext_id = "semanticscholar", paper_id
    if not ext_id:
        return None

    fallback = f"s2:{paper_id}" if paper_id else f"doi:{doi}" if doi else None
    doc_id = resolve_doc_id(pmid=pmid, arxiv_id=arxiv_id, fallback=fallback)
    if not doc_id:
        return None

    oa_pdf = (r.get("openAccessPdf") or {}).get("url")
    if oa_pdf:
        pdf_url = oa_pdf
    elif arxiv_id:
        pdf_url = arxiv_pdf_url(arxiv_id)
    elif doi:
        pdf_url = f"https://doi.org/{doi}"
    else:
        pdf_url = None

    pmc_id = external_id(ids, "PubMedCentral") or external_id(ids, "PMCID")
    html_url = None
    if pmc_id:
        html_url = f"https://www.ncbi.nlm.nih.gov/pmc/articles/{pmc_id}/"
    elif arxiv_id:
        html_url = f"https://arxiv.org/html/{arxiv_id}"

    return Paper(
        doc_id=doc_id,
        external_id=ext_id,
        source=source,
        title=title,
        abstract=(r.get("abstract") or "").strip(),
        authors=[
            Author(name=a["name"].strip(), author_id=a.get("authorId"))
            for a in r.get("authors") or []
            if (a.get("name") or "").strip()
        ],
        published_date=parse_date(r.get("publicationDate")),
        year=r.get("year") or None,
        pdf_url=pdf_url,
        categories=[f.get("category") for f in r.get("s2FieldsOfStudy") or [] if f.get("category")],
        doi=doi,
        venue=(r.get("venue") or "").strip() or None,
        citation_count=max(int(r.get("citationCount") or 0), 0),
        reference_count=max(int(r.get("referenceCount") or 0), 0),
        influential_citation_count=max(int(r.get("influentialCitationCount") or 0), 0),
        is_open_access=bool(r.get("isOpenAccess") or oa_pdf),
        publication_types=r.get("publicationTypes") or [],
        source_url=r.get("url") or None,
        html_url=html_url,
        pmc_id=pmc_id,
        tldr=((r.get("tldr") or {}).get("text") or None),
    )


def parse_date(value: str | None) -> date | None:
    """``YYYY-MM-DD`` (time part ignored), else None. A bare year stays in ``year``."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None
