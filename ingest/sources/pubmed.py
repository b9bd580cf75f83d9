"""PubMed two-step (ESearch then EFetch) adapter using Biopython's Entrez module."""

import logging
import time
from datetime import date
from urllib.error import HTTPError

from Bio import Entrez

from ingest.core.errors import RateLimitedError, UpstreamError
from ingest.core.retry import RetryPolicy
from ingest.sources.ids import normalize_doi, resolve_doc_id
from ingest.sources.models import Author, Paper, SearchResult

logger = logging.getLogger(__name__)

_RATE_LIMIT_DELAY = 0.34  # seconds between requests (NCBI < 3 req/s)
_DEFAULT_LIMIT = 20
_MAX_LIMIT = 100

_MONTHS = {
    m: i
    for i, m in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}


class PubMedClient:
    """Search PMIDs, then fetch all records in one batched EFetch call."""

    def __init__(
        self,
        email: str | None = None,
        api_key: str | None = None,
        tool: str = "paper-ingest",
        policy: RetryPolicy | None = None,
        rate_limit_delay: float = _RATE_LIMIT_DELAY,
    ):
        if email:
            Entrez.email = email
        if api_key:
            Entrez.api_key = api_key
        Entrez.tool = tool
        self.policy = policy or RetryPolicy(name="Entrez")
        self.rate_limit_delay = rate_limit_delay

    # ── Public API ───────────────────────────────────────────

    def search(self, query: str, limit: int = _DEFAULT_LIMIT, offset: int = 0) -> SearchResult:
        """Relevance-sorted search. ``limit`` is clamped to 1..100."""
        limit = _DEFAULT_LIMIT if limit <= 0 else min(limit, _MAX_LIMIT)
        result = self._read(
            Entrez.esearch,
            db="pubmed",
            term=query,
            retstart=max(offset, 0),
            retmax=limit,
            sort="relevance",
        )
        total = int(result.get("Count", 0))
        pmids = list(result.get("IdList", []))
        logger.info("PubMed query %r: %d PMIDs (total %d)", query, len(pmids), total)
        if not pmids:
            return SearchResult(papers=[], total=total)
        return SearchResult(papers=self.fetch(pmids), total=total)

    def get_paper(self, pmid: str) -> Paper | None:
        papers = self.fetch([pmid])
        return papers[0] if papers else None

    def fetch(self, pmids: list[str]) -> list[Paper]:
        """EFetch all ``pmids`` joined into one request."""
        if not pmids:
            return []
        records = self._read(
            Entrez.efetch,
            db="pubmed",
            id=",".join(str(p) for p in pmids),
            retmode="xml",
            rettype="abstract",
        )
        papers = []
        for article in records.get("PubmedArticle", []):
            paper = article_to_paper(article)
            if paper is not None:
                papers.append(paper)
        return papers

    # ── Entrez wrappers ──────────────────────────────────────

    def _read(self, func, **kwargs):
        return self.policy.call(self._read_once, func, **kwargs)

    def _read_once(self, func, **kwargs):
        time.sleep(self.rate_limit_delay)
        try:
            handle = func(**kwargs)
        except HTTPError as exc:
            if exc.code == 429:
                raise RateLimitedError("Entrez: rate limited (429)", status=429) from exc
            raise UpstreamError(f"Entrez: HTTP {exc.code}", status=exc.code) from exc
        try:
            return Entrez.read(handle)
        finally:
            handle.close()


# ── Record Parser ────────────────────────────────────────────────────


def article_to_paper(article: dict) -> Paper | None:
    """Convert an Entrez-parsed ``PubmedArticle`` into a Paper."""
    citation = article.get("MedlineCitation") or {}
    pmid = str(citation.get("PMID") or "").strip()
    if not pmid:
        return None
    art = citation.get("Article") or {}
    title = str(art.get("ArticleTitle") or "").strip()
    if not title:
        return None

    ids = _article_ids(article)
    doi = normalize_doi(ids.get("doi"))
    pmc_id = ids.get("pmc")

    # PubMed Central if available, otherwise the DOI landing page
    pdf_url = None
    html_url = None
    if pmc_id:
        pdf_url = f"https://www.ncbi.nlm.nih.gov/pmc/articles/{pmc_id}/pdf/"
        html_url = f"https://www.ncbi.nlm.nih.gov/pmc/articles/{pmc_id}/"
    elif doi:
        pdf_url = f"https://doi.org/{doi}"

    journal = art.get("Journal") or {}
    pub_date = (journal.get("JournalIssue") or {}).get("PubDate") or {}
    published, year = parse_pub_date(pub_date)

    return Paper(
        doc_id=resolve_doc_id(pmid=pmid),
        external_id=pmid,
        source="pubmed",
        title=title,
        abstract=join_abstract(art.get("Abstract") or {}),
        authors=_authors(art.get("AuthorList") or []),
        published_date=published,
        year=year,
        pdf_url=pdf_url,
        doi=doi,
        venue=str(journal.get("Title") or "").strip() or None,
        is_open_access=bool(pmc_id),
        publication_types=[str(t) for t in art.get("PublicationTypeList") or []],
        source_url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
        html_url=html_url,
        pmc_id=pmc_id,
    )


def join_abstract(abstract: dict) -> str:
    """Join abstract sections, prefixing labelled ones with ``LABEL: ``."""
    parts = []
    for text in abstract.get("AbstractText") or []:
        label = (getattr(text, "attributes", None) or {}).get("Label")
        body = str(text).strip()
        if label:
            parts.append(f"{label}: {body}")
        elif body:
            parts.append(body)
    return "\n\n".join(parts)


def parse_pub_date(pub_date: dict) -> tuple[date | None, int | None]:
    """Year, year+month or year+month+day; coarser when finer parts are absent."""
    year_text = str(pub_date.get("Year") or "").strip()
    if not year_text:
        # e.g. MedlineDate "2023 Jan-Feb"
        year_text = str(pub_date.get("MedlineDate") or "")[:4]
    try:
        year = int(year_text)
    except ValueError:
        return None, None

    month = _parse_month(str(pub_date.get("Month") or ""))
    if month is None:
        return date(year, 1, 1), year
    day = 1
    day_text = str(pub_date.get("Day") or "").strip()
    if day_text.isdigit():
        day = int(day_text)
    try:
        return date(year, month, day), year
    except ValueError:
        return date(year, month, 1), year


def _parse_month(text: str) -> int | None:
    text = text.strip().lower()
    if not text:
        return None
    if text.isdigit():
        value = int(text)
        return value if 1 <= value <= 12 else None
    return _MONTHS.get(text[:3])


def _authors(author_list) -> list[Author]:
    authors = []
    for a in author_list:
        name = " ".join(
            part for part in (str(a.get("ForeName") or ""), str(a.get("LastName") or "")) if part
        ).strip()
        if not name:
            name = str(a.get("CollectiveName") or "").strip()
        if not name:
            continue
        affiliations = a.get("AffiliationInfo") or []
        affiliation = None
        if affiliations:
            affiliation = str(affiliations[0].get("Affiliation") or "").strip() or None
        authors.append(Author(name=name, affiliation=affiliation))
    return authors


def _article_ids(article: dict) -> dict[str, str]:
    ids = {}
    data = article.get("PubmedData") or {}
    for aid in data.get("ArticleIdList") or []:
        id_type = (getattr(aid, "attributes", None) or {}).get("IdType")
        if id_type and id_type not in ids:
            ids[id_type] = str(aid).strip()
    return ids
