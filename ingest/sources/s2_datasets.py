"""Semantic Scholar Datasets API: release manifest and gzip JSONL paper files."""

import logging
from typing import BinaryIO, Callable, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ingest.core.errors import raise_for_status
from ingest.core.retry import RetryPolicy
from ingest.sources.ids import arxiv_pdf_url, normalize_doi, resolve_doc_id
from ingest.sources.jsonl import ScanStats, stream_batches
from ingest.sources.models import (
    Author,
    ExternalIds,
    Paper,
    arxiv_id_of,
    doi_of,
    pubmed_id_of,
    scalar_ids,
)
from ingest.sources.semanticscholar import parse_date

logger = logging.getLogger(__name__)

BASE_URL = "https://api.semanticscholar.org/datasets/v1"
_MANIFEST_TIMEOUT = 60
# (connect, read) per call; no cap on the whole multi-GB download
_DOWNLOAD_TIMEOUT = (30, 300)


# ── Dataset Models ───────────────────────────────────────────────────


class Release(BaseModel):
    model_config = ConfigDict(extra="ignore")

    release_id: str


class Dataset(BaseModel):
    """Download URLs for one dataset within a release."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    description: str = ""
    files: list[str] = Field(default_factory=list)


class S2FieldOfStudy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str = ""
    source: str = ""


class S2Journal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    volume: Optional[str] = None
    pages: Optional[str] = None


class S2Author(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    author_id: Optional[str] = Field(default=None, alias="authorId")
    name: str = ""


class S2DatasetPaper(BaseModel):
    """One line of the ``papers`` dataset (lowercase JSON keys)."""

    model_config = ConfigDict(extra="ignore")

    corpusid: Optional[int] = None
    externalids: ExternalIds = Field(default_factory=dict)
    url: Optional[str] = None
    title: Optional[str] = None
    abstract: Optional[str] = None
    venue: Optional[str] = None
    year: Optional[int] = None
    referencecount: Optional[int] = None
    citationcount: Optional[int] = None
    influentialcitationcount: Optional[int] = None
    isopenaccess: bool = False
    s2fieldsofstudy: Optional[list[S2FieldOfStudy]] = None
    publicationtypes: Optional[list[str]] = None
    publicationdate: Optional[str] = None
    journal: Optional[S2Journal] = None
    authors: Optional[list[S2Author]] = None

    @field_validator("externalids", mode="before")
    @classmethod
    def scalars_only(cls, v):
        return scalar_ids(v)

    @field_validator("isopenaccess", mode="before")
    @classmethod
    def null_is_false(cls, v):
        return bool(v)

    def arxiv_id(self) -> str | None:
        return arxiv_id_of(self.externalids)

    def doi(self) -> str | None:
        return doi_of(self.externalids)


def has_title_and_arxiv_id(paper: S2DatasetPaper) -> bool:
    """Default inclusion predicate for arXiv-only imports."""
    return bool((paper.title or "").strip()) and paper.arxiv_id() is not None


def has_title(paper: S2DatasetPaper) -> bool:
    return bool((paper.title or "").strip())


# ── Client ───────────────────────────────────────────────────────────


class S2DatasetClient:
    """Manifest lookups plus streamed downloads of dataset files."""

    def __init__(
        self,
        api_key: str,
        session: requests.Session | None = None,
        policy: RetryPolicy | None = None,
    ):
        self.session = session or requests.Session()
        self.session.headers["x-api-key"] = api_key
        self.policy = policy or RetryPolicy(name="S2 datasets")

    def get_latest_release(self) -> Release:
        data = self.policy.call(self._get_json, f"{BASE_URL}/release/latest", "get latest release")
        return Release.model_validate(data)

    def get_dataset(self, release_id: str, name: str = "papers") -> Dataset:
        data = self.policy.call(
            self._get_json, f"{BASE_URL}/release/{release_id}/dataset/{name}", "get dataset"
        )
        return Dataset.model_validate(data)

    def open_file(self, file_url: str) -> BinaryIO:
        """Open a dataset file for streaming; the caller closes it.

        The body is returned still gzip-compressed.
        """
        resp = self.policy.call(self._open, file_url)
        resp.raw.decode_content = False
        return resp.raw

    def stream_papers(
        self,
        file_url: str,
        batch_size: int,
        on_batch: Callable[[list[S2DatasetPaper]], None],
        predicate: Callable[[S2DatasetPaper], bool] | None = has_title_and_arxiv_id,
        stats: ScanStats | None = None,
    ) -> int:
        """Stream one file through the batch decoder. Returns matched count."""
        raw = self.open_file(file_url)
        try:
            return stream_batches(
                raw,
                batch_size=batch_size,
                on_batch=on_batch,
                predicate=predicate,
                decode=S2DatasetPaper.model_validate,
                stats=stats,
            )
        finally:
            raw.close()

    # ── HTTP ─────────────────────────────────────────────────

    def _get_json(self, url: str, what: str) -> dict:
        resp = self.session.get(url, timeout=_MANIFEST_TIMEOUT)
        raise_for_status(resp, what)
        return resp.json()

    def _open(self, file_url: str) -> requests.Response:
        resp = self.session.get(file_url, stream=True, timeout=_DOWNLOAD_TIMEOUT)
        try:
            raise_for_status(resp, "download file")
        except Exception:
            resp.close()
            raise
        return resp


# ── Dataset Paper → Paper ────────────────────────────────────────────


def dataset_paper_to_paper(p: S2DatasetPaper) -> Paper | None:
    """Convert one dataset record; None if it lacks a title."""
    title = (p.title or "").strip()
    if not title:
        return None

    corpus_id = str(p.corpusid) if p.corpusid is not None else None
    arxiv_id = p.arxiv_id()
    pmid = pubmed_id_of(p.externalids)
    ext_id = arxiv_id or corpus_id
    doc_id = resolve_doc_id(
        pmid=pmid, arxiv_id=arxiv_id, fallback=f"s2:{corpus_id}" if corpus_id else None
    )
    if not ext_id or not doc_id:
        return None

    # Fields of study -> ordered, deduplicated categories
    categories = [f.category for f in p.s2fieldsofstudy or [] if f.category]
    journal_ref = None
    if p.journal and p.journal.name:
        journal_ref = p.journal.name.strip() or None

    return Paper(
        doc_id=doc_id,
        external_id=ext_id,
        source="arxiv" if arxiv_id else "semanticscholar",
        title=title,
        abstract=(p.abstract or "").strip(),
        authors=[
            Author(name=a.name.strip(), author_id=a.author_id)
            for a in p.authors or []
            if a.name.strip()
        ],
        published_date=parse_date(p.publicationdate),
        year=p.year or None,
        pdf_url=arxiv_pdf_url(arxiv_id) if arxiv_id else None,
        categories=categories,
        doi=normalize_doi(p.doi()),
        venue=(p.venue or "").strip() or None,
        journal_ref=journal_ref,
        citation_count=max(p.citationcount or 0, 0),
        reference_count=max(p.referencecount or 0, 0),
        influential_citation_count=max(p.influentialcitationcount or 0, 0),
        is_open_access=p.isopenaccess,
        publication_types=p.publicationtypes or [],
        source_url=p.url or None,
    )
