"""Canonical paper record shared by every source adapter."""

from datetime import date
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Source = Literal["arxiv", "semanticscholar", "pubmed", "openalex"]

# Upstream "externalIds" maps carry strings, numbers or nulls per key.
ExternalIdValue = Union[str, int, float, None]
ExternalIds = dict[str, ExternalIdValue]


class Author(BaseModel):
    """A single author, as much as the source tells us."""

    model_config = ConfigDict(frozen=True)

    name: str
    affiliation: Optional[str] = None
    author_id: Optional[str] = None


class Paper(BaseModel):
    """One paper, normalized. Built once per fetch and never mutated."""

    model_config = ConfigDict(frozen=True)

    doc_id: str = Field(min_length=1)
    external_id: str = Field(min_length=1)
    source: Source
    title: str = Field(min_length=1)
    abstract: str = ""
    authors: tuple[Author, ...] = ()
    published_date: Optional[date] = None
    year: Optional[int] = None
    pdf_url: Optional[str] = None
    primary_category: Optional[str] = None
    categories: tuple[str, ...] = ()
    doi: Optional[str] = None
    venue: Optional[str] = None
    journal_ref: Optional[str] = None
    citation_count: int = Field(default=0, ge=0)
    reference_count: int = Field(default=0, ge=0)
    influential_citation_count: int = Field(default=0, ge=0)
    is_open_access: bool = False
    publication_types: tuple[str, ...] = ()
    source_url: Optional[str] = None
    html_url: Optional[str] = None
    pmc_id: Optional[str] = None
    tldr: Optional[str] = None

    @field_validator("title", "external_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("categories", "publication_types", mode="before")
    @classmethod
    def ordered_unique(cls, v):
        if v is None:
            return ()
        seen: list[str] = []
        for item in v:
            if item and item not in seen:
                seen.append(item)
        return tuple(seen)

    @model_validator(mode="after")
    def default_primary_category(self) -> "Paper":
        if not self.primary_category and self.categories:
            # frozen: bypass __setattr__ during construction only
            object.__setattr__(self, "primary_category", self.categories[0])
        if self.year is None and self.published_date is not None:
            object.__setattr__(self, "year", self.published_date.year)
        return self

    def to_document(self) -> dict:
        """Index document: snake_case keys, ISO dates, empty optionals omitted."""
        doc = {
            "id": self.doc_id,
            "external_id": self.external_id,
            "source": self.source,
            "title": self.title,
            "abstract": self.abstract,
            "authors": [
                a.model_dump(exclude_none=True) for a in self.authors
            ],
            "citation_count": self.citation_count,
            "reference_count": self.reference_count,
            "influential_citation_count": self.influential_citation_count,
            "is_open_access": self.is_open_access,
        }
        optional = {
            "published_date": self.published_date.isoformat() if self.published_date else None,
            "year": self.year,
            "pdf_url": self.pdf_url,
            "primary_category": self.primary_category,
            "categories": list(self.categories),
            "doi": self.doi,
            "venue": self.venue,
            "journal_ref": self.journal_ref,
            "publication_types": list(self.publication_types),
            "s2_url": self.source_url,
            "html_url": self.html_url,
            "tldr": self.tldr,
        }
        doc.update({k: v for k, v in optional.items() if v})
        return doc


class SearchResult(BaseModel):
    """One page of adapter results plus the source-reported total."""

    papers: list[Paper] = Field(default_factory=list)
    total: int = 0


# ── External id accessors ────────────────────────────────────────────


def external_id(ids: ExternalIds | None, key: str) -> str | None:
    """Return ``ids[key]`` as a string, or None if missing or not scalar."""
    if not ids:
        return None
    value = ids.get(key)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, (str, int)):
        value = str(value).strip()
        return value or None
    return None


def arxiv_id_of(ids: ExternalIds | None) -> str | None:
    return external_id(ids, "ArXiv")


def doi_of(ids: ExternalIds | None) -> str | None:
    return external_id(ids, "DOI")


def pubmed_id_of(ids: ExternalIds | None) -> str | None:
    return external_id(ids, "PubMed")


def scalar_ids(raw) -> ExternalIds:
    """Keep only the scalar entries of an upstream externalIds object."""
    if not isinstance(raw, dict):
        return {}
    return {
        str(k): v
        for k, v in raw.items()
        if v is None or isinstance(v, (str, int, float)) and not isinstance(v, bool)
    }
