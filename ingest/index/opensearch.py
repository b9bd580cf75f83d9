"""Bulk indexer for an OpenSearch-compatible REST endpoint."""

import json
import logging

import requests

from ingest.core.errors import IndexerError
from ingest.sources.models import Paper

logger = logging.getLogger(__name__)

_ERROR_BODY_CHARS = 500
_ACCEPTED = (200, 201)

INDEX_MAPPING = {
    "settings": {
        "number_of_shards": 2,
        "number_of_replicas": 0,
        "analysis": {
            "analyzer": {
                "paper_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "stop", "snowball"],
                }
            }
        },
    },
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "external_id": {"type": "keyword"},
            "source": {"type": "keyword"},
            "title": {
                "type": "text",
                "analyzer": "paper_analyzer",
                "fields": {"keyword": {"type": "keyword", "ignore_above": 512}},
            },
            "abstract": {"type": "text", "analyzer": "paper_analyzer"},
            "authors": {
                "type": "nested",
                "properties": {
                    "name": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
                    "affiliation": {"type": "text"},
                    "author_id": {"type": "keyword"},
                },
            },
            "published_date": {"type": "date", "format": "yyyy-MM-dd||yyyy-MM||yyyy||epoch_millis"},
            "year": {"type": "integer"},
            "pdf_url": {"type": "keyword", "index": False},
            "primary_category": {"type": "keyword"},
            "categories": {"type": "keyword"},
            "doi": {"type": "keyword"},
            "journal_ref": {"type": "text"},
            "citation_count": {"type": "integer"},
            "reference_count": {"type": "integer"},
            "influential_citation_count": {"type": "integer"},
            "venue": {"type": "keyword", "fields": {"text": {"type": "text"}}},
            "publication_types": {"type": "keyword"},
            "s2_url": {"type": "keyword", "index": False},
            "html_url": {"type": "keyword", "index": False},
            "is_open_access": {"type": "boolean"},
            "tldr": {"type": "text", "analyzer": "paper_analyzer"},
        }
    },
}


class PaperIndex:
    """Index lifecycle plus ``_bulk`` writes for one paper index."""

    def __init__(
        self,
        endpoint: str,
        index: str = "papers",
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.index = index
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["Content-Type"] = "application/json"
        if username and password:
            self.session.auth = (username, password)

    @classmethod
    def from_settings(cls, settings, session: requests.Session | None = None) -> "PaperIndex":
        """Build from an ``IndexSettings`` model."""
        return cls(
            endpoint=settings.endpoint,
            index=settings.index,
            username=settings.username,
            password=settings.password,
            timeout=settings.timeout_seconds,
            session=session,
        )

    @property
    def index_url(self) -> str:
        return f"{self.endpoint}/{self.index}"

    # ── Index Lifecycle ──────────────────────────────────────

    def create_index(self) -> bool:
        """Create the index with the paper mapping if it does not exist.

        Returns True if it was created, False if it already existed.
        """
        resp = self._request("PUT", self.index_url, data=json.dumps(INDEX_MAPPING))
        if resp.status_code in _ACCEPTED:
            logger.info("Index '%s' created", self.index)
            return True
        if resp.status_code == 400 and "resource_already_exists_exception" in resp.text:
            logger.info("Index '%s' already exists", self.index)
            return False
        raise IndexerError(
            f"create index failed ({resp.status_code}): {resp.text[:_ERROR_BODY_CHARS]}",
            status=resp.status_code,
        )

    def delete_index(self) -> None:
        """Delete the index; an absent index counts as success."""
        resp = self._request("DELETE", self.index_url)
        if resp.status_code in (200, 404):
            logger.info("Index '%s' deleted", self.index)
            return
        raise IndexerError(
            f"delete index failed ({resp.status_code}): {resp.text[:_ERROR_BODY_CHARS]}",
            status=resp.status_code,
        )

    def doc_count(self) -> int:
        resp = self._request("GET", f"{self.index_url}/_count")
        if resp.status_code != 200:
            raise IndexerError(
                f"count failed ({resp.status_code}): {resp.text[:_ERROR_BODY_CHARS]}",
                status=resp.status_code,
            )
        return int(resp.json().get("count", 0))

    def ping(self) -> bool:
        try:
            resp = self._request("GET", self.endpoint)
        except IndexerError:
            return False
        return resp.status_code == 200

    # ── Documents ────────────────────────────────────────────

    def bulk_index(self, papers: list[Paper]) -> int:
        """Index papers through ``_bulk``. Returns how many were accepted.

        Documents are keyed by ``doc_id`` so re-imports overwrite. Individual
        rejections only lower the returned count; a failed request as a whole,
        or a response that cannot be read, raises ``IndexerError``.
        """
        if not papers:
            return 0

        lines = []
        for paper in papers:
            lines.append(json.dumps({"index": {"_index": self.index, "_id": paper.doc_id}}))
            lines.append(json.dumps(paper.to_document()))
        body = "\n".join(lines) + "\n"

        resp = self._request(
            "POST",
            f"{self.endpoint}/_bulk",
            data=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        if resp.status_code != 200:
            raise IndexerError(
                f"bulk index failed ({resp.status_code}): {resp.text[:_ERROR_BODY_CHARS]}",
                status=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise IndexerError(
                f"bulk response unreadable: {resp.text[:_ERROR_BODY_CHARS]}", status=resp.status_code
            ) from exc
        if not isinstance(data, dict):
            raise IndexerError(
                f"bulk response unreadable: {type(data).__name__}", status=resp.status_code
            )
        items = data.get("items") or []

        accepted = 0
        for item in items:
            result = item.get("index") or {}
            if result.get("status") in _ACCEPTED:
                accepted += 1
            else:
                logger.debug("Rejected %s: %s", result.get("_id"), result.get("error"))
        if accepted < len(papers):
            logger.warning("Bulk: %d/%d documents accepted", accepted, len(papers))
        return accepted

    # ── HTTP ─────────────────────────────────────────────────

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise IndexerError(f"{method} {url}: {exc}") from exc
