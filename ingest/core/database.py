"""SQLite paper store: upserted records plus the citation-enrichment working set."""

import json
import logging
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator

from ingest.sources.models import Author, Paper

logger = logging.getLogger(__name__)

# citation_count value meaning "looked up, nothing found"; only exists mid-run
CHECKED_SENTINEL = -1

# ── Schema DDL ───────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS papers (
    id                          INTEGER PRIMARY KEY,
    doc_id                      TEXT NOT NULL,
    external_id                 TEXT NOT NULL,
    source                      TEXT NOT NULL,
    title                       TEXT NOT NULL,
    abstract                    TEXT NOT NULL DEFAULT '',
    authors                     TEXT NOT NULL DEFAULT '[]',   -- JSON array
    published_date              TEXT,
    year                        INTEGER,
    pdf_url                     TEXT,
    primary_category            TEXT,
    categories                  TEXT NOT NULL DEFAULT '[]',   -- JSON array
    doi                         TEXT,
    venue                       TEXT,
    journal_ref                 TEXT,
    citation_count              INTEGER NOT NULL DEFAULT 0
                                CHECK (citation_count >= -1),
    reference_count             INTEGER NOT NULL DEFAULT 0,
    influential_citation_count  INTEGER NOT NULL DEFAULT 0,
    is_open_access              INTEGER NOT NULL DEFAULT 0,
    publication_types           TEXT NOT NULL DEFAULT '[]',   -- JSON array
    source_url                  TEXT,
    created_at                  TEXT NOT NULL,
    updated_at                  TEXT NOT NULL,
    UNIQUE (external_id, source)
);

CREATE INDEX IF NOT EXISTS idx_papers_doc_id   ON papers(doc_id);
CREATE INDEX IF NOT EXISTS idx_papers_doi      ON papers(doi);
CREATE INDEX IF NOT EXISTS idx_papers_citation ON papers(source, citation_count, external_id);
"""

_UPSERT = """
INSERT INTO papers
    (doc_id, external_id, source, title, abstract, authors, published_date,
     year, pdf_url, primary_category, categories, doi, venue, journal_ref,
     citation_count, reference_count, influential_citation_count,
     is_open_access, publication_types, source_url, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (external_id, source) DO UPDATE SET
    doc_id = excluded.doc_id,
    title = excluded.title,
    abstract = excluded.abstract,
    authors = excluded.authors,
    published_date = excluded.published_date,
    year = excluded.year,
    pdf_url = excluded.pdf_url,
    primary_category = excluded.primary_category,
    categories = excluded.categories,
    doi = excluded.doi,
    venue = excluded.venue,
    journal_ref = excluded.journal_ref,
    citation_count = MAX(papers.citation_count, excluded.citation_count),
    reference_count = excluded.reference_count,
    influential_citation_count = excluded.influential_citation_count,
    is_open_access = excluded.is_open_access,
    publication_types = excluded.publication_types,
    source_url = excluded.source_url,
    updated_at = excluded.updated_at
"""

_JSON_COLUMNS = ("authors", "categories", "publication_types")


# ── PaperStore ───────────────────────────────────────────────────────


class PaperStore:
    """Relational copy of ingested papers, keyed by (external_id, source)."""

    def __init__(self, db_path: str | Path):
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ── Papers ───────────────────────────────────────────────

    def add_papers(self, papers: list[Paper]) -> int:
        """Insert or update papers. Returns the number of rows written."""
        now = _now()
        written = 0
        for p in papers:
            self._conn.execute(
                _UPSERT,
                (
                    p.doc_id,
                    p.external_id,
                    p.source,
                    p.title,
                    p.abstract,
                    json.dumps([a.model_dump(exclude_none=True) for a in p.authors]),
                    p.published_date.isoformat() if p.published_date else None,
                    p.year,
                    p.pdf_url,
                    p.primary_category,
                    json.dumps(list(p.categories)),
                    p.doi,
                    p.venue,
                    p.journal_ref,
                    p.citation_count,
                    p.reference_count,
                    p.influential_citation_count,
                    int(p.is_open_access),
                    json.dumps(list(p.publication_types)),
                    p.source_url,
                    now,
                    now,
                ),
            )
            written += 1

        self._conn.commit()
        logger.info("Stored %d papers", written)
        return written

    def get_paper(self, external_id: str, source: str = "arxiv") -> dict | None:
        row = self._conn.execute(
            "SELECT * FROM papers WHERE external_id = ? AND source = ?",
            (external_id, source),
        ).fetchone()
        if row is None:
            return None
        return _decode_row(row)

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM papers").fetchone()[0]

    def count_indexable(self, category: str | None = None) -> int:
        """Rows with a title, optionally in one primary category."""
        where, params = _indexable_filter(category)
        return self._conn.execute(f"SELECT COUNT(*) FROM papers WHERE {where}", params).fetchone()[0]

    def iter_rows(
        self,
        batch_size: int = 500,
        category: str | None = None,
        limit: int | None = None,
    ) -> Iterator[list[dict]]:
        """Decoded rows in insertion order, ``batch_size`` at a time.

        Pages by primary key, so rows upserted during the scan are not
        skipped or repeated.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        where, params = _indexable_filter(category)
        last_id = 0
        remaining = limit
        while remaining is None or remaining > 0:
            size = batch_size if remaining is None else min(batch_size, remaining)
            rows = self._conn.execute(
                f"SELECT * FROM papers WHERE {where} AND id > ? ORDER BY id LIMIT ?",
                (*params, last_id, size),
            ).fetchall()
            if not rows:
                return
            last_id = rows[-1]["id"]
            if remaining is not None:
                remaining -= len(rows)
            yield [_decode_row(r) for r in rows]

    # ── Citation Enrichment ──────────────────────────────────

    def count_unenriched(self, source: str = "arxiv") -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM papers WHERE source = ? AND citation_count = 0",
            (source,),
        ).fetchone()[0]

    def select_unenriched(self, limit: int, source: str = "arxiv") -> list[str]:
        """External ids with a citation count of exactly zero, in id order."""
        rows = self._conn.execute(
            """SELECT external_id FROM papers
               WHERE source = ? AND citation_count = 0
               ORDER BY external_id
               LIMIT ?""",
            (source, limit),
        ).fetchall()
        return [r["external_id"] for r in rows]

    def set_citation_count(self, external_id: str, count: int, source: str = "arxiv") -> int:
        """Write a positive citation count. Returns rows updated."""
        if count <= 0:
            raise ValueError(f"citation count must be positive, got {count}")
        cur = self._conn.execute(
            """UPDATE papers SET citation_count = ?
               WHERE external_id = ? AND source = ?""",
            (count, external_id, source),
        )
        self._conn.commit()
        return cur.rowcount

    def mark_checked(self, external_ids: list[str], source: str = "arxiv") -> int:
        """Set the sentinel on papers still at zero so they are not re-selected."""
        if not external_ids:
            return 0
        cur = self._conn.executemany(
            """UPDATE papers SET citation_count = ?
               WHERE external_id = ? AND source = ? AND citation_count = 0""",
            [(CHECKED_SENTINEL, ext_id, source) for ext_id in external_ids],
        )
        self._conn.commit()
        return cur.rowcount

    def reset_sentinels(self) -> int:
        """Turn every sentinel back into zero. Returns rows reset."""
        cur = self._conn.execute(
            "UPDATE papers SET citation_count = 0 WHERE citation_count = ?",
            (CHECKED_SENTINEL,),
        )
        self._conn.commit()
        return cur.rowcount

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode_row(row: sqlite3.Row) -> dict:
    paper = dict(row)
    for column in _JSON_COLUMNS:
        paper[column] = json.loads(paper[column])
    paper["is_open_access"] = bool(paper["is_open_access"])
    return paper


def _indexable_filter(category: str | None) -> tuple[str, tuple]:
    if category:
        return "title != '' AND primary_category = ?", (category,)
    return "title != ''", ()


def row_to_paper(row: dict) -> Paper:
    """Rebuild a Paper from a decoded row. Raises ValueError on invalid data."""
    return Paper(
        doc_id=row["doc_id"],
        external_id=row["external_id"],
        source=row["source"],
        title=row["title"],
        abstract=row["abstract"] or "",
        authors=[Author(**a) for a in row["authors"]],
        published_date=date.fromisoformat(row["published_date"]) if row["published_date"] else None,
        year=row["year"],
        pdf_url=row["pdf_url"],
        primary_category=row["primary_category"],
        categories=row["categories"],
        doi=row["doi"],
        venue=row["venue"],
        journal_ref=row["journal_ref"],
        # a mid-enrichment sentinel reads as "no count"
        citation_count=max(row["citation_count"], 0),
        reference_count=row["reference_count"],
        influential_citation_count=row["influential_citation_count"],
        is_open_access=row["is_open_access"],
        publication_types=row["publication_types"],
        source_url=row["source_url"],
    )
