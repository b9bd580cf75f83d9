"""Tests for multi-source search ingestion."""

from unittest.mock import MagicMock

from ingest.core.errors import IndexerError, RetriesExhausted, UpstreamError
from ingest.drivers.search import ingest_search
from ingest.sources.models import Paper, SearchResult


def _paper(doc_id, source="arxiv", **kw):
    return Paper(doc_id=doc_id, external_id=doc_id.split(":", 1)[1], source=source, title=doc_id, **kw)


def _adapter(*papers, total=None, error=None):
    adapter = MagicMock()
    if error is not None:
        adapter.search.side_effect = error
    else:
        adapter.search.return_value = SearchResult(
            papers=list(papers), total=total if total is not None else len(papers)
        )
    return adapter


def test_results_merged_across_sources():
    adapters = {
        "arxiv": _adapter(_paper("arxiv:1706.03762"), total=500),
        "semanticscholar": _adapter(
            _paper("arxiv:1706.03762", source="semanticscholar", citation_count=90000),
            _paper("s2:abc", source="semanticscholar"),
            total=1200,
        ),
    }
    result = ingest_search(adapters, "attention", limit=5)

    assert [p.doc_id for p in result.papers] == ["arxiv:1706.03762", "s2:abc"]
    assert result.papers[0].citation_count == 90000
    assert result.totals == {"arxiv": 500, "semanticscholar": 1200}
    assert result.dedup_stats["duplicates_found"] == 1
    adapters["arxiv"].search.assert_called_once_with("attention", limit=5)


def test_failing_source_skipped():
    adapters = {
        "pubmed": _adapter(error=RetriesExhausted(5, UpstreamError("HTTP 500", status=500))),
        "arxiv": _adapter(_paper("arxiv:1810.04805")),
    }
    result = ingest_search(adapters, "bert")
    assert list(result.failed_sources) == ["pubmed"]
    assert [p.doc_id for p in result.papers] == ["arxiv:1810.04805"]


def test_store_and_index_written():
    store = MagicMock()
    store.add_papers.return_value = 1
    index = MagicMock()
    index.bulk_index.return_value = 1

    result = ingest_search({"arxiv": _adapter(_paper("arxiv:1706.03762"))}, "x", store=store, index=index)

    assert result.stored == 1
    assert result.indexed == 1
    store.add_papers.assert_called_once_with(result.papers)
    index.bulk_index.assert_called_once_with(result.papers)


def test_index_failure_recorded():
    index = MagicMock()
    index.bulk_index.side_effect = IndexerError("bulk index failed (503)", status=503)
    result = ingest_search({"arxiv": _adapter(_paper("arxiv:1706.03762"))}, "x", index=index)
    assert result.indexed == 0
    assert "503" in result.index_error


def test_no_results_skips_writes():
    store = MagicMock()
    index = MagicMock()
    result = ingest_search({"arxiv": _adapter()}, "nothing", store=store, index=index)
    assert result.papers == []
    store.add_papers.assert_not_called()
    index.bulk_index.assert_not_called()
