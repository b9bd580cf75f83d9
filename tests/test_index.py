"""Tests for the OpenSearch bulk indexer (mocked HTTP)."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from ingest.core.errors import IndexerError
from ingest.drivers.progress import ImportProgress
from ingest.index.opensearch import INDEX_MAPPING, PaperIndex
from ingest.sources.models import Paper


def _paper(arxiv_id):
    return Paper(doc_id=f"arxiv:{arxiv_id}", external_id=arxiv_id, source="arxiv", title=f"Paper {arxiv_id}")


def _response(status=200, data=None, text=None):
    resp = MagicMock()
    resp.status_code = status
    if isinstance(data, Exception):
        resp.json.side_effect = data
    else:
        resp.json.return_value = data or {}
    resp.text = text if text is not None else json.dumps(data or {})
    return resp


def _index(*responses, **kw):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return PaperIndex("http://localhost:9200/", session=session, **kw), session


def _bulk_items(statuses):
    return {"errors": any(s >= 300 for s in statuses), "items": [{"index": {"_id": str(i), "status": s}} for i, s in enumerate(statuses)]}


# ── Bulk Writes ──────────────────────────────────────────────────────


def test_bulk_body_is_ndjson_keyed_by_doc_id():
    index, session = _index(_response(data=_bulk_items([201, 200])))
    accepted = index.bulk_index([_paper("1706.03762"), _paper("1810.04805")])

    assert accepted == 2
    method, url = session.request.call_args.args
    assert (method, url) == ("POST", "http://localhost:9200/_bulk")
    body = session.request.call_args.kwargs["data"].decode("utf-8")
    assert body.endswith("\n")
    lines = [json.loads(line) for line in body.strip().split("\n")]
    assert lines[0] == {"index": {"_index": "papers", "_id": "arxiv:1706.03762"}}
    assert lines[1]["title"] == "Paper 1706.03762"
    assert lines[2]["index"]["_id"] == "arxiv:1810.04805"
    assert session.request.call_args.kwargs["headers"]["Content-Type"] == "application/x-ndjson"


def test_partial_rejection_becomes_errors():
    statuses = [201, 400, 201, 429, 200]
    index, _ = _index(_response(data=_bulk_items(statuses)))
    papers = [_paper(f"2301.0000{i}") for i in range(5)]

    progress = ImportProgress()
    progress.record_batch(len(papers), index.bulk_index(papers))

    assert progress.indexed == 3
    assert progress.errors == 2


def test_bulk_non_200_raises():
    index, _ = _index(_response(status=413, text="request too large"))
    with pytest.raises(IndexerError) as info:
        index.bulk_index([_paper("1706.03762")])
    assert info.value.status == 413


def test_bulk_unreadable_body_raises():
    index, _ = _index(_response(data=ValueError("no json"), text="<html>"))
    with pytest.raises(IndexerError) as info:
        index.bulk_index([_paper("1706.03762"), _paper("1810.04805")])
    assert info.value.status == 200
    assert "<html>" in str(info.value)


def test_bulk_empty_makes_no_request():
    index, session = _index()
    assert index.bulk_index([]) == 0
    session.request.assert_not_called()


def test_connection_error_wrapped():
    index, _ = _index(requests.ConnectionError("refused"))
    with pytest.raises(IndexerError):
        index.bulk_index([_paper("1706.03762")])


# ── Index Lifecycle ──────────────────────────────────────────────────


def test_create_index_sends_mapping():
    index, session = _index(_response(data={"acknowledged": True}))
    assert index.create_index() is True
    method, url = session.request.call_args.args
    assert (method, url) == ("PUT", "http://localhost:9200/papers")
    assert json.loads(session.request.call_args.kwargs["data"]) == INDEX_MAPPING


def test_create_existing_index_is_not_an_error():
    body = '{"error":{"type":"resource_already_exists_exception"},"status":400}'
    index, _ = _index(_response(status=400, text=body))
    assert index.create_index() is False


def test_create_index_other_error_raises():
    index, _ = _index(_response(status=400, text='{"error":{"type":"mapper_parsing_exception"}}'))
    with pytest.raises(IndexerError):
        index.create_index()


@pytest.mark.parametrize("status", [200, 404])
def test_delete_index_tolerates_missing(status):
    index, _ = _index(_response(status=status))
    index.delete_index()


def test_delete_index_error_raises():
    index, _ = _index(_response(status=500, text="boom"))
    with pytest.raises(IndexerError):
        index.delete_index()


def test_doc_count():
    index, session = _index(_response(data={"count": 1234}))
    assert index.doc_count() == 1234
    assert session.request.call_args.args[1] == "http://localhost:9200/papers/_count"


def test_ping():
    index, _ = _index(_response(status=200), requests.ConnectionError("down"))
    assert index.ping() is True
    assert index.ping() is False


def test_basic_auth_and_custom_index():
    index, session = _index(username="admin", password="secret", index="arxiv")
    assert session.auth == ("admin", "secret")
    assert index.index_url == "http://localhost:9200/arxiv"
