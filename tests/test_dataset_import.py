"""Tests for the bulk dataset import driver, end to end over gzip bytes."""

import gzip
import io
import json
from unittest.mock import MagicMock

import pytest
import urllib3

from ingest.core.database import PaperStore
from ingest.core.errors import IndexerError
from ingest.core.retry import RetryPolicy
from ingest.drivers.dataset import run_dataset_import
from ingest.sources.s2_datasets import S2DatasetClient


class _Raw(io.BytesIO):
    pass


class _ResettingRaw(_Raw):
    """Raw body that drops the connection after ``fail_after`` bytes."""

    def __init__(self, data, fail_after, error):
        super().__init__(data)
        self.fail_after = fail_after
        self.error = error

    def read(self, size=-1):
        remaining = self.fail_after - self.tell()
        if remaining <= 0:
            raise self.error
        if size is None or size < 0 or size > remaining:
            size = remaining
        return super().read(size)


RELEASE = "2024-01-02"
LINES = [
    {"title": "A", "externalids": {"ArXiv": "1706.03762"}},
    {"title": "", "externalids": {}},
    {"title": "B", "externalids": {"ArXiv": "1810.04805"}},
]


class FakeIndex:
    """Documents keyed by id, like the real index's overwrite-by-_id."""

    def __init__(self, reject=0, fail=False):
        self.docs = {}
        self.calls = 0
        self.reject = reject
        self.fail = fail

    def bulk_index(self, papers):
        self.calls += 1
        if self.fail:
            raise IndexerError("bulk request returned 500", status=500)
        for p in papers:
            self.docs[p.doc_id] = p.to_document()
        return len(papers) - self.reject


def _gz(records, extra_lines=()):
    text = "\n".join([json.dumps(r) for r in records] + list(extra_lines)) + "\n"
    return gzip.compress(text.encode())


def _response(status=200, data=None, body=b""):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = data or {}
    resp.text = json.dumps(data or {})
    resp.raw = _Raw(body)
    return resp


def _client(files: dict):
    """Client whose session serves the manifest plus ``files`` (url -> bytes or status)."""
    session = MagicMock()
    session.headers = {}

    def get(url, **kwargs):
        if url.endswith("/release/latest"):
            return _response(data={"release_id": RELEASE})
        if url.endswith(f"/release/{RELEASE}/dataset/papers"):
            return _response(data={"name": "papers", "files": list(files)})
        content = files[url]
        if isinstance(content, int):
            return _response(status=content)
        if isinstance(content, io.BytesIO):
            resp = _response()
            resp.raw = content
            return resp
        return _response(body=content)

    session.get.side_effect = get
    return S2DatasetClient("key", session=session, policy=RetryPolicy(sleep=lambda s: None))


# ── End to End ───────────────────────────────────────────────────────


def test_three_lines_index_two_documents():
    index = FakeIndex()
    result = run_dataset_import(_client({"https://f/0.gz": _gz(LINES)}), index)

    assert result.release_id == RELEASE
    assert result.matched == 2
    assert result.indexed == 2
    assert result.errors == 0
    assert set(index.docs) == {"arxiv:1706.03762", "arxiv:1810.04805"}
    assert index.docs["arxiv:1706.03762"]["title"] == "A"


def test_reimport_is_idempotent():
    client = _client({"https://f/0.gz": _gz(LINES)})
    index = FakeIndex()
    run_dataset_import(client, index)
    first = dict(index.docs)
    run_dataset_import(client, index)
    assert index.docs == first


def test_store_receives_converted_papers(tmp_path):
    store = PaperStore(tmp_path / "papers.db")
    try:
        run_dataset_import(_client({"https://f/0.gz": _gz(LINES)}), FakeIndex(fail=True), store=store)
        assert store.count() == 2
        assert store.get_paper("1810.04805")["title"] == "B"
    finally:
        store.close()


def test_malformed_lines_skipped():
    body = _gz(LINES, extra_lines=["{not json", "[1, 2]"])
    result = run_dataset_import(_client({"https://f/0.gz": body}), FakeIndex())
    assert result.matched == 2
    assert result.files[0].malformed == 2


def test_batches_respect_size():
    records = [{"title": f"T{i}", "externalids": {"ArXiv": f"2301.{i:05d}"}} for i in range(7)]
    index = FakeIndex()
    result = run_dataset_import(_client({"https://f/0.gz": _gz(records)}), index, batch_size=3)
    assert result.indexed == 7
    assert index.calls == 3


def test_all_papers_mode_keeps_non_arxiv():
    records = LINES + [{"corpusid": 42, "title": "C", "externalids": {"DOI": "10.1/c"}}]
    index = FakeIndex()
    run_dataset_import(_client({"https://f/0.gz": _gz(records)}), index, arxiv_only=False)
    assert "s2:42" in index.docs
    assert len(index.docs) == 3


# ── Failures ─────────────────────────────────────────────────────────


def test_failed_file_recorded_and_run_continues():
    files = {
        "https://f/0.gz": b"this is not gzip",
        "https://f/1.gz": _gz(LINES),
    }
    index = FakeIndex()
    result = run_dataset_import(_client(files), index)

    assert result.failed_files == [0]
    assert result.files[0].error
    assert result.files[1].error is None
    assert result.indexed == 2


def test_download_error_recorded():
    files = {"https://f/0.gz": 404, "https://f/1.gz": _gz(LINES)}
    result = run_dataset_import(_client(files), FakeIndex())
    assert result.failed_files == [0]
    assert result.indexed == 2


def test_connection_reset_ends_only_that_file():
    body = _gz(LINES * 50)
    reset = urllib3.exceptions.ProtocolError("Connection broken: ConnectionResetError(104)")
    files = {
        "https://f/0.gz": _ResettingRaw(body, fail_after=len(body) // 2, error=reset),
        "https://f/1.gz": _gz(LINES),
    }
    index = FakeIndex()
    result = run_dataset_import(_client(files), index)

    assert result.failed_files == [0]
    assert "Connection broken" in result.files[0].error
    assert result.files[1].error is None
    assert set(index.docs) == {"arxiv:1706.03762", "arxiv:1810.04805"}


def test_rejected_documents_count_as_errors():
    result = run_dataset_import(_client({"https://f/0.gz": _gz(LINES)}), FakeIndex(reject=1))
    assert result.indexed == 1
    assert result.errors == 1


def test_index_failure_counted_not_raised():
    result = run_dataset_import(_client({"https://f/0.gz": _gz(LINES)}), FakeIndex(fail=True))
    assert result.indexed == 0
    assert result.errors == 2
    assert result.failed_files == []


# ── Resumption ───────────────────────────────────────────────────────


@pytest.mark.parametrize("start_file, max_files, expected", [(1, None, [1, 2]), (0, 2, [0, 1]), (2, 5, [2])])
def test_file_window(start_file, max_files, expected):
    files = {f"https://f/{i}.gz": _gz(LINES) for i in range(3)}
    result = run_dataset_import(
        _client(files), FakeIndex(), start_file=start_file, max_files=max_files
    )
    assert [f.index for f in result.files] == expected
    assert result.files_total == 3
