"""Tests for the streaming gzip JSON Lines batch decoder."""

import gzip
import io
import json

import pytest
import requests
import urllib3

from ingest.core.errors import BatchCallbackError, StreamDecodeError
from ingest.sources.jsonl import ScanStats, stream_batches


def _gz(lines: list[str]) -> io.BytesIO:
    return io.BytesIO(gzip.compress(("\n".join(lines) + "\n").encode()))


def _records(n: int, start: int = 0) -> list[str]:
    return [json.dumps({"id": i, "title": f"Paper {i}"}) for i in range(start, start + n)]


class ResettingBody(io.BytesIO):
    """Body whose connection drops once ``fail_after`` bytes were read."""

    def __init__(self, data: bytes, fail_after: int, error: Exception):
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


class Collector:
    def __init__(self):
        self.batches = []

    def __call__(self, batch):
        self.batches.append(list(batch))

    @property
    def sizes(self):
        return [len(b) for b in self.batches]


# ── Batching ─────────────────────────────────────────────────────────


def test_batches_and_final_flush():
    sink = Collector()
    matched = stream_batches(_gz(_records(7)), batch_size=3, on_batch=sink)
    assert matched == 7
    assert sink.sizes == [3, 3, 1]
    assert [r["id"] for b in sink.batches for r in b] == list(range(7))


def test_exact_multiple_has_no_empty_flush():
    sink = Collector()
    stream_batches(_gz(_records(6)), batch_size=3, on_batch=sink)
    assert sink.sizes == [3, 3]


def test_empty_stream():
    sink = Collector()
    assert stream_batches(io.BytesIO(gzip.compress(b"")), batch_size=10, on_batch=sink) == 0
    assert sink.batches == []


def test_invalid_batch_size():
    with pytest.raises(ValueError):
        stream_batches(_gz(_records(1)), batch_size=0, on_batch=Collector())


# ── Skipping ─────────────────────────────────────────────────────────


def test_malformed_lines_skipped():
    lines = _records(3) + ["{not json", "[1, 2, 3]", "", "   "] + _records(2, start=3)
    sink = Collector()
    stats = ScanStats()
    matched = stream_batches(_gz(lines), batch_size=100, on_batch=sink, stats=stats)
    assert matched == 5
    assert stats.malformed == 2
    assert [r["id"] for r in sink.batches[0]] == [0, 1, 2, 3, 4]


def test_predicate_filters():
    sink = Collector()
    stats = ScanStats()
    matched = stream_batches(
        _gz(_records(10)),
        batch_size=4,
        on_batch=sink,
        predicate=lambda r: r["id"] % 2 == 0,
        stats=stats,
    )
    assert matched == 5
    assert stats.filtered == 5
    assert sink.sizes == [4, 1]


def test_decode_rejections_count_as_malformed():
    def decode(obj):
        if "title" not in obj:
            raise ValueError("no title")
        return obj["title"]

    lines = _records(2) + [json.dumps({"id": 99})]
    sink = Collector()
    stats = ScanStats()
    matched = stream_batches(_gz(lines), batch_size=10, on_batch=sink, decode=decode, stats=stats)
    assert matched == 2
    assert stats.malformed == 1
    assert sink.batches == [["Paper 0", "Paper 1"]]


def test_overlong_line_skipped():
    big = json.dumps({"id": -1, "title": "x" * 500})
    lines = _records(1) + [big] + _records(1, start=1)
    sink = Collector()
    stats = ScanStats()
    matched = stream_batches(_gz(lines), batch_size=10, on_batch=sink, max_line_bytes=100, stats=stats)
    assert matched == 2
    assert stats.malformed == 1
    assert [r["id"] for r in sink.batches[0]] == [0, 1]


def test_progress_interval_is_record_based(caplog):
    caplog.set_level("INFO", logger="ingest.sources.jsonl")
    stream_batches(_gz(_records(10)), batch_size=100, on_batch=Collector(), progress_every=4)
    progress = [r for r in caplog.records if "Progress" in r.getMessage()]
    assert len(progress) == 2


# ── Errors ───────────────────────────────────────────────────────────


def test_truncated_stream_raises_with_matched_count():
    data = gzip.compress(("\n".join(_records(2000)) + "\n").encode())
    truncated = io.BytesIO(data[: len(data) // 2])
    sink = Collector()
    with pytest.raises(StreamDecodeError) as info:
        stream_batches(truncated, batch_size=10, on_batch=sink)
    # Delivered batches plus the undelivered partial batch
    assert info.value.matched >= sum(sink.sizes)
    assert info.value.matched < 2000


def test_not_gzip_raises():
    with pytest.raises(StreamDecodeError):
        stream_batches(io.BytesIO(b"plain text, not gzip\n"), batch_size=10, on_batch=Collector())


def test_callback_error_stops_processing():
    calls = []

    def failing(batch):
        calls.append(len(batch))
        raise RuntimeError("index down")

    with pytest.raises(BatchCallbackError) as info:
        stream_batches(_gz(_records(10)), batch_size=3, on_batch=failing)
    assert calls == [3]
    assert info.value.matched == 3
    assert isinstance(info.value.cause, RuntimeError)


@pytest.mark.parametrize(
    "error",
    [
        urllib3.exceptions.ProtocolError("Connection broken: ConnectionResetError(104)"),
        urllib3.exceptions.ReadTimeoutError(None, "/papers-0.gz", "Read timed out."),
        requests.ConnectionError("connection aborted"),
    ],
)
def test_connection_drop_mid_body_raises_decode_error(error):
    data = gzip.compress(("\n".join(_records(2000)) + "\n").encode())
    body = ResettingBody(data, fail_after=len(data) // 3, error=error)
    with pytest.raises(StreamDecodeError) as info:
        stream_batches(body, batch_size=10, on_batch=Collector())
    assert info.value.__cause__ is error
