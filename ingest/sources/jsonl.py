"""Streaming decoder for gzip-compressed JSON Lines datasets."""

import gzip
import io
import json
import logging
import time
import zlib
from typing import BinaryIO, Callable, TypeVar

import requests
import urllib3

from ingest.core.errors import BatchCallbackError, StreamDecodeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_LINE_BYTES = 32 * 1024 * 1024
PROGRESS_EVERY = 5000  # matched records between progress lines

# Read failures of the compressed body or the connection under it
_STREAM_ERRORS = (
    OSError,
    EOFError,
    zlib.error,
    urllib3.exceptions.HTTPError,
    requests.RequestException,
)


class ScanStats:
    """Counters for one decoded stream."""

    def __init__(self) -> None:
        self.scanned = 0
        self.malformed = 0
        self.filtered = 0
        self.matched = 0
        self.batches = 0

    def __repr__(self) -> str:
        return (
            f"ScanStats(scanned={self.scanned}, matched={self.matched}, "
            f"malformed={self.malformed}, filtered={self.filtered}, batches={self.batches})"
        )


# ── Public API ───────────────────────────────────────────────────────


def stream_batches(
    stream: BinaryIO,
    batch_size: int,
    on_batch: Callable[[list[T]], None],
    predicate: Callable[[T], bool] | None = None,
    decode: Callable[[dict], T] | None = None,
    max_line_bytes: int = MAX_LINE_BYTES,
    progress_every: int = PROGRESS_EVERY,
    stats: ScanStats | None = None,
) -> int:
    """Decompress ``stream`` line by line and hand accepted records to ``on_batch``.

    Each line is parsed as JSON and passed through ``decode`` (which may
    raise ``ValueError`` to reject it); unparseable or over-long lines are
    skipped. Records failing ``predicate`` are skipped. Accepted records are
    delivered in lists of ``batch_size``; the remainder is flushed at the end.

    Returns the number of matched records. Raises ``StreamDecodeError`` if the
    compressed stream itself breaks and ``BatchCallbackError`` if
    ``on_batch`` raises; both carry the matched count so far.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    stats = stats if stats is not None else ScanStats()
    started = time.monotonic()
    batch: list[T] = []

    reader = io.BufferedReader(gzip.GzipFile(fileobj=stream, mode="rb"))
    try:
        for line in _iter_lines(reader, max_line_bytes, stats):
            record = _decode_line(line, decode)
            if record is None:
                stats.malformed += 1
                continue
            if predicate is not None and not predicate(record):
                stats.filtered += 1
                continue

            batch.append(record)
            stats.matched += 1
            if stats.matched % progress_every == 0:
                _log_progress(stats, started)
            if len(batch) >= batch_size:
                _deliver(on_batch, batch, stats)
                batch = []
    except _STREAM_ERRORS as exc:
        raise StreamDecodeError(
            f"stream error after {stats.matched} records: {exc}", matched=stats.matched
        ) from exc

    if batch:
        _deliver(on_batch, batch, stats)
    return stats.matched


# ── Line scanning ────────────────────────────────────────────────────


def _iter_lines(reader: io.BufferedReader, max_line_bytes: int, stats: ScanStats):
    """Yield complete non-empty lines; over-long lines are drained and skipped."""
    while True:
        line = reader.readline(max_line_bytes + 1)
        if not line:
            return
        stats.scanned += 1
        if len(line) > max_line_bytes and not line.endswith(b"\n"):
            # Drain the rest of the over-long line.
            while line and not line.endswith(b"\n"):
                line = reader.readline(max_line_bytes)
            stats.malformed += 1
            logger.warning("Skipped line %d: longer than %d bytes", stats.scanned, max_line_bytes)
            continue
        line = line.strip()
        if line:
            yield line


def _decode_line(line: bytes, decode):
    try:
        obj = json.loads(line)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    if decode is None:
        return obj
    try:
        return decode(obj)
    except ValueError:
        # pydantic.ValidationError is a ValueError
        return None


def _deliver(on_batch, batch, stats: ScanStats) -> None:
    try:
        on_batch(batch)
    except Exception as exc:
        raise BatchCallbackError(stats.matched, exc) from exc
    stats.batches += 1


def _log_progress(stats: ScanStats, started: float) -> None:
    elapsed = max(time.monotonic() - started, 1e-9)
    logger.info(
        "  Progress: %d matched / %d scanned (%.0f matched/sec, %d malformed)",
        stats.matched,
        stats.scanned,
        stats.matched / elapsed,
        stats.malformed,
    )
