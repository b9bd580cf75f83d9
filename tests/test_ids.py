"""Tests for arXiv id extraction, DOI normalization and document ids."""

import pytest

from ingest.sources.ids import (
    arxiv_doi,
    arxiv_id_from_abs_url,
    arxiv_pdf_url,
    extract_arxiv_id,
    match_arxiv_url,
    normalize_doi,
    reconstruct_abstract,
    resolve_doc_id,
    strip_version,
)


# ── Version Suffix ───────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2301.00001v3", "2301.00001"),
        ("2301.00001", "2301.00001"),
        ("hep-ph/9901234v2", "hep-ph/9901234"),
        ("2301.00001v", "2301.00001v"),  # "v" must be followed by digits
    ],
)
def test_strip_version(raw, expected):
    assert strip_version(raw) == expected


def test_abs_url_strips_version():
    assert arxiv_id_from_abs_url("http://arxiv.org/abs/1706.03762v7") == "1706.03762"


def test_abs_url_old_style():
    assert arxiv_id_from_abs_url("http://arxiv.org/abs/hep-th/9711200v3") == "hep-th/9711200"


def test_abs_url_without_abs_segment():
    assert arxiv_id_from_abs_url("http://arxiv.org/pdf/1706.03762") is None
    assert arxiv_id_from_abs_url("") is None


# ── URL Shapes ───────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://arxiv.org/abs/2301.01234", "2301.01234"),
        ("https://arxiv.org/pdf/2301.01234", "2301.01234"),
        ("http://export.arxiv.org/pdf/2301.01234v2", "2301.01234"),
        ("https://ArXiv.org/Abs/2301.01234", "2301.01234"),
        ("https://arxiv.org/abs/hep-ph/9901234", "hep-ph/9901234"),
        ("https://arxiv.org/pdf/math.ag/0309136", "math.ag/0309136"),
        ("https://doi.org/10.1000/xyz", None),
        ("", None),
    ],
)
def test_match_arxiv_url(url, expected):
    assert match_arxiv_url(url) == expected


def test_first_matching_location_wins():
    urls = [
        "https://www.nature.com/articles/abc",
        "https://arxiv.org/abs/1810.04805",
        "https://arxiv.org/abs/1706.03762",
    ]
    assert extract_arxiv_id(urls) == "1810.04805"


def test_url_beats_doi():
    urls = ["https://arxiv.org/pdf/2005.14165"]
    assert extract_arxiv_id(urls, doi="https://doi.org/10.48550/arxiv.1706.03762") == "2005.14165"


def test_own_doi_fallback():
    urls = ["https://www.semanticscholar.org/paper/abc"]
    assert extract_arxiv_id(urls, doi="https://doi.org/10.48550/arXiv.1706.03762") == "1706.03762"


def test_doi_in_location_url_fallback():
    urls = ["https://doi.org/10.48550/arxiv.2301.00001"]
    assert extract_arxiv_id(urls, doi="https://doi.org/10.1000/unrelated") == "2301.00001"


def test_no_arxiv_id():
    assert extract_arxiv_id(["https://example.org/paper"], doi=None) is None
    assert extract_arxiv_id([], doi=None) is None


def test_pdf_url_and_doi_construction():
    assert arxiv_pdf_url("1706.03762") == "https://arxiv.org/pdf/1706.03762"
    assert arxiv_doi("1706.03762") == "10.48550/arXiv.1706.03762"


# ── DOI Normalization ────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://doi.org/10.1000/ABC", "10.1000/ABC"),
        ("http://doi.org/10.1000/abc", "10.1000/abc"),
        ("https://dx.doi.org/10.1000/abc", "10.1000/abc"),
        ("doi:10.1000/abc", "10.1000/abc"),
        ("  10.1000/abc ", "10.1000/abc"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_doi(raw, expected):
    assert normalize_doi(raw) == expected


# ── Document Ids ─────────────────────────────────────────────────────


def test_doc_id_prefers_pmid():
    assert resolve_doc_id(pmid="123", arxiv_id="1706.03762", fallback="s2:9") == "pmid:123"


def test_doc_id_arxiv_over_fallback():
    assert resolve_doc_id(arxiv_id="1706.03762", fallback="s2:9") == "arxiv:1706.03762"


def test_doc_id_fallback():
    assert resolve_doc_id(fallback="openalex:W1") == "openalex:W1"
    assert resolve_doc_id() is None


# ── Abstract Reconstruction ──────────────────────────────────────────


def test_reconstruct_abstract_from_inverted_index():
    inv_index = {
        "This": [0],
        "is": [1],
        "a": [2, 5],
        "test": [3],
        "of": [4],
        "function": [6],
    }
    assert reconstruct_abstract(inv_index) == "This is a test of a function"


def test_reconstruct_abstract_none():
    assert reconstruct_abstract(None) is None


def test_reconstruct_abstract_empty():
    assert reconstruct_abstract({}) is None


def test_reconstruct_abstract_ignores_map_order():
    forward = {"the": [0], "cat": [1], "sat": [2]}
    backward = {"sat": [2], "cat": [1], "the": [0]}
    assert reconstruct_abstract(forward) == "the cat sat"
    assert reconstruct_abstract(backward) == "the cat sat"
