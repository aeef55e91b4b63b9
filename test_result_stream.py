"""
Tests for the paged ResultStream.
"""

import pytest

from solr_adapter.execution.result_stream import ResultStream


class PagedSource:
    """Serves documents 0..total-1 and records every page request."""

    def __init__(self, total):
        self.documents = [{"n": i} for i in range(total)]
        self.calls = []

    def __call__(self, offset, limit):
        self.calls.append((offset, limit))
        return self.documents[offset:offset + limit], len(self.documents)


def test_yields_every_document_in_order():
    source = PagedSource(25)
    stream = ResultStream(source, lambda d: d["n"], page_size=10)
    assert list(stream) == list(range(25))
    assert source.calls == [(0, 10), (10, 10), (20, 10)]


def test_one_request_per_page_and_lazy():
    source = PagedSource(25)
    stream = ResultStream(source, lambda d: d["n"], page_size=10)
    assert source.calls == []

    assert next(stream) == 0
    assert source.calls == [(0, 10)]
    for _ in range(9):
        next(stream)
    assert len(source.calls) == 1

    next(stream)
    assert len(source.calls) == 2


def test_abandoned_stream_issues_no_more_requests():
    source = PagedSource(100)
    stream = ResultStream(source, lambda d: d, page_size=10)
    stream.first()
    stream.close()
    assert list(stream) == []
    assert len(source.calls) == 1


def test_limit_and_offset():
    source = PagedSource(50)
    stream = ResultStream(source, lambda d: d["n"], offset=5, limit=12, page_size=5)
    assert stream.collect() == list(range(5, 17))
    assert source.calls == [(5, 5), (10, 5), (15, 2)]


def test_zero_limit_fetches_nothing():
    source = PagedSource(5)
    assert ResultStream(source, lambda d: d, limit=0).collect() == []
    assert source.calls == []


def test_exact_page_boundary_stops_on_num_found():
    source = PagedSource(20)
    ResultStream(source, lambda d: d, page_size=10).collect()
    assert source.calls == [(0, 10), (10, 10)]


def test_not_restartable():
    stream = ResultStream(PagedSource(3), lambda d: d["n"])
    assert list(stream) == [0, 1, 2]
    assert list(stream) == []
    assert iter(stream) is stream


def test_invalid_page_size():
    with pytest.raises(ValueError):
        ResultStream(PagedSource(1), lambda d: d, page_size=0)
