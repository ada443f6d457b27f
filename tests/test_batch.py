import threading

import pytest

from market_movers.models.datatypes import ProviderBatchRequest
from market_movers.pipeline.batch import ChunkedBatchFetcher, gather


def _symbols(n):
    return [f"S{i:03d}" for i in range(n)]


def test_batch_request_chunks_respect_ceiling():
    sizes = [len(c) for c in ProviderBatchRequest(tuple(_symbols(85)), 40).chunks()]
    assert sizes == [40, 40, 5]


def test_batch_request_rejects_non_positive_size():
    with pytest.raises(ValueError):
        ProviderBatchRequest(tuple(_symbols(3)), 0)


def test_batch_request_chunk_count():
    assert ProviderBatchRequest(tuple(_symbols(100)), 100).chunk_count == 1
    assert ProviderBatchRequest(tuple(_symbols(101)), 100).chunk_count == 2
    assert ProviderBatchRequest((), 10).chunk_count == 0


def test_gather_settles_every_task_in_submission_order():
    def boom():
        raise RuntimeError("boom")

    outcomes = gather([("a", lambda: 1), ("b", boom), ("c", lambda: 3)], max_workers=3)

    assert [o.name for o in outcomes] == ["a", "b", "c"]
    assert outcomes[0].ok and outcomes[0].value == 1
    assert not outcomes[1].ok and "boom" in outcomes[1].error
    assert outcomes[2].ok and outcomes[2].value == 3


def test_gather_empty():
    assert gather([]) == []


def test_fetch_all_makes_one_call_per_chunk_and_keeps_order():
    calls = []
    lock = threading.Lock()

    def fetch_chunk(chunk):
        with lock:
            calls.append(list(chunk))
        return chunk

    symbols = _symbols(85)
    merged = ChunkedBatchFetcher(chunk_size=40, max_workers=4).fetch_all(symbols, fetch_chunk)

    assert len(calls) == 3
    assert merged == symbols


def test_fetch_all_keeps_going_after_a_failed_chunk():
    def fetch_chunk(chunk):
        if "S000" in chunk:
            raise ConnectionError("provider down")
        return chunk

    merged = ChunkedBatchFetcher(chunk_size=10).fetch_all(_symbols(25), fetch_chunk)

    assert merged == _symbols(25)[10:]


def test_fetch_all_empty_input_makes_no_calls():
    calls = []
    assert ChunkedBatchFetcher(chunk_size=10).fetch_all([], lambda c: calls.append(c) or c) == []
    assert calls == []


def test_fetcher_rejects_zero_chunk_size():
    with pytest.raises(ValueError):
        ChunkedBatchFetcher(chunk_size=0)
