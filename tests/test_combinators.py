import queue
import threading

import pytest

from retrievalkit.candidates import Protocol, ProtocolSplitter, RetrievalCandidate
from retrievalkit.combinators import (
    AsyncCandidateSplitter,
    AsyncRetrievalSplitter,
    RetrieverWithCandidateFinder,
    SplitRetrieval,
    SplitRetriever,
)
from retrievalkit.coordinators import CoordinationKind
from retrievalkit.core import (
    Cancelled,
    CombinedError,
    NoCandidates,
    RetrievalError,
    RetrievalFailed,
    RetrievalRequest,
    RetrievalStats,
)
from retrievalkit.streams import CandidateStream

REQUEST = RetrievalRequest(retrieval_id="rid", cid="bafkqaalb")


def _candidates(count, prefix):
    return [RetrievalCandidate(peer=f"peer-{prefix}-{i}", root_cid="bafkqaalb") for i in range(count)]


CANDIDATE_SETS = [_candidates((i + 1) * 2, i) for i in range(3)]


def _no_events(event):
    return None


@pytest.fixture
def cancel():
    event = threading.Event()
    timer = threading.Timer(3.0, event.set)
    timer.daemon = True
    timer.start()
    yield event
    timer.cancel()
    event.set()


class _MockSplitter:
    def __init__(self, split_func):
        self.split_func = split_func

    def split_retrieval_request(self, cancel, request, events):
        return self

    def split_candidates(self, candidates):
        return self.split_func(candidates)


def _even_odd(candidates):
    split = {}
    for position, candidate in enumerate(candidates):
        key = "even" if position % 2 == 0 else "odd"
        split.setdefault(key, []).append(candidate)
    return split


class _StatefulSplit:
    def __init__(self, split_point):
        self.split_point = split_point
        self.received = 0

    def split(self, candidates):
        split = {}
        for candidate in candidates:
            key = "batch2" if self.received >= self.split_point else "batch1"
            self.received += 1
            split.setdefault(key, []).append(candidate)
        return split


def _produce(cancel, batches):
    incoming = CandidateStream(0)

    def run():
        try:
            for batch in batches:
                incoming.send_next(batch, cancel)
            incoming.close()
        except Cancelled:
            pass

    threading.Thread(target=run, daemon=True).start()
    return incoming


def _drain(stream, cancel):
    batches = []
    while (batch := stream.next(cancel)) is not None:
        batches.append(batch)
    return batches


def _split(cancel, keys, split_func):
    incoming = _produce(cancel, CANDIDATE_SETS)
    splitter = AsyncCandidateSplitter(keys, lambda _keys: _MockSplitter(split_func))
    retrieval_splitter = splitter.split_retrieval_request(cancel, REQUEST, _no_events)
    assert isinstance(retrieval_splitter, AsyncRetrievalSplitter)
    return retrieval_splitter.split_async_candidates(incoming)


def test_simple_even_split(cancel):
    streams, errors = _split(cancel, ["even", "odd"], _even_odd)
    assert sorted(streams) == ["even", "odd"]
    sets = CANDIDATE_SETS
    assert _drain(streams["even"], cancel) == [
        [sets[0][0]],
        [sets[1][0], sets[1][2]],
        [sets[2][0], sets[2][2], sets[2][4]],
    ]
    assert _drain(streams["odd"], cancel) == [
        [sets[0][1]],
        [sets[1][1], sets[1][3]],
        [sets[2][1], sets[2][3], sets[2][5]],
    ]
    assert errors.get(timeout=3) is None


def test_stateful_split(cancel):
    streams, errors = _split(cancel, ["batch1", "batch2"], _StatefulSplit(4).split)
    assert len(streams) == 2
    sets = CANDIDATE_SETS
    assert _drain(streams["batch1"], cancel) == [
        [sets[0][0], sets[0][1]],
        [sets[1][0], sets[1][1]],
    ]
    assert _drain(streams["batch2"], cancel) == [
        [sets[1][2], sets[1][3]],
        list(sets[2]),
    ]
    assert errors.get(timeout=3) is None


def test_split_error_is_reported_and_streams_close(cancel):
    def failing(candidates):
        raise ValueError("bad split")

    streams, errors = _split(cancel, ["a", "b"], failing)
    error = errors.get(timeout=3)
    assert isinstance(error, ValueError)
    assert str(error) == "bad split"
    assert _drain(streams["a"], cancel) == []
    assert _drain(streams["b"], cancel) == []


class _Retrieval:
    def __init__(self, owner, cancel):
        self.owner = owner
        self.cancel = cancel

    def retrieve_from_async_candidates(self, stream):
        while (batch := stream.next(self.cancel)) is not None:
            self.owner.batches.append(batch)
        if self.owner.wait_for_cancel:
            self.cancel.wait(3)
            raise Cancelled()
        if self.owner.error is not None:
            raise self.owner.error
        return self.owner.stats


class _Retriever:
    def __init__(self, stats=None, error=None, wait_for_cancel=False):
        self.stats = stats
        self.error = error
        self.wait_for_cancel = wait_for_cancel
        self.batches = []

    def retrieve(self, cancel, request, events):
        return _Retrieval(self, cancel)


class _Finder:
    def __init__(self, batches, error=None):
        self.batches = batches
        self.error = error

    def find_candidates(self, cancel, request, events, on_candidates):
        for batch in self.batches:
            on_candidates(batch)
        if self.error is not None:
            raise self.error


def test_retriever_with_candidate_finder_streams_candidates(cancel):
    a, b = _candidates(2, "f")
    retriever = _Retriever(stats=RetrievalStats(storage_provider_id="winner", size=5))
    combined = RetrieverWithCandidateFinder(_Finder([[a], [b]]), retriever)
    stats = combined.retrieve(cancel, REQUEST, _no_events)
    assert stats == RetrievalStats(storage_provider_id="winner", size=5)
    assert retriever.batches == [[a], [b]]


def test_retriever_with_candidate_finder_raises_finder_error(cancel):
    retriever = _Retriever(wait_for_cancel=True)
    combined = RetrieverWithCandidateFinder(_Finder([], error=NoCandidates()), retriever)
    with pytest.raises(NoCandidates, match="no candidates"):
        combined.retrieve(cancel, REQUEST, _no_events)


def test_retriever_with_candidate_finder_raises_retrieval_error(cancel):
    retriever = _Retriever(error=RetrievalFailed("retrieval failed: bork!"))
    combined = RetrieverWithCandidateFinder(_Finder([_candidates(1, "x")]), retriever)
    with pytest.raises(RetrievalFailed, match="bork"):
        combined.retrieve(cancel, REQUEST, _no_events)


def test_retriever_with_candidate_finder_cancelled():
    cancel = threading.Event()
    cancel.set()
    retriever = _Retriever(wait_for_cancel=True)
    combined = RetrieverWithCandidateFinder(_Finder([]), retriever)
    with pytest.raises(Cancelled):
        combined.retrieve(cancel, REQUEST, _no_events)


def _protocol_candidates():
    both = RetrievalCandidate(
        peer="both", root_cid="bafkqaalb",
        protocols=(Protocol.GRAPHSYNC_FILECOINV1, Protocol.BITSWAP),
    )
    graphsync_only = RetrievalCandidate(
        peer="gs", root_cid="bafkqaalb", protocols=(Protocol.GRAPHSYNC_FILECOINV1,)
    )
    return both, graphsync_only


def _filled_stream(*batches):
    stream = CandidateStream(len(batches) or 1)
    for batch in batches:
        stream.send_next(batch)
    stream.close()
    return stream


def _split_retriever(protocols, retrievers, kind):
    return SplitRetriever(
        async_candidate_splitter=AsyncCandidateSplitter(protocols, ProtocolSplitter),
        candidate_retrievers=retrievers,
        coordination_kind=kind,
    )


def test_split_retriever_race_returns_success(cancel):
    both, graphsync_only = _protocol_candidates()
    graphsync = _Retriever(stats=RetrievalStats(storage_provider_id="gs"))
    bitswap = _Retriever(error=RetrievalFailed("nope"))
    protocols = [Protocol.GRAPHSYNC_FILECOINV1, Protocol.BITSWAP]
    retriever = _split_retriever(
        protocols,
        {Protocol.GRAPHSYNC_FILECOINV1: graphsync, Protocol.BITSWAP: bitswap},
        CoordinationKind.RACE,
    )
    retrieval = retriever.retrieve(cancel, REQUEST, _no_events)
    assert isinstance(retrieval, SplitRetrieval)
    stats = retrieval.retrieve_from_async_candidates(_filled_stream([both, graphsync_only]))
    assert stats == RetrievalStats(storage_provider_id="gs")
    assert graphsync.batches == [[both, graphsync_only]]


def test_split_retriever_sequence_error_then_success(cancel):
    both, graphsync_only = _protocol_candidates()
    graphsync = _Retriever(stats=RetrievalStats(storage_provider_id="gs"))
    bitswap = _Retriever(error=RetrievalFailed("nope"))
    protocols = [Protocol.BITSWAP, Protocol.GRAPHSYNC_FILECOINV1]
    retriever = _split_retriever(
        protocols,
        {Protocol.GRAPHSYNC_FILECOINV1: graphsync, Protocol.BITSWAP: bitswap},
        CoordinationKind.SEQUENTIAL,
    )
    stats = retriever.retrieve(cancel, REQUEST, _no_events).retrieve_from_async_candidates(
        _filled_stream([both, graphsync_only])
    )
    assert stats == RetrievalStats(storage_provider_id="gs")
    assert bitswap.batches == [[both]]
    assert graphsync.batches == [[both, graphsync_only]]


def test_split_retriever_all_fail_combines_errors(cancel):
    both, _ = _protocol_candidates()
    protocols = [Protocol.BITSWAP, Protocol.GRAPHSYNC_FILECOINV1]
    retriever = _split_retriever(
        protocols,
        {
            Protocol.BITSWAP: _Retriever(error=RetrievalFailed("first")),
            Protocol.GRAPHSYNC_FILECOINV1: _Retriever(error=RetrievalFailed("second")),
        },
        CoordinationKind.SEQUENTIAL,
    )
    with pytest.raises(CombinedError) as caught:
        retriever.retrieve(cancel, REQUEST, _no_events).retrieve_from_async_candidates(
            _filled_stream([both])
        )
    assert [str(error) for error in caught.value.errors] == ["first", "second"]


def test_split_retriever_without_retrievers(cancel):
    both, _ = _protocol_candidates()
    retriever = _split_retriever([Protocol.GRAPHSYNC_FILECOINV1], {}, CoordinationKind.RACE)
    with pytest.raises(RetrievalError, match="no eligible retrievers"):
        retriever.retrieve(cancel, REQUEST, _no_events).retrieve_from_async_candidates(
            _filled_stream([both])
        )


def test_split_retriever_unknown_coordination(cancel):
    both, _ = _protocol_candidates()
    retriever = _split_retriever([Protocol.GRAPHSYNC_FILECOINV1], {}, "bogus")
    with pytest.raises(ValueError, match="unrecognized retriever kind"):
        retriever.retrieve(cancel, REQUEST, _no_events).retrieve_from_async_candidates(
            _filled_stream([both])
        )


def test_split_error_surfaces_through_split_retriever(cancel):
    def failing(candidates):
        raise ValueError("split broke")

    splitter = AsyncCandidateSplitter(["k"], lambda _keys: _MockSplitter(failing))
    retriever = SplitRetriever(splitter, {"k": _Retriever()}, CoordinationKind.RACE)
    with pytest.raises(ValueError, match="split broke"):
        retriever.retrieve(cancel, REQUEST, _no_events).retrieve_from_async_candidates(
            _filled_stream(_candidates(1, "s"))
        )
    assert isinstance(queue.Queue(), queue.Queue)