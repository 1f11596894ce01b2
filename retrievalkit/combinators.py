"""Combinators that put candidate finders, splitters and retrievers together."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from .coordinators import (
    AsyncRetrievalTask,
    CoordinationKind,
    DeferredErrorTask,
    coordinator,
)
from .core import Cancelled, RetrievalError
from .streams import CandidateStream

SPLIT_BUFFER_SIZE = 16
_POLL = 0.01


class AsyncCandidateSplitter:
    """Splits a candidate stream into one stream per key.

    Each batch read from the incoming stream is split by a plain candidate
    splitter, and every part is forwarded to the stream for its key.
    """

    def __init__(self, keys: Iterable, new_candidate_splitter: Callable) -> None:
        self.keys = list(keys)
        self.candidate_splitter = new_candidate_splitter(self.keys)

    def split_retrieval_request(self, cancel: threading.Event, request, events):
        """Return the splitter for one retrieval request."""
        retrieval_splitter = self.candidate_splitter.split_retrieval_request(
            cancel, request, events
        )
        return AsyncRetrievalSplitter(self.keys, cancel, retrieval_splitter)


class AsyncRetrievalSplitter:
    """Splits candidate streams for a single retrieval request."""

    def __init__(self, keys: Iterable, cancel: threading.Event, retrieval_splitter) -> None:
        self.keys = list(keys)
        self.cancel = cancel
        self.retrieval_splitter = retrieval_splitter

    def split_async_candidates(self, candidates: CandidateStream):
        """Start splitting ``candidates`` in the background.

        Returns a dict of one stream per key, and a queue that receives a
        single item when splitting ends: None, or the error that stopped it.
        """
        streams = {key: CandidateStream(SPLIT_BUFFER_SIZE) for key in self.keys}
        errors: "queue.Queue" = queue.Queue(maxsize=1)

        def pump() -> None:
            try:
                errors.put(self._forward(candidates, streams))
            finally:
                for stream in streams.values():
                    stream.close()

        threading.Thread(target=pump, daemon=True).start()
        return dict(streams), errors

    def _forward(self, candidates: CandidateStream, streams: dict) -> Optional[BaseException]:
        try:
            while True:
                batch = candidates.next(self.cancel)
                if batch is None:
                    return None
                split = self.retrieval_splitter.split_candidates(batch)
                for key, subset in split.items():
                    stream = streams.get(key)
                    if stream is not None:
                        stream.send_next(subset, self.cancel)
        except Exception as error:  # noqa: BLE001 - reported through the queue
            return error


@dataclass
class RetrieverWithCandidateFinder:
    """Finds candidates first, streaming them into a candidate retriever."""

    candidate_finder: Any
    candidate_retriever: Any

    def retrieve(self, cancel: threading.Event, request, events):
        """Run the finder and the retrieval together and return the stats."""
        child = threading.Event()
        outcomes: "queue.Queue" = queue.Queue()
        try:
            retrieval = self.candidate_retriever.retrieve(child, request, events)
            stream = CandidateStream(0)

            def on_candidates(batch) -> None:
                try:
                    stream.send_next(batch, child)
                except Cancelled:
                    pass

            def find() -> None:
                error = None
                try:
                    self.candidate_finder.find_candidates(child, request, events, on_candidates)
                except Exception as exc:  # noqa: BLE001 - reported to the caller
                    error = exc
                outcomes.put(("found", None, error))
                stream.close()

            def fetch() -> None:
                stats, error = None, None
                try:
                    stats = retrieval.retrieve_from_async_candidates(stream)
                except Exception as exc:  # noqa: BLE001 - reported to the caller
                    error = exc
                outcomes.put(("retrieved", stats, error))

            threading.Thread(target=find, daemon=True).start()
            threading.Thread(target=fetch, daemon=True).start()

            while True:
                if cancel.is_set():
                    raise Cancelled()
                try:
                    kind, stats, error = outcomes.get(timeout=_POLL)
                except queue.Empty:
                    continue
                if kind == "found":
                    if error is not None:
                        raise error
                    continue
                if stats is not None:
                    return stats
                if error is not None:
                    raise error
                return None
        finally:
            child.set()


@dataclass
class SplitRetriever:
    """Splits candidates by key and hands each part to that key's retriever."""

    async_candidate_splitter: Any
    candidate_retrievers: Mapping = field(default_factory=dict)
    coordination_kind: CoordinationKind = CoordinationKind.RACE

    def retrieve(self, cancel: threading.Event, request, events) -> "SplitRetrieval":
        return SplitRetrieval(
            retrieval_splitter=self.async_candidate_splitter.split_retrieval_request(
                cancel, request, events
            ),
            candidate_retrievers=dict(self.candidate_retrievers),
            coordination_kind=self.coordination_kind,
            cancel=cancel,
            request=request,
            events=events,
        )


@dataclass
class SplitRetrieval:
    """One request's split retrieval, coordinated across child retrievers."""

    retrieval_splitter: Any
    candidate_retrievers: Mapping
    coordination_kind: Any
    cancel: threading.Event
    request: Any
    events: Callable

    def retrieve_from_async_candidates(self, candidates: CandidateStream):
        streams, errors = self.retrieval_splitter.split_async_candidates(candidates)
        coordinate = coordinator(self.coordination_kind)

        def queue_operations(child: threading.Event, call: Callable) -> None:
            retrievals = {
                key: retriever.retrieve(child, self.request, self.events)
                for key, retriever in self.candidate_retrievers.items()
            }
            for key, stream in streams.items():
                retrieval = retrievals.get(key)
                if retrieval is not None:
                    call(AsyncRetrievalTask(candidates=stream, retrieval=retrieval))
            call(DeferredErrorTask(cancel=child, errors=errors))

        stats = coordinate(self.cancel, queue_operations)
        if stats is None:
            raise RetrievalError("no eligible retrievers")
        return stats