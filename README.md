# retrievalkit

Building blocks for retrieving content-addressed data from a set of
storage providers. Retrievals run on threads. Cancellation is cooperative
and uses a `threading.Event`.

## Modules

- `retrievalkit.core` holds the shared types:
  - the `RetrievalError` hierarchy: `Cancelled`, `RetrieverNotStarted`, `NoCandidates`, `QueryFailed`, `AllQueriesFailed`, `RetrievalFailed`, `AllRetrievalsFailed`, `RetrievalTimedOut`, `RetrievalAlreadyRunning` and `ProposalCreationFailed`.
  - `CombinedError` and `combine_errors(first, second)`, which collect several errors in order.
  - `Phase`, `EventCode` and `RetrievalEvent`.
  - `RetrievalRequest` and `RetrievalStats`.
  - `MinerConfig` and `RetrieverConfig`. `RetrieverConfig.miner_config(peer)` returns the default config with any non-zero per-peer overrides applied.
- `retrievalkit.candidates` defines `Protocol` (Bitswap and Graphsync/FilecoinV1 multicodec codes), `RetrievalCandidate` and `ProtocolSplitter`. `ProtocolSplitter.split_candidates` maps each protocol to the candidates that support it and keeps their order.
- `retrievalkit.streams` provides `CandidateStream`, a closable stream of candidate batches between threads:
  - `send_next(batch, cancel)` sends one batch. With a buffer size of 0 it waits until the batch is received.
  - `next(cancel)` returns the next batch, or `None` once the stream is closed and drained.
  - `close()` marks the end of the stream.
  - Iterating the stream yields its batches.
  - Sending on a closed stream raises `RuntimeError`, and so does closing a stream twice. A cancelled wait raises `Cancelled`.
- `retrievalkit.coordinators` runs retrieval tasks:
  - `race` runs every queued task at once and returns the first stats that arrive. If no task succeeds it raises the combined errors.
  - `sequence` runs the tasks one at a time and stops at the first success.
  - `coordinator(kind)` returns one of the two for a `CoordinationKind`. An unknown kind raises `ValueError`.
  - Tasks are `AsyncRetrievalTask` or `DeferredErrorTask`, or any object with a `run()` method.
- `retrievalkit.combinators` joins these pieces together:
  - `AsyncCandidateSplitter` / `AsyncRetrievalSplitter` split one candidate stream into one stream per key. They use buffers of `SPLIT_BUFFER_SIZE` batches, and a queue that reports the end of splitting.
  - `SplitRetriever` / `SplitRetrieval` hand each part to the retriever for its key under the chosen coordination. They raise `RetrievalError("no eligible retrievers")` when nothing produced stats.
  - `RetrieverWithCandidateFinder` streams the candidates found by a finder into a candidate retriever. The finder's `find_candidates(cancel, request, events, on_candidates)` is called with the callback.
- `retrievalkit.queries` covers the query phase:
  - `QueryResponse` and `QueryResponseStatus`.
  - `total_cost` and `is_free`.
  - `QueryCandidate` and `query_compare`. The ranking prefers unsealed offers, then lower cost, then smaller size, then the faster query.
  - `DealProposal` and `retrieval_proposal_for_ask`, which builds a proposal. Without a selector the proposal explores the whole DAG.
  - The `RetrievalClient` protocol that a network client implements.
- `retrievalkit.selectors` handles selector nodes:
  - `unixfs_path_to_selector(path, full)` builds a selector node for a UnixFS path.
  - `encode_dag_json(node)` renders a node as compact DAG-JSON with canonical key order.
  - The constants `EXPLORE_ALL_RECURSIVELY` and `MATCH_POINT` are ready-made selectors.

## Installing

```
pip install .
```

## Selectors

```python
from retrievalkit.selectors import unixfs_path_to_selector, encode_dag_json

node = unixfs_path_to_selector("/foo", full=False)
print(encode_dag_json(node))
# {"~":{">":{"f":{"f>":{"foo":{"~":{">":{".":{}},"as":"unixfs-preload"}}}}},"as":"unixfs"}}
```

A path must be empty or start with `/`; otherwise `ValueError` is raised.
`.` and `..` segments are rejected, as are empty segments in the middle of a path.

## Splitting candidates by protocol

```python
from retrievalkit.candidates import Protocol, ProtocolSplitter, RetrievalCandidate

splitter = ProtocolSplitter([Protocol.GRAPHSYNC_FILECOINV1, Protocol.BITSWAP])
split = splitter.split_candidates([
    RetrievalCandidate("peer-a", "bafkqaalb", protocols=[Protocol.BITSWAP]),
    RetrievalCandidate("peer-b", "bafkqaalb",
                       protocols=[Protocol.BITSWAP, Protocol.GRAPHSYNC_FILECOINV1]),
])
# {Protocol.GRAPHSYNC_FILECOINV1: [peer-b], Protocol.BITSWAP: [peer-a, peer-b]}
```

## Coordinating retrievals

```python
import threading
from retrievalkit.coordinators import CoordinationKind, coordinator
from retrievalkit.core import RetrievalStats


class Fixed:
    def __init__(self, stats):
        self.stats = stats

    def run(self):
        return self.stats


def queue_operations(cancel, call):
    call(Fixed(RetrievalStats(storage_provider_id="apples")))
    call(Fixed(RetrievalStats(storage_provider_id="oranges")))


run = coordinator(CoordinationKind.SEQUENTIAL)
stats = run(threading.Event(), queue_operations)   # the "apples" stats
```

`race` returns the stats of the first task to succeed. If every task fails,
it raises the errors in the order they arrived, as one `CombinedError` when
there were several. If the `cancel` event is set first, it raises `Cancelled`.

## What the package does not do

The package holds no network client: `RetrievalClient` is only the interface
that one must implement. The package also has no ready-made retriever that
queries providers and picks one to retrieve from. Nor does it apply block or
allow lists, track running retrievals, or dispatch events to subscribers.
`RetrieverConfig`, `RetrievalEvent` and the error classes are there for code
that builds those on top. There is no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```