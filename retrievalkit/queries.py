"""Query responses, their ranking, deal proposals and the retrieval client interface."""

from __future__ import annotations

import enum
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from .selectors import EXPLORE_ALL_RECURSIVELY


class QueryResponseStatus(enum.IntEnum):
    AVAILABLE = 0
    UNAVAILABLE = 1
    ERROR = 2


@dataclass(frozen=True)
class QueryResponse:
    """A storage provider's answer to a retrieval query."""

    status: QueryResponseStatus = QueryResponseStatus.AVAILABLE
    piece_cid_found: int = 0
    size: int = 0
    payment_address: str = ""
    min_price_per_byte: int = 0
    max_payment_interval: int = 0
    max_payment_interval_increase: int = 0
    message: str = ""
    unseal_price: int = 0


@dataclass(frozen=True)
class QueryCandidate:
    """A query response together with how long the query took."""

    response: QueryResponse
    duration: float = 0.0


def total_cost(response: QueryResponse) -> int:
    """Price per byte times size, plus the unseal price."""
    return response.min_price_per_byte * response.size + response.unseal_price


def is_free(response: QueryResponse) -> bool:
    """True when retrieving would cost nothing."""
    return total_cost(response) == 0


def query_compare(a: QueryCandidate, b: QueryCandidate) -> bool:
    """True when ``a`` is preferable to ``b``.

    Unsealed beats sealed, then lower total cost, then smaller size, then
    the faster query.
    """
    if a.response.unseal_price == 0 and b.response.unseal_price != 0:
        return True
    a_cost = total_cost(a.response)
    b_cost = total_cost(b.response)
    if a_cost != b_cost:
        return a_cost < b_cost
    if a.response.size != b.response.size:
        return a.response.size < b.response.size
    return a.duration < b.duration


@dataclass(frozen=True)
class DealProposal:
    """The terms proposed to a storage provider for a retrieval."""

    payload_cid: str
    id: int
    selector: Any
    price_per_byte: int = 0
    payment_interval: int = 0
    payment_interval_increase: int = 0
    unseal_price: int = 0
    piece_cid: Optional[str] = None


class _TimeCounter:
    """Increasing deal ids seeded from the current time."""

    def __init__(self) -> None:
        self._counter = itertools.count(time.time_ns() + 1)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


_deal_ids = _TimeCounter()


def retrieval_proposal_for_ask(ask: QueryResponse, root_cid: str, selector: Any = None) -> DealProposal:
    """Build a deal proposal that accepts the terms of ``ask``.

    Without a selector the whole DAG is explored.
    """
    if selector is None:
        selector = EXPLORE_ALL_RECURSIVELY
    return DealProposal(
        payload_cid=root_cid,
        id=_deal_ids.next(),
        selector=selector,
        price_per_byte=ask.min_price_per_byte,
        payment_interval=ask.max_payment_interval,
        payment_interval_increase=ask.max_payment_interval_increase,
        unseal_price=ask.unseal_price,
        piece_cid=None,
    )


class RetrievalClient(Protocol):
    """The network operations a graphsync retrieval depends on."""

    def retrieval_query_to_peer(
        self,
        cancel: threading.Event,
        peer: Any,
        root_cid: str,
        on_connected: Callable[[], None],
    ) -> QueryResponse:
        """Ask ``peer`` for terms on ``root_cid``; raise on failure."""

    def retrieve_from_peer(
        self,
        cancel: threading.Event,
        link_system: Any,
        peer: str,
        miner_wallet: str,
        proposal: DealProposal,
        selector: Any,
        events_callback: Callable,
        graceful_shutdown: threading.Event,
    ):
        """Run the retrieval and return its stats; raise on failure."""