"""Shared retrieval types: errors, events, requests, statistics and configuration."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from .selectors import EXPLORE_ALL_RECURSIVELY


class RetrievalError(Exception):
    """Base class for every error raised while retrieving."""

    default_message = "retrieval error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(self.default_message if message is None else message)


class Cancelled(RetrievalError):
    """The operation was cancelled before it could finish."""

    default_message = "context canceled"


class RetrieverNotStarted(RetrievalError):
    default_message = "retriever not started"


class NoCandidates(RetrievalError):
    default_message = "no candidates"


class QueryFailed(RetrievalError):
    default_message = "query failed"


class AllQueriesFailed(RetrievalError):
    default_message = "all queries failed"


class RetrievalFailed(RetrievalError):
    default_message = "retrieval failed"


class AllRetrievalsFailed(RetrievalError):
    default_message = "all retrievals failed"


class RetrievalTimedOut(RetrievalError):
    default_message = "retrieval timed out"


class RetrievalAlreadyRunning(RetrievalError):
    default_message = "retrieval already running for CID"


class ProposalCreationFailed(RetrievalError):
    default_message = "proposal creation failed"


class CombinedError(RetrievalError):
    """Several errors reported together, in the order they occurred."""

    def __init__(self, errors) -> None:
        flat: list[BaseException] = []
        for error in errors:
            if isinstance(error, CombinedError):
                flat.extend(error.errors)
            elif error is not None:
                flat.append(error)
        self.errors: tuple[BaseException, ...] = tuple(flat)
        super().__init__("; ".join(str(error) for error in self.errors))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CombinedError):
            return NotImplemented
        return [(type(e), e.args) for e in self.errors] == [
            (type(e), e.args) for e in other.errors
        ]

    __hash__ = None  # type: ignore[assignment]


def combine_errors(first: Optional[BaseException], second: Optional[BaseException]):
    """Append ``second`` to ``first``; either may be None."""
    if first is None:
        return second
    if second is None:
        return first
    return CombinedError([first, second])


class Phase(str, enum.Enum):
    INDEXER = "indexer"
    QUERY = "query"
    RETRIEVAL = "retrieval"


class EventCode(str, enum.Enum):
    STARTED = "started"
    CANDIDATES_FOUND = "candidates-found"
    CANDIDATES_FILTERED = "candidates-filtered"
    CONNECTED = "connected"
    QUERY_ASKED = "query-asked"
    QUERY_ASKED_FILTERED = "query-asked-filtered"
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    FIRST_BYTE = "first-byte-received"
    FAILED = "failure"
    SUCCESS = "success"


@dataclass(frozen=True)
class RetrievalEvent:
    """Something that happened during one phase of a retrieval."""

    code: EventCode
    retrieval_id: Any
    phase_start_time: float
    phase: Phase
    payload_cid: str = ""
    storage_provider_id: str = ""
    candidates: tuple = ()
    query_response: Any = None
    error_message: str = ""
    received_size: int = 0
    received_blocks: int = 0
    duration: float = 0.0
    total_payment: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "candidates", tuple(self.candidates))


@dataclass(frozen=True)
class RetrievalRequest:
    """What to fetch, where to store it and which part of the DAG to walk."""

    retrieval_id: Any
    cid: str
    link_system: Any = None
    selector: Any = field(default_factory=lambda: EXPLORE_ALL_RECURSIVELY)


@dataclass(frozen=True)
class RetrievalStats:
    """The outcome of a successful retrieval."""

    storage_provider_id: str = ""
    root_cid: str = ""
    size: int = 0
    blocks: int = 0
    duration: float = 0.0
    average_speed: int = 0
    total_payment: int = 0
    num_payments: int = 0
    ask_price: int = 0


@dataclass(frozen=True)
class MinerConfig:
    """Per storage provider limits; zero means unset."""

    retrieval_timeout: float = 0.0
    max_concurrent_retrievals: int = 0


@dataclass
class RetrieverConfig:
    """Retriever settings; every field is safe to leave at its default."""

    miner_blacklist: frozenset = field(default_factory=frozenset)
    miner_whitelist: frozenset = field(default_factory=frozenset)
    default_miner_config: MinerConfig = field(default_factory=MinerConfig)
    miner_configs: Mapping[str, MinerConfig] = field(default_factory=dict)
    paid_retrievals: bool = False
    disable_graphsync: bool = False

    def miner_config(self, peer: str) -> MinerConfig:
        """The default config with any non-zero per-peer overrides applied."""
        config = self.default_miner_config
        individual = self.miner_configs.get(peer)
        if individual is not None:
            if individual.max_concurrent_retrievals:
                config = replace(
                    config, max_concurrent_retrievals=individual.max_concurrent_retrievals
                )
            if individual.retrieval_timeout:
                config = replace(config, retrieval_timeout=individual.retrieval_timeout)
        return config