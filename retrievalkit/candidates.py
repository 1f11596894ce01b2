"""Retrieval candidates and splitting them by transport protocol."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable


class Protocol(enum.IntEnum):
    """Transport protocols, by multicodec code."""

    BITSWAP = 0x0900
    GRAPHSYNC_FILECOINV1 = 0x0910


@dataclass(frozen=True)
class RetrievalCandidate:
    """A peer believed to hold a root CID, with the protocols it serves."""

    peer: str
    root_cid: str = ""
    protocols: tuple = ()
    addrs: tuple = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocols", tuple(self.protocols))
        object.__setattr__(self, "addrs", tuple(self.addrs))


class ProtocolSplitter:
    """Splits candidate sets into one list per supported protocol."""

    def __init__(self, protocols: Iterable[Protocol]) -> None:
        self.protocols = list(protocols)

    def split_retrieval_request(self, cancel, request, events) -> "ProtocolSplitter":
        """Return a splitter for one request, with its own copy of the protocol list."""
        return ProtocolSplitter(self.protocols)

    def split_candidates(self, candidates) -> dict:
        """Map each protocol to the candidates that support it, keeping order."""
        split: dict = {}
        for candidate in candidates:
            supported = set(candidate.protocols)
            for protocol in self.protocols:
                if protocol in supported:
                    split.setdefault(protocol, []).append(candidate)
        return split