"""A closable stream of candidate batches passed between threads."""

from __future__ import annotations

import threading
from collections import deque
from typing import Iterator, Optional

from .core import Cancelled

_POLL = 0.01


def _check(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled()


class CandidateStream:
    """Batches of candidates from one producer to one consumer.

    With a buffer size of zero a send waits until the batch is received.
    """

    def __init__(self, buffer_size: int = 0) -> None:
        if buffer_size < 0:
            raise ValueError("buffer size must not be negative")
        self._capacity = buffer_size
        self._batches: deque = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._sent = 0
        self._received = 0

    def send_next(self, candidates, cancel: Optional[threading.Event] = None) -> None:
        """Send one batch, raising Cancelled if ``cancel`` fires first."""
        batch = list(candidates)
        limit = max(self._capacity, 1)
        with self._cond:
            while True:
                if self._closed:
                    raise RuntimeError("send on closed candidate stream")
                _check(cancel)
                if len(self._batches) < limit:
                    break
                self._cond.wait(_POLL)
            self._batches.append(batch)
            self._sent += 1
            ticket = self._sent
            self._cond.notify_all()
            if self._capacity:
                return
            while self._received < ticket:
                if cancel is not None and cancel.is_set():
                    self._batches.pop()
                    self._sent -= 1
                    raise Cancelled()
                self._cond.wait(_POLL)

    def close(self) -> None:
        """Mark the end of the stream; batches already sent stay readable."""
        with self._cond:
            if self._closed:
                raise RuntimeError("candidate stream already closed")
            self._closed = True
            self._cond.notify_all()

    def next(self, cancel: Optional[threading.Event] = None):
        """Return the next batch, or None once the stream is closed and drained."""
        with self._cond:
            while not self._batches:
                if self._closed:
                    return None
                _check(cancel)
                self._cond.wait(_POLL)
            batch = self._batches.popleft()
            self._received += 1
            self._cond.notify_all()
            return batch

    def __iter__(self) -> Iterator[list]:
        while (batch := self.next()) is not None:
            yield batch