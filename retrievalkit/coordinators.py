"""Coordinators that run several retrieval tasks and pick one result."""

from __future__ import annotations

import enum
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .core import Cancelled, combine_errors

_POLL = 0.01
_DONE = object()


class CoordinationKind(enum.Enum):
    RACE = "race"
    SEQUENTIAL = "sequential"


@dataclass
class AsyncRetrievalTask:
    """A candidate retrieval paired with the stream of candidates it reads."""

    candidates: Any
    retrieval: Any

    def run(self):
        return self.retrieval.retrieve_from_async_candidates(self.candidates)


@dataclass
class DeferredErrorTask:
    """Waits for a single error (or None) from a queue and reports it."""

    cancel: threading.Event
    errors: "queue.Queue"

    def run(self):
        while True:
            if self.cancel.is_set():
                raise Cancelled()
            try:
                error = self.errors.get(timeout=_POLL)
            except queue.Empty:
                continue
            if error is not None:
                raise error
            return None


def race(cancel: threading.Event, queue_operations: Callable):
    """Run all queued tasks at once and return the first stats to arrive.

    Errors are combined and raised if every task finishes without stats.
    """
    child = threading.Event()
    results: "queue.Queue" = queue.Queue()
    lock = threading.Lock()
    outstanding = 1

    def finish() -> None:
        nonlocal outstanding
        with lock:
            outstanding -= 1
            last = outstanding == 0
        if last:
            results.put(_DONE)

    def call(task) -> None:
        nonlocal outstanding
        with lock:
            outstanding += 1

        def work() -> None:
            try:
                item = (task.run(), None)
            except Exception as error:  # noqa: BLE001 - reported to the caller
                item = (None, error)
            if not child.is_set():
                results.put(item)
            finish()

        threading.Thread(target=work, daemon=True).start()

    def queue_all() -> None:
        try:
            queue_operations(child, call)
        finally:
            finish()

    threading.Thread(target=queue_all, daemon=True).start()

    total_error: Optional[BaseException] = None
    try:
        while True:
            if cancel.is_set():
                raise Cancelled()
            try:
                item = results.get(timeout=_POLL)
            except queue.Empty:
                continue
            if item is _DONE:
                if total_error is not None:
                    raise total_error
                return None
            stats, error = item
            if error is not None:
                total_error = combine_errors(total_error, error)
            if stats is not None:
                return stats
    finally:
        child.set()


def sequence(cancel: threading.Event, queue_operations: Callable):
    """Run queued tasks one at a time until one returns stats."""
    child = threading.Event()
    total_error: Optional[BaseException] = None
    final = None

    def call(task) -> None:
        nonlocal total_error, final
        if final is not None:
            return
        if cancel.is_set():
            child.set()
        try:
            stats = task.run()
        except Exception as error:  # noqa: BLE001 - reported to the caller
            total_error = combine_errors(total_error, error)
            return
        if stats is not None:
            final = stats
            child.set()

    try:
        queue_operations(child, call)
    finally:
        child.set()
    if final is None:
        if total_error is not None:
            raise total_error
        return None
    return final


def coordinator(kind: CoordinationKind) -> Callable:
    """Return the coordinating function for ``kind``."""
    if kind is CoordinationKind.RACE:
        return race
    if kind is CoordinationKind.SEQUENTIAL:
        return sequence
    raise ValueError("unrecognized retriever kind")