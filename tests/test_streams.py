import threading

import pytest

from retrievalkit.core import Cancelled
from retrievalkit.streams import CandidateStream


def test_buffered_round_trip():
    stream = CandidateStream(4)
    stream.send_next(["a"])
    stream.send_next(["b", "c"])
    stream.close()
    assert stream.next() == ["a"]
    assert stream.next() == ["b", "c"]
    assert stream.next() is None


def test_iteration_yields_all_batches():
    stream = CandidateStream(3)
    batches = [["x"], ["y"], ["z"]]
    for batch in batches:
        stream.send_next(batch)
    stream.close()
    assert list(stream) == batches


def test_unbuffered_between_threads():
    stream = CandidateStream(0)
    batches = [[i] for i in range(5)]

    def produce():
        for batch in batches:
            stream.send_next(batch)
        stream.close()

    producer = threading.Thread(target=produce)
    producer.start()
    received = list(stream)
    producer.join(2)
    assert received == batches


def test_next_cancelled_on_empty_stream():
    stream = CandidateStream(1)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(Cancelled):
        stream.next(cancel)


def test_send_cancelled_when_full():
    stream = CandidateStream(1)
    stream.send_next(["a"])
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()
    with pytest.raises(Cancelled):
        stream.send_next(["b"], cancel)
    stream.close()
    assert list(stream) == [["a"]]


def test_unbuffered_send_cancelled_leaves_nothing():
    stream = CandidateStream(0)
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()
    with pytest.raises(Cancelled):
        stream.send_next(["a"], cancel)
    stream.close()
    assert stream.next() is None


def test_send_after_close_raises():
    stream = CandidateStream(1)
    stream.close()
    with pytest.raises(RuntimeError):
        stream.send_next(["a"])


def test_double_close_raises():
    stream = CandidateStream(1)
    stream.close()
    with pytest.raises(RuntimeError):
        stream.close()


def test_negative_buffer_rejected():
    with pytest.raises(ValueError):
        CandidateStream(-1)