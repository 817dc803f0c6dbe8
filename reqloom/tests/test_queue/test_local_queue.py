"""Tests for the in-process delivery queue (real thread, short backoff)."""

import threading
import time

import pytest

from reqloom.core.exceptions import QueueError
from reqloom.core.queue import JobMessage, LocalDeliveryQueue


def _message(aid="a1"):
    return JobMessage(aid, "u1", "Build a login page")


@pytest.fixture
def make_queue():
    queues = []

    def _make(handler, **kwargs):
        kwargs.setdefault("backoff_base_seconds", 0.01)
        q = LocalDeliveryQueue(handler, **kwargs)
        q.start()
        queues.append(q)
        return q

    yield _make
    for q in queues:
        q.stop()


class TestLocalDeliveryQueue:

    def test_delivers_message(self, make_queue):
        received = []
        done = threading.Event()

        def handler(message):
            received.append(message)
            done.set()

        q = make_queue(handler)
        delivery_id = q.publish(_message())

        assert delivery_id
        assert done.wait(5.0)
        assert received[0].analysis_id == "a1"
        assert received[0].text == "Build a login page"

    def test_redelivers_until_success(self, make_queue):
        attempts = []
        done = threading.Event()

        def handler(message):
            attempts.append(message.analysis_id)
            if len(attempts) < 3:
                raise RuntimeError("transient")
            done.set()

        q = make_queue(handler, max_attempts=3)
        q.publish(_message())

        assert done.wait(5.0)
        assert len(attempts) == 3

    def test_dead_letters_after_max_attempts(self, make_queue):
        attempts = []
        lock = threading.Lock()

        def handler(message):
            with lock:
                attempts.append(1)
            raise RuntimeError("always")

        q = make_queue(handler, max_attempts=2)
        q.publish(_message())

        for _ in range(500):
            if q.dead_lettered:
                break
            time.sleep(0.01)
        assert q.dead_lettered == 1
        assert len(attempts) == 2
        assert q.delivered == 0

    def test_publish_requires_running_queue(self):
        q = LocalDeliveryQueue(lambda m: None)
        with pytest.raises(QueueError):
            q.publish(_message())
