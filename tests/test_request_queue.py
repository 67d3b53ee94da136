"""Tests for the raid request queue."""

import threading

import pytest

from raidhost.exceptions import QueueFullError
from raidhost.games.pokemon_sv.raid_catalog import RaidDefinition
from raidhost.raids.request_queue import (
    FailureReason,
    Priority,
    RaidRequest,
    RequestQueue,
    RequestStatus,
)


def make_request(requester="alice", seed=0x1234, priority=Priority.USER, **kwargs):
    return RaidRequest(requester=requester, seed=seed, priority=priority, **kwargs)


class TestOrdering:

    def test_user_before_rotation_before_filler(self):
        queue = RequestQueue()
        filler = make_request("f", priority=Priority.FILLER)
        rotation = make_request("r", priority=Priority.ROTATION)
        user = make_request("u", priority=Priority.USER)
        for request in (filler, rotation, user):
            queue.enqueue(request)

        assert queue.dequeue_next() is user
        assert queue.dequeue_next() is rotation
        assert queue.dequeue_next() is filler
        assert queue.dequeue_next() is None

    def test_fifo_within_class(self):
        queue = RequestQueue()
        first = make_request("a")
        second = make_request("b")
        queue.enqueue(first)
        queue.enqueue(second)
        assert queue.dequeue_next() is first
        assert queue.dequeue_next() is second

    def test_dequeue_marks_in_flight(self):
        queue = RequestQueue()
        queue.enqueue(make_request())
        assert queue.dequeue_next().status == RequestStatus.IN_FLIGHT

    def test_position(self):
        queue = RequestQueue()
        a = make_request("a", priority=Priority.ROTATION)
        b = make_request("b")
        assert queue.enqueue(a) == 1
        assert queue.enqueue(b) == 1
        assert queue.position(a.request_id) == 2
        assert queue.position(12345678) is None

    def test_priorities_filter(self):
        queue = RequestQueue()
        filler = make_request("f", priority=Priority.FILLER)
        user = make_request("u", priority=Priority.USER)
        queue.enqueue(filler)
        queue.enqueue(user)

        assert queue.dequeue_next(priorities=(Priority.FILLER,)) is filler
        assert queue.dequeue_next(priorities=(Priority.ROTATION,)) is None
        assert queue.dequeue_next(priorities=(Priority.ROTATION, Priority.USER)) is user


class TestEligibility:

    def test_partition(self):
        queue = RequestQueue()
        scarlet = make_request("a", partition="scarlet")
        anyone = make_request("b")
        queue.enqueue(scarlet)
        queue.enqueue(anyone)

        assert queue.dequeue_next(partition="violet") is anyone
        assert queue.dequeue_next(partition="violet") is None
        assert queue.dequeue_next(partition="scarlet") is scarlet

    def test_skipped_requests_keep_their_place(self):
        queue = RequestQueue()
        big = make_request("a", stars=7)
        small = make_request("b", stars=3)
        queue.enqueue(big)
        queue.enqueue(small)

        assert queue.dequeue_next(accept=lambda r: r.stars <= 5) is small
        assert queue.position(big.request_id) == 1
        assert queue.dequeue_next() is big


class TestCaps:

    def test_per_user_cap(self):
        queue = RequestQueue(max_per_user=1)
        queue.enqueue(make_request("alice"))
        with pytest.raises(QueueFullError):
            queue.enqueue(make_request("alice"))
        queue.enqueue(make_request("bob"))
        assert len(queue) == 2

    def test_global_cap(self):
        queue = RequestQueue(max_total=2)
        queue.enqueue(make_request("a"))
        queue.enqueue(make_request("b"))
        with pytest.raises(QueueFullError):
            queue.enqueue(make_request("c"))

    def test_cap_frees_up_after_dequeue(self):
        queue = RequestQueue(max_per_user=1)
        queue.enqueue(make_request("alice"))
        queue.dequeue_next()
        queue.enqueue(make_request("alice"))


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        {"stars": -1},
        {"stars": 0},
        {"stars": 8},
        {"story_progress": -1},
        {"story_progress": 7},
        {"seed": 1 << 64},
        {"seed": -1},
    ])
    def test_out_of_range_rejected(self, kwargs):
        queue = RequestQueue()
        with pytest.raises(ValueError):
            queue.enqueue(make_request(**kwargs))
        assert len(queue) == 0

    def test_bounds_accepted(self):
        queue = RequestQueue()
        queue.enqueue(make_request(stars=7, story_progress=6, seed=(1 << 64) - 1))
        assert len(queue) == 1


class TestManagement:

    def test_remove(self):
        queue = RequestQueue()
        request = make_request()
        queue.enqueue(request)
        assert queue.remove(request.request_id) is True
        assert queue.remove(request.request_id) is False
        assert len(queue) == 0

    def test_pending_by_requester(self):
        queue = RequestQueue()
        queue.enqueue(make_request("alice"))
        queue.enqueue(make_request("bob"))
        queue.enqueue(make_request("alice", priority=Priority.FILLER))
        assert [r.requester for r in queue.pending("alice")] == ["alice", "alice"]
        assert len(queue.pending()) == 3


class TestOutcome:

    def test_fulfill_notifies(self):
        seen = []
        request = make_request(notifier=seen.append)
        request.fulfill("victory")
        assert seen == [request]
        assert request.status == RequestStatus.FULFILLED
        assert request.done

    def test_fail_carries_reason(self):
        seen = []
        request = make_request(notifier=seen.append)
        request.fail(FailureReason.SEED_MISMATCH, "read back garbage")
        assert seen[0].failure_reason == FailureReason.SEED_MISMATCH
        assert seen[0].failure_reason.value == "seed_mismatch"
        assert request.finished_at is not None

    def test_broken_notifier_is_contained(self, caplog):
        def explode(_):
            raise RuntimeError("chat down")

        request = make_request(notifier=explode)
        request.fail(FailureReason.CANCELLED)
        assert request.status == RequestStatus.FAILED
        assert "Notifier" in caplog.text

    def test_from_definition(self):
        definition = RaidDefinition(seed=0xAB, species="Pikachu", stars=5, story_progress=6)
        request = RaidRequest.from_definition(definition)
        assert request.priority == Priority.ROTATION
        assert request.requester == "rotation"
        assert (request.seed, request.species, request.stars) == (0xAB, "Pikachu", 5)

    def test_ids_unique(self):
        assert make_request().request_id != make_request().request_id


class TestConcurrency:

    def test_each_request_delivered_exactly_once(self):
        queue = RequestQueue()
        total = 400
        for i in range(total):
            queue.enqueue(make_request(f"user{i}", seed=i, priority=Priority(i % 3)))

        taken: list[list[RaidRequest]] = [[] for _ in range(8)]

        def worker(bucket):
            while True:
                request = queue.dequeue_next()
                if request is None:
                    return
                bucket.append(request)

        threads = [threading.Thread(target=worker, args=(b,)) for b in taken]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        ids = [r.request_id for bucket in taken for r in bucket]
        assert len(ids) == total
        assert len(set(ids)) == total
        assert len(queue) == 0

    def test_concurrent_enqueue_respects_global_cap(self):
        queue = RequestQueue(max_total=50)
        accepted = []
        lock = threading.Lock()

        def producer(n):
            for i in range(20):
                try:
                    queue.enqueue(make_request(f"p{n}-{i}"))
                except QueueFullError:
                    continue
                with lock:
                    accepted.append(1)

        threads = [threading.Thread(target=producer, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert len(accepted) == 50
        assert len(queue) == 50
