import threading
import time

import pytest

from convertflix.workers.limiter import ConcurrencyLimiter


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


def test_never_runs_more_than_max_concurrent():
    limiter = ConcurrencyLimiter(2)
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def task():
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.05)
        with lock:
            state["active"] -= 1
        return "done"

    results = []
    threads = [threading.Thread(target=lambda: results.append(limiter.run(task))) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert results == ["done"] * 6
    assert state["peak"] == 2
    assert limiter.active == 0
    assert limiter.waiting == 0
    assert limiter.stats()["peak"] == 2


def test_waiters_are_admitted_in_fifo_order():
    limiter = ConcurrencyLimiter(1)
    gate = threading.Event()
    order = []

    def blocker():
        gate.wait(timeout=5)

    first = threading.Thread(target=limiter.run, args=(blocker,))
    first.start()
    while limiter.active == 0:
        time.sleep(0.005)

    threads = []
    for i in range(5):
        t = threading.Thread(target=limiter.run, args=(order.append, i))
        t.start()
        # make sure each waiter is queued before the next one arrives
        while limiter.waiting < i + 1:
            time.sleep(0.005)
        threads.append(t)

    gate.set()
    first.join(timeout=5)
    for t in threads:
        t.join(timeout=5)

    assert order == [0, 1, 2, 3, 4]


def test_failure_only_affects_its_own_caller():
    limiter = ConcurrencyLimiter(1)

    def boom():
        raise RuntimeError("encoder crashed")

    with pytest.raises(RuntimeError):
        limiter.run(boom)

    assert limiter.run(lambda: 42) == 42
    assert limiter.active == 0


def test_slot_context_manager_releases_on_error():
    limiter = ConcurrencyLimiter(1)
    with pytest.raises(KeyError):
        with limiter.slot("job-1"):
            assert limiter.active == 1
            raise KeyError("x")
    assert limiter.active == 0


def test_release_without_acquire_is_an_error():
    limiter = ConcurrencyLimiter(1)
    with pytest.raises(RuntimeError):
        limiter.release()
