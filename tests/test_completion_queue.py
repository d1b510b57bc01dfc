from __future__ import annotations

import threading

import pytest

from rpcretry.completion_queue import CompletionQueue, RpcCompleted, SlotKind, TimerExpired
from rpcretry.errors import ConfigurationError


class _Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[bool, object]] = []
        self.done = threading.Event()

    def __call__(self, ok: bool, event: object) -> None:
        self.events.append((ok, event))
        self.done.set()


def test_caller_driven_queue_delivers_timer_on_drain() -> None:
    now = {"value": 0.0}
    cq = CompletionQueue(workers=0, clock=lambda: now["value"])
    recorder = _Recorder()

    handle = cq.make_relative_timer(5.0, recorder)

    assert handle.kind is SlotKind.TIMER
    assert cq.drain() == 0
    assert cq.pending() == 1

    now["value"] = 5.0
    assert cq.drain() == 1
    assert recorder.events == [(True, TimerExpired(5.0))]
    assert cq.pending() == 0


def test_caller_driven_queue_delivers_rpc_on_io_thread() -> None:
    cq = CompletionQueue(workers=0)
    release = threading.Event()
    delivered_on: list[str] = []
    done = threading.Event()

    def _call() -> str:
        release.wait(timeout=5)
        return "pong"

    def _callback(ok: bool, event: object) -> None:
        delivered_on.append(threading.current_thread().name)
        done.set()

    cq.run_async(_call, _callback)
    release.set()

    assert done.wait(timeout=5)
    assert delivered_on[0].startswith("rpcretry-cq-io")
    cq.close(timeout=5)


def test_timers_expire_in_deadline_order() -> None:
    now = {"value": 0.0}
    cq = CompletionQueue(workers=0, clock=lambda: now["value"])
    order: list[str] = []

    cq.make_relative_timer(3.0, lambda ok, event: order.append("late"))
    cq.make_relative_timer(1.0, lambda ok, event: order.append("early"))
    now["value"] = 10.0
    cq.drain()

    assert order == ["early", "late"]


def test_threaded_rpc_delivers_value(threaded_cq: CompletionQueue) -> None:
    recorder = _Recorder()

    threaded_cq.run_async(lambda: "pong", recorder)

    assert recorder.done.wait(timeout=5)
    assert recorder.events == [(True, RpcCompleted(value="pong"))]


def test_threaded_rpc_delivers_error(threaded_cq: CompletionQueue) -> None:
    recorder = _Recorder()
    error = ValueError("bad request")

    def _fail() -> str:
        raise error

    threaded_cq.run_async(_fail, recorder)

    assert recorder.done.wait(timeout=5)
    ok, event = recorder.events[0]
    assert ok is True
    assert isinstance(event, RpcCompleted)
    assert event.error is error


def test_threaded_timer_fires(threaded_cq: CompletionQueue) -> None:
    recorder = _Recorder()

    threaded_cq.make_relative_timer(0.01, recorder)

    assert recorder.done.wait(timeout=5)
    assert recorder.events[0][0] is True
    assert isinstance(recorder.events[0][1], TimerExpired)


def test_shutdown_cancels_each_outstanding_slot_once() -> None:
    cq = CompletionQueue(workers=0)
    recorders = [_Recorder() for _ in range(4)]
    for recorder in recorders:
        cq.make_relative_timer(3600.0, recorder)

    cq.shutdown()
    cq.shutdown()
    cq.drain()

    assert [len(recorder.events) for recorder in recorders] == [1, 1, 1, 1]
    assert all(recorder.events[0][0] is False for recorder in recorders)
    assert cq.pending() == 0
    assert cq.is_shutdown


def test_submission_after_shutdown_is_cancelled_immediately() -> None:
    cq = CompletionQueue(workers=1)
    cq.close(timeout=5)
    timer = _Recorder()
    rpc = _Recorder()
    calls: list[str] = []

    cq.make_relative_timer(0.0, timer)
    cq.run_async(lambda: calls.append("ran"), rpc)

    assert len(timer.events) == 1
    assert timer.events[0][0] is False
    assert isinstance(timer.events[0][1], TimerExpired)
    assert rpc.events == [(False, RpcCompleted())]
    assert calls == []


def test_threaded_shutdown_cancels_pending_timers() -> None:
    cq = CompletionQueue(workers=2)
    recorders = [_Recorder() for _ in range(3)]
    for recorder in recorders:
        cq.make_relative_timer(3600.0, recorder)

    assert cq.close(timeout=5)
    assert all(recorder.done.is_set() for recorder in recorders)
    assert [[ok for ok, _ in recorder.events] for recorder in recorders] == [[False]] * 3


def test_failing_continuation_does_not_stop_dispatch() -> None:
    now = {"value": 0.0}
    cq = CompletionQueue(workers=0, clock=lambda: now["value"])
    recorder = _Recorder()

    def _boom(ok: bool, event: object) -> None:
        raise RuntimeError("continuation failed")

    cq.make_relative_timer(0.0, _boom)
    cq.make_relative_timer(0.0, recorder)

    assert cq.drain() == 2
    assert recorder.done.is_set()


def test_context_manager_shuts_down() -> None:
    with CompletionQueue(workers=1) as cq:
        assert not cq.is_shutdown
    assert cq.is_shutdown


@pytest.mark.parametrize(("workers", "io_workers"), [(-1, 4), (2, 0)])
def test_invalid_worker_counts_are_rejected(workers: int, io_workers: int) -> None:
    with pytest.raises(ConfigurationError):
        CompletionQueue(workers=workers, io_workers=io_workers)
