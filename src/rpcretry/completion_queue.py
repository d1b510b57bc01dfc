"""Shared scheduler multiplexing async RPC completions and timers."""

from __future__ import annotations

import heapq
import itertools
import logging as py_logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from rpcretry.errors import ConfigurationError, StatusCode

logger = py_logging.getLogger(__name__)

DEFAULT_DISPATCH_WORKERS = 2
DEFAULT_IO_WORKERS = 4


class SlotKind(str, Enum):
    RPC = "rpc"
    TIMER = "timer"


@dataclass(frozen=True)
class RpcCompleted:
    value: Any = None
    error: BaseException | None = None


@dataclass(frozen=True)
class TimerExpired:
    deadline: float = 0.0


CompletionEvent = Union[RpcCompleted, TimerExpired]
Continuation = Callable[[bool, CompletionEvent], None]


@dataclass(frozen=True)
class OperationHandle:
    slot_id: int
    kind: SlotKind


@dataclass
class _Slot:
    slot_id: int
    kind: SlotKind
    callback: Continuation
    call: Callable[[], Any] | None = None
    deadline: float = 0.0


@dataclass(order=True)
class _TimerEntry:
    deadline: float
    slot_id: int


@dataclass(frozen=True)
class _Delivery:
    slot_id: int
    callback: Continuation
    ok: bool
    event: CompletionEvent


class CompletionQueue:
    """Delivers exactly one notification per submitted slot.

    ``run_async`` runs a blocking call on the I/O executor and delivers
    ``RpcCompleted``; ``make_relative_timer`` delivers ``TimerExpired``. Each
    continuation receives ``(ok, event)`` on a dispatcher thread; ``ok`` is
    False when the queue shut down before the slot completed.

    Outstanding slots live in an id-indexed table. Whoever removes a slot from
    the table owns its single delivery, so a completion racing with shutdown
    is dropped instead of delivered twice.
    """

    def __init__(
        self,
        *,
        workers: int = DEFAULT_DISPATCH_WORKERS,
        io_workers: int = DEFAULT_IO_WORKERS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "rpcretry-cq",
    ) -> None:
        if workers < 0 or io_workers < 1:
            raise ConfigurationError(
                f"Invalid completion queue workers: workers={workers} io_workers={io_workers}",
                code=StatusCode.INVALID_ARGUMENT,
                hint="Use workers >= 0 and io_workers >= 1.",
            )
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._slots: dict[int, _Slot] = {}
        self._slot_ids = itertools.count(1)
        self._timers: list[_TimerEntry] = []
        self._ready: deque[_Delivery] = deque()
        self._shutdown = False
        self._executor: ThreadPoolExecutor | None = None
        self._io_workers = io_workers
        self._threads: list[threading.Thread] = []
        for index in range(workers):
            thread = threading.Thread(
                target=self._dispatch_loop,
                name=f"{name}-dispatch-{index}",
                daemon=True,
            )
            self._threads.append(thread)
        for thread in self._threads:
            thread.start()

    def __enter__(self) -> CompletionQueue:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def is_shutdown(self) -> bool:
        with self._lock:
            return self._shutdown

    def pending(self) -> int:
        with self._lock:
            return len(self._slots)

    def run_async(self, call: Callable[[], Any], callback: Continuation) -> OperationHandle:
        slot = self._register(SlotKind.RPC, callback, call=call)
        if slot is not None:
            self._start_rpc(slot)
        return self._handle_of(slot, SlotKind.RPC)

    def make_relative_timer(self, delay: float, callback: Continuation) -> OperationHandle:
        deadline = self._clock() + max(0.0, delay)
        slot = self._register(SlotKind.TIMER, callback, deadline=deadline)
        if slot is not None:
            self._arm_timer(slot)
        return self._handle_of(slot, SlotKind.TIMER)

    def shutdown(self) -> None:
        """Refuse new work and cancel every outstanding slot."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            cancelled = list(self._slots.values())
            self._slots.clear()
            self._timers.clear()
            for slot in cancelled:
                self._ready.append(_Delivery(slot.slot_id, slot.callback, False, _cancel_event(slot)))
            executor = self._executor
            self._wakeup.notify_all()
        logger.info("completion-queue-shutdown queue=%s cancelled=%s", self.name, len(cancelled))
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        if not self._threads:
            self.drain()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for dispatcher threads to finish delivering; True when all stopped."""
        current = threading.current_thread()
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            if thread is current:
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in self._threads if thread is not current)

    def close(self, timeout: float | None = None) -> bool:
        self.shutdown()
        return self.join(timeout)

    def drain(self) -> int:
        """Expire due timers and deliver every ready notification on the calling thread.

        Queues built with ``workers=0`` have no dispatcher threads. Timers on
        such a queue only fire when this method runs, while a finished
        ``run_async`` call drains the queue on the I/O thread that completed
        it, so continuations may run there as well.
        """
        delivered = 0
        while True:
            with self._lock:
                self._expire_timers(self._clock())
                if not self._ready:
                    return delivered
                delivery = self._ready.popleft()
            self._deliver(delivery)
            delivered += 1

    def _register(
        self,
        kind: SlotKind,
        callback: Continuation,
        *,
        call: Callable[[], Any] | None = None,
        deadline: float = 0.0,
    ) -> _Slot | None:
        with self._lock:
            slot_id = next(self._slot_ids)
            slot = _Slot(slot_id, kind, callback, call=call, deadline=deadline)
            if self._shutdown:
                self._ready.append(_Delivery(slot_id, callback, False, _cancel_event(slot)))
                self._wakeup.notify()
                late = True
            else:
                self._slots[slot_id] = slot
                late = False
        if late:
            logger.debug("completion-queue-late-submit queue=%s kind=%s", self.name, kind.value)
            # dispatchers may already have exited
            self.drain()
            return None
        return slot

    def _handle_of(self, slot: _Slot | None, kind: SlotKind) -> OperationHandle:
        return OperationHandle(slot.slot_id if slot is not None else 0, kind)

    def _start_rpc(self, slot: _Slot) -> None:
        assert slot.call is not None
        try:
            future = self._io_pool().submit(slot.call)
        except RuntimeError:
            # queue shut down between registration and submission
            self._complete(slot.slot_id, False, RpcCompleted())
            return
        future.add_done_callback(lambda done: self._on_rpc_done(slot.slot_id, done))

    def _on_rpc_done(self, slot_id: int, done: Future[Any]) -> None:
        if done.cancelled():
            self._complete(slot_id, False, RpcCompleted())
            return
        error = done.exception()
        if error is not None:
            self._complete(slot_id, True, RpcCompleted(error=error))
        else:
            self._complete(slot_id, True, RpcCompleted(value=done.result()))

    def _arm_timer(self, slot: _Slot) -> None:
        with self._lock:
            if slot.slot_id not in self._slots:
                return
            heapq.heappush(self._timers, _TimerEntry(slot.deadline, slot.slot_id))
            self._wakeup.notify()

    def _complete(self, slot_id: int, ok: bool, event: CompletionEvent) -> bool:
        with self._lock:
            slot = self._slots.pop(slot_id, None)
            if slot is None:
                return False
            self._ready.append(_Delivery(slot_id, slot.callback, ok, event))
            self._wakeup.notify()
        if not self._threads:
            self.drain()
        return True

    def _io_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._shutdown:
                raise RuntimeError(f"completion queue {self.name} is shut down")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._io_workers,
                    thread_name_prefix=f"{self.name}-io",
                )
            return self._executor

    def _expire_timers(self, now: float) -> None:
        while self._timers and self._timers[0].deadline <= now:
            entry = heapq.heappop(self._timers)
            slot = self._slots.pop(entry.slot_id, None)
            if slot is None:
                continue
            self._ready.append(_Delivery(slot.slot_id, slot.callback, True, TimerExpired(entry.deadline)))

    def _dispatch_loop(self) -> None:
        while True:
            with self._lock:
                while True:
                    self._expire_timers(self._clock())
                    if self._ready:
                        delivery = self._ready.popleft()
                        break
                    if self._shutdown:
                        return
                    timeout = None
                    if self._timers:
                        timeout = max(0.0, self._timers[0].deadline - self._clock())
                    self._wakeup.wait(timeout)
            self._deliver(delivery)

    def _deliver(self, delivery: _Delivery) -> None:
        try:
            delivery.callback(delivery.ok, delivery.event)
        except Exception:
            logger.exception(
                "completion-queue-callback-failed queue=%s slot=%s", self.name, delivery.slot_id
            )


def _cancel_event(slot: _Slot) -> CompletionEvent:
    if slot.kind is SlotKind.TIMER:
        return TimerExpired(slot.deadline)
    return RpcCompleted()
