from __future__ import annotations

import os
from collections import deque
from pathlib import Path

import pytest

from rpcretry.completion_queue import CompletionQueue, RpcCompleted, SlotKind, TimerExpired, _Slot


class SimulatedCompletionQueue(CompletionQueue):
    """Completion queue where nothing completes until the test says so.

    RPC calls run (on the test thread) only when their completion is
    simulated; timers fire in submission order regardless of their delay.
    """

    def __init__(self) -> None:
        super().__init__(workers=0)
        self.started: deque[_Slot] = deque()
        self.rpcs_started = 0
        self.timers_started = 0

    def _start_rpc(self, slot: _Slot) -> None:
        self.rpcs_started += 1
        self.started.append(slot)

    def _arm_timer(self, slot: _Slot) -> None:
        self.timers_started += 1
        self.started.append(slot)

    def size(self) -> int:
        return self.pending()

    def simulate_completion(self, ok: bool = True) -> bool:
        slot = self.started.popleft()
        if slot.kind is SlotKind.TIMER:
            event: RpcCompleted | TimerExpired = TimerExpired(slot.deadline)
        elif not ok:
            event = RpcCompleted()
        else:
            assert slot.call is not None
            try:
                event = RpcCompleted(value=slot.call())
            except Exception as exc:
                event = RpcCompleted(error=exc)
        return self._complete(slot.slot_id, ok, event)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.upper().startswith("RPCRETRY_"):
            monkeypatch.delenv(name)


@pytest.fixture
def simulated_cq() -> SimulatedCompletionQueue:
    return SimulatedCompletionQueue()


@pytest.fixture
def threaded_cq():
    cq = CompletionQueue(workers=2, io_workers=4)
    yield cq
    cq.close(timeout=5)


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))

        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)

        if "property" in path.parts:
            item.add_marker(pytest.mark.property)
