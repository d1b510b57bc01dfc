"""Asynchronous poll operation: issue an RPC, check, back off, repeat."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Generic, TypeVar

from rpcretry.backoff import ExponentialBackoffPolicy
from rpcretry.completion_queue import CompletionEvent, CompletionQueue, RpcCompleted
from rpcretry.errors import (
    OperationCancelledError,
    PredicateNeverSatisfiedError,
    StatusCode,
    TransportError,
)
from rpcretry.future import ResultFuture
from rpcretry.retry import RetryDecision, RetryPolicy, give_up_error

T = TypeVar("T")

logger = py_logging.getLogger(__name__)


class PollPhase(str, Enum):
    IDLE = "idle"
    AWAITING_RPC = "awaiting-rpc"
    EVALUATING_RESULT = "evaluating-result"
    HANDLING_FAILURE = "handling-failure"
    AWAITING_TIMER = "awaiting-timer"
    RESOLVED = "resolved"


class PollOperation(Generic[T]):
    """Sequential issue-check-wait loop feeding one ``ResultFuture``.

    At most one RPC or one timer is outstanding at any time. The operation
    owns its policies (callers pass prototypes, which are cloned) and is
    driven entirely by completion queue deliveries, so ``start()`` never
    blocks.
    """

    def __init__(
        self,
        cq: CompletionQueue,
        call: Callable[[], T],
        *,
        retry_policy: RetryPolicy,
        backoff_policy: ExponentialBackoffPolicy,
        predicate: Callable[[T], bool] | None = None,
        idempotent: bool = True,
        name: str = "",
    ) -> None:
        self.name = name or "poll"
        self._cq = cq
        self._call = call
        self._predicate = predicate
        self._idempotent = idempotent
        self._retry_policy = retry_policy.clone()
        self._backoff_policy = backoff_policy.clone()
        self._future: ResultFuture[T] = ResultFuture()
        self._lock = threading.Lock()
        self._phase = PollPhase.IDLE
        self.rpc_attempts = 0
        self.timers_scheduled = 0

    @property
    def phase(self) -> PollPhase:
        with self._lock:
            return self._phase

    @property
    def future(self) -> ResultFuture[T]:
        return self._future

    def start(self) -> ResultFuture[T]:
        with self._lock:
            if self._phase is not PollPhase.IDLE:
                raise RuntimeError(f"Poll operation {self.name} already started")
            self._phase = PollPhase.AWAITING_RPC
        self._issue_rpc()
        return self._future

    def _set_phase(self, phase: PollPhase) -> None:
        with self._lock:
            self._phase = phase

    def _issue_rpc(self) -> None:
        self._set_phase(PollPhase.AWAITING_RPC)
        self.rpc_attempts += 1
        self._cq.run_async(self._call, self._on_rpc)

    def _on_rpc(self, ok: bool, event: CompletionEvent) -> None:
        if not ok:
            self._cancel()
            return
        assert isinstance(event, RpcCompleted)
        if event.error is None:
            self._evaluate(event.value)
        else:
            self._handle_failure(event.error)

    def _evaluate(self, value: T) -> None:
        self._set_phase(PollPhase.EVALUATING_RESULT)
        try:
            converged = self._predicate is None or self._predicate(value)
        except Exception as exc:
            logger.error("rpc-poll-predicate-failed op=%s error=%r", self.name, exc)
            self._resolve(error=exc)
            return
        if converged:
            logger.debug("rpc-poll-done op=%s attempts=%s", self.name, self.rpc_attempts)
            self._resolve(value=value)
            return
        if self._retry_policy.on_failure(None) is RetryDecision.GIVE_UP:
            logger.warning(
                "rpc-poll-exhausted op=%s attempts=%s reason=not-converged",
                self.name,
                self.rpc_attempts,
            )
            self._resolve(
                error=PredicateNeverSatisfiedError(
                    f"{self.name} did not converge after {self.rpc_attempts} attempt(s)",
                    code=StatusCode.DEADLINE_EXCEEDED,
                    hint="Raise the polling budget or check the remote state.",
                    attempts=self.rpc_attempts,
                )
            )
            return
        self._schedule_timer(reason="not-converged")

    def _handle_failure(self, error: BaseException) -> None:
        self._set_phase(PollPhase.HANDLING_FAILURE)
        if not isinstance(error, TransportError):
            logger.error("rpc-poll-error op=%s error=%r", self.name, error)
            self._resolve(error=error)
            return
        if self._idempotent:
            decision = self._retry_policy.on_failure(error)
        else:
            decision = RetryDecision.GIVE_UP
        if decision is RetryDecision.GIVE_UP:
            final = give_up_error(
                error,
                policy=self._retry_policy,
                attempts=self.rpc_attempts,
                name=self.name,
                idempotent=self._idempotent,
            )
            final.__cause__ = error
            logger.warning(
                "rpc-poll-give-up op=%s attempts=%s code=%s class=%s idempotent=%s",
                self.name,
                self.rpc_attempts,
                error.code.name,
                error.error_class.value,
                self._idempotent,
            )
            self._resolve(error=final)
            return
        self._schedule_timer(reason=error.code.name)

    def _schedule_timer(self, *, reason: str) -> None:
        delay = self._backoff_policy.next_delay()
        self._set_phase(PollPhase.AWAITING_TIMER)
        self.timers_scheduled += 1
        logger.debug(
            "rpc-poll-retry op=%s attempt=%s reason=%s delay=%.3fs",
            self.name,
            self.rpc_attempts,
            reason,
            delay,
        )
        self._cq.make_relative_timer(delay, self._on_timer)

    def _on_timer(self, ok: bool, event: CompletionEvent) -> None:
        del event
        if not ok:
            self._cancel()
            return
        self._issue_rpc()

    def _cancel(self) -> None:
        logger.info("rpc-poll-cancelled op=%s phase=%s", self.name, self.phase.value)
        self._resolve(
            error=OperationCancelledError(
                f"{self.name} cancelled: completion queue shut down",
                code=StatusCode.CANCELLED,
                attempts=self.rpc_attempts,
            )
        )

    def _resolve(self, *, value: T | None = None, error: BaseException | None = None) -> None:
        self._set_phase(PollPhase.RESOLVED)
        if error is not None:
            self._future.set_exception(error)
        else:
            self._future.set_result(value)  # type: ignore[arg-type]


def start_poll(
    cq: CompletionQueue,
    call: Callable[[], T],
    predicate: Callable[[T], bool],
    *,
    retry_policy: RetryPolicy,
    backoff_policy: ExponentialBackoffPolicy,
    name: str = "",
) -> ResultFuture[T]:
    """Poll ``call`` on ``cq`` until ``predicate`` holds or the budget runs out."""
    operation = PollOperation(
        cq,
        call,
        retry_policy=retry_policy,
        backoff_policy=backoff_policy,
        predicate=predicate,
        name=name,
    )
    return operation.start()


def start_async_retry(
    cq: CompletionQueue,
    call: Callable[[], T],
    *,
    retry_policy: RetryPolicy,
    backoff_policy: ExponentialBackoffPolicy,
    idempotent: bool = True,
    name: str = "",
) -> ResultFuture[T]:
    """Retry a single asynchronous RPC on ``cq`` until it succeeds or gives up.

    Non-idempotent calls are attempted once.
    """
    operation = PollOperation(
        cq,
        call,
        retry_policy=retry_policy,
        backoff_policy=backoff_policy,
        idempotent=idempotent,
        name=name,
    )
    return operation.start()
