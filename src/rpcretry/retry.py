"""Retry policies and the blocking retry loop for single-shot RPCs."""

from __future__ import annotations

import abc
import logging as py_logging
import time
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from rpcretry.backoff import ExponentialBackoffPolicy
from rpcretry.errors import (
    ConfigurationError,
    ErrorClass,
    PermanentError,
    PolicyExhaustedError,
    RpcRetryError,
    StatusCode,
    TransportError,
)
from rpcretry.rpc import CallContext, UnaryRpc

T = TypeVar("T")
RequestT = TypeVar("RequestT")

logger = py_logging.getLogger(__name__)

DEFAULT_MAXIMUM_ATTEMPTS = 3
DEFAULT_MAXIMUM_DURATION_SECONDS = 600.0


class RetryDecision(str, Enum):
    RETRY = "retry"
    GIVE_UP = "give-up"


class RetryPolicy(abc.ABC):
    """Decides whether a failed operation may be attempted again.

    A policy instance belongs to exactly one logical operation. Configured
    policies act as prototypes: callers ``clone()`` them so the failure
    counters of concurrent operations never interleave.

    ``on_failure(None)`` records a "not ready yet" outcome from a poll, which
    consumes budget exactly like a retryable transport failure.
    """

    def __init__(self) -> None:
        self._failures = 0
        self._exhausted = False

    @property
    def failures(self) -> int:
        return self._failures

    @abc.abstractmethod
    def clone(self) -> RetryPolicy: ...

    @abc.abstractmethod
    def _budget_exhausted(self) -> bool: ...

    def classify(self, error: TransportError | None) -> ErrorClass:
        if error is None:
            return ErrorClass.RETRYABLE
        return error.error_class

    def is_exhausted(self) -> bool:
        if not self._exhausted and self._budget_exhausted():
            self._exhausted = True
        return self._exhausted

    def on_failure(self, error: TransportError | None = None) -> RetryDecision:
        if self.classify(error) is ErrorClass.PERMANENT:
            return RetryDecision.GIVE_UP
        self._failures += 1
        if self.is_exhausted():
            return RetryDecision.GIVE_UP
        return RetryDecision.RETRY


class LimitedAttemptsRetryPolicy(RetryPolicy):
    """Allows ``maximum_attempts`` attempts; the last retryable failure exhausts it."""

    def __init__(self, maximum_attempts: int = DEFAULT_MAXIMUM_ATTEMPTS) -> None:
        if maximum_attempts < 1:
            raise ConfigurationError(
                f"Invalid maximum attempts: {maximum_attempts}",
                code=StatusCode.INVALID_ARGUMENT,
                hint="Allow at least one attempt.",
            )
        super().__init__()
        self.maximum_attempts = maximum_attempts

    def clone(self) -> LimitedAttemptsRetryPolicy:
        return LimitedAttemptsRetryPolicy(self.maximum_attempts)

    def _budget_exhausted(self) -> bool:
        return self._failures >= self.maximum_attempts

    def __repr__(self) -> str:
        return f"LimitedAttemptsRetryPolicy(maximum_attempts={self.maximum_attempts})"


class LimitedTimeRetryPolicy(RetryPolicy):
    """Allows retries until ``maximum_duration`` seconds after construction."""

    def __init__(
        self,
        maximum_duration: float = DEFAULT_MAXIMUM_DURATION_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if maximum_duration < 0:
            raise ConfigurationError(
                f"Invalid maximum retry duration: {maximum_duration}",
                code=StatusCode.INVALID_ARGUMENT,
                hint="Use a non-negative number of seconds.",
            )
        super().__init__()
        self.maximum_duration = float(maximum_duration)
        self._clock = clock
        self.deadline = clock() + self.maximum_duration

    def clone(self) -> LimitedTimeRetryPolicy:
        return LimitedTimeRetryPolicy(self.maximum_duration, clock=self._clock)

    def _budget_exhausted(self) -> bool:
        return self._clock() >= self.deadline

    def __repr__(self) -> str:
        return f"LimitedTimeRetryPolicy(maximum_duration={self.maximum_duration})"


def give_up_error(
    error: TransportError,
    *,
    policy: RetryPolicy,
    attempts: int,
    name: str = "",
    idempotent: bool = True,
) -> RpcRetryError:
    """Build the terminal error for a failure the policy refused to retry."""
    label = name or "operation"
    if policy.classify(error) is ErrorClass.PERMANENT:
        return PermanentError(
            f"{label} failed permanently: {error.message}",
            code=error.code,
            hint=error.hint,
            attempts=attempts,
        )
    return PolicyExhaustedError(
        f"{label} gave up after {attempts} attempt(s): {error.message}",
        code=error.code,
        hint=error.hint
        or (
            "Retry budget exhausted while the service kept failing transiently."
            if idempotent
            else "The operation is not idempotent and was not retried."
        ),
        attempts=attempts,
    )


def retry_loop(
    operation: Callable[[], T],
    *,
    retry_policy: RetryPolicy,
    backoff_policy: ExponentialBackoffPolicy,
    idempotent: bool,
    sleep: Callable[[float], None],
    name: str,
) -> T:
    """Drive an already-cloned pair of policies; callers own their lifetime."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except TransportError as exc:
            if idempotent:
                decision = retry_policy.on_failure(exc)
            else:
                decision = RetryDecision.GIVE_UP
            if decision is RetryDecision.GIVE_UP:
                final = give_up_error(
                    exc,
                    policy=retry_policy,
                    attempts=attempt,
                    name=name,
                    idempotent=idempotent,
                )
                logger.warning(
                    "rpc-give-up op=%s attempt=%s code=%s class=%s idempotent=%s",
                    name or "-",
                    attempt,
                    exc.code.name,
                    exc.error_class.value,
                    idempotent,
                )
                raise final from exc
            delay = backoff_policy.next_delay()
            logger.debug(
                "rpc-retry op=%s attempt=%s code=%s delay=%.3fs",
                name or "-",
                attempt,
                exc.code.name,
                delay,
            )
            sleep(delay)


def run_with_retry(
    operation: Callable[[], T],
    *,
    retry_policy: RetryPolicy,
    backoff_policy: ExponentialBackoffPolicy,
    idempotent: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "",
) -> T:
    """Run ``operation`` until it succeeds or the retry policy gives up.

    The policies are cloned, so the same prototypes can be passed to many
    calls. ``TransportError`` failures are retried or converted into
    ``PermanentError``/``PolicyExhaustedError``; other exceptions propagate.
    Non-idempotent operations are attempted exactly once.
    """
    return retry_loop(
        operation,
        retry_policy=retry_policy.clone(),
        backoff_policy=backoff_policy.clone(),
        idempotent=idempotent,
        sleep=sleep,
        name=name,
    )


def call_with_retry(
    rpc: UnaryRpc[RequestT, T],
    request: RequestT,
    *,
    make_context: Callable[[], CallContext],
    retry_policy: RetryPolicy,
    backoff_policy: ExponentialBackoffPolicy,
    idempotent: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "",
) -> T:
    """Invoke a unary RPC with a fresh call context for every attempt."""
    return run_with_retry(
        lambda: rpc(request, make_context()),
        retry_policy=retry_policy,
        backoff_policy=backoff_policy,
        idempotent=idempotent,
        sleep=sleep,
        name=name,
    )
