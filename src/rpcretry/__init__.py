"""Retry, backoff and polling engine for remote procedure calls."""

from .backoff import ExponentialBackoffPolicy
from .completion_queue import CompletionQueue, OperationHandle, RpcCompleted, TimerExpired
from .errors import (
    ConfigurationError,
    ErrorClass,
    FutureAlreadyResolvedError,
    OperationCancelledError,
    PermanentError,
    PolicyExhaustedError,
    PredicateNeverSatisfiedError,
    RpcRetryError,
    StatusCode,
    TransportError,
    classify,
)
from .future import ResultFuture
from .pagination import list_all_pages, start_list_all_pages
from .poll import PollOperation, PollPhase, start_async_retry, start_poll
from .retry import (
    LimitedAttemptsRetryPolicy,
    LimitedTimeRetryPolicy,
    RetryDecision,
    RetryPolicy,
    call_with_retry,
    run_with_retry,
)
from .rpc import LIBRARY_VERSION, CallContext

__version__ = LIBRARY_VERSION

__all__ = [
    "CallContext",
    "call_with_retry",
    "classify",
    "CompletionQueue",
    "ConfigurationError",
    "ErrorClass",
    "ExponentialBackoffPolicy",
    "FutureAlreadyResolvedError",
    "LimitedAttemptsRetryPolicy",
    "LimitedTimeRetryPolicy",
    "list_all_pages",
    "OperationCancelledError",
    "OperationHandle",
    "PermanentError",
    "PolicyExhaustedError",
    "PollOperation",
    "PollPhase",
    "PredicateNeverSatisfiedError",
    "ResultFuture",
    "RetryDecision",
    "RetryPolicy",
    "RpcCompleted",
    "RpcRetryError",
    "run_with_retry",
    "start_async_retry",
    "start_list_all_pages",
    "start_poll",
    "StatusCode",
    "TimerExpired",
    "TransportError",
]
