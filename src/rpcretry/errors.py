"""Status codes, failure classification and the terminal error model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class StatusCode(IntEnum):
    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class ErrorClass(str, Enum):
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


RETRYABLE_CODES = frozenset(
    {
        StatusCode.UNAVAILABLE,
        StatusCode.DEADLINE_EXCEEDED,
        StatusCode.ABORTED,
    }
)


def classify(code: StatusCode | int) -> ErrorClass:
    """Map a status code to its failure class.

    Unknown integers are treated as permanent so the mapping stays total.
    """
    try:
        resolved = StatusCode(code)
    except ValueError:
        return ErrorClass.PERMANENT
    if resolved in RETRYABLE_CODES:
        return ErrorClass.RETRYABLE
    return ErrorClass.PERMANENT


@dataclass
class RpcRetryError(Exception):
    message: str
    code: StatusCode = StatusCode.UNKNOWN
    hint: str = ""
    attempts: int = 0

    def __post_init__(self) -> None:
        try:
            self.code = StatusCode(self.code)
        except ValueError:
            self.code = StatusCode.UNKNOWN

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


class TransportError(RpcRetryError):
    """A single failed RPC attempt, as reported by the transport."""

    @property
    def error_class(self) -> ErrorClass:
        return classify(self.code)

    @property
    def is_retryable(self) -> bool:
        return self.error_class is ErrorClass.RETRYABLE


class PermanentError(RpcRetryError):
    """The service rejected the request; retrying cannot help."""


class PolicyExhaustedError(RpcRetryError):
    """The retry budget ran out while failures were still retryable."""


class PredicateNeverSatisfiedError(PolicyExhaustedError):
    """A poll operation ran out of budget before its predicate held."""


class OperationCancelledError(RpcRetryError):
    """The completion queue shut down while the operation was outstanding."""


class FutureAlreadyResolvedError(RpcRetryError):
    """A result future was written more than once."""


class ConfigurationError(RpcRetryError):
    """Invalid policy or client configuration."""
