"""Per-attempt call context handed to the RPC invocation capability."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

RequestT = TypeVar("RequestT", contravariant=True)
ResponseT = TypeVar("ResponseT", covariant=True)

API_CLIENT_HEADER = "x-goog-api-client"
REQUEST_PARAMS_HEADER = "x-goog-request-params"
DEFAULT_RPC_TIMEOUT_SECONDS = 30.0
LIBRARY_VERSION = "0.1.0"


def api_client_value() -> str:
    return f"rpcretry/{LIBRARY_VERSION}"


@dataclass(frozen=True)
class CallContext:
    deadline: float
    metadata: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    clock: Callable[[], float] = field(default=time.monotonic, compare=False, repr=False)

    @classmethod
    def with_timeout(
        cls,
        timeout_seconds: float,
        metadata: Iterable[tuple[str, str]] = (),
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> CallContext:
        return cls(deadline=clock() + timeout_seconds, metadata=tuple(metadata), clock=clock)

    def time_remaining(self) -> float:
        return max(0.0, self.deadline - self.clock())

    def metadata_dict(self) -> dict[str, str]:
        return dict(self.metadata)


def routing_metadata(resource_param: str) -> tuple[tuple[str, str], ...]:
    """Metadata pairs routing a request to ``resource_param`` (e.g. ``name=...``)."""
    return (
        (REQUEST_PARAMS_HEADER, resource_param),
        (API_CLIENT_HEADER, api_client_value()),
    )


class UnaryRpc(Protocol[RequestT, ResponseT]):
    def __call__(self, request: RequestT, context: CallContext) -> ResponseT: ...


def context_factory(
    timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
    metadata: Iterable[tuple[str, str]] = (),
    *,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[[], CallContext]:
    """Return a factory producing a fresh context (and deadline) per attempt."""
    pairs = tuple(metadata)

    def _make() -> CallContext:
        return CallContext.with_timeout(timeout_seconds, pairs, clock=clock)

    return _make
