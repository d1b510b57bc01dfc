"""Single-assignment result handle for asynchronous operations."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

from rpcretry.errors import FutureAlreadyResolvedError, StatusCode

T = TypeVar("T")
U = TypeVar("U")

logger = py_logging.getLogger(__name__)


class ResultFuture(Generic[T]):
    """Holds the final value or error of one operation.

    Written exactly once, read any number of times. A second write raises
    ``FutureAlreadyResolvedError``.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._resolved = False
        self._value: T | None = None
        self._error: BaseException | None = None
        self._callbacks: list[Callable[[ResultFuture[T]], None]] = []

    def done(self) -> bool:
        with self._condition:
            return self._resolved

    def wait(self, timeout: float | None = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: self._resolved, timeout=timeout)

    def result(self, timeout: float | None = None) -> T:
        if not self.wait(timeout):
            raise TimeoutError(f"Result not ready after {timeout}s")
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def exception(self, timeout: float | None = None) -> BaseException | None:
        if not self.wait(timeout):
            raise TimeoutError(f"Result not ready after {timeout}s")
        return self._error

    def set_result(self, value: T) -> None:
        self._resolve(value, None)

    def set_exception(self, error: BaseException) -> None:
        self._resolve(None, error)

    def add_done_callback(self, callback: Callable[[ResultFuture[T]], None]) -> None:
        with self._condition:
            if not self._resolved:
                self._callbacks.append(callback)
                return
        callback(self)

    def then(self, transform: Callable[[T], U]) -> ResultFuture[U]:
        """Return a future resolved with ``transform(value)`` or the same error."""
        chained: ResultFuture[U] = ResultFuture()

        def _forward(source: ResultFuture[T]) -> None:
            error = source._error
            if error is not None:
                chained.set_exception(error)
                return
            try:
                mapped = transform(source._value)  # type: ignore[arg-type]
            except Exception as exc:
                chained.set_exception(exc)
            else:
                chained.set_result(mapped)

        self.add_done_callback(_forward)
        return chained

    def _resolve(self, value: T | None, error: BaseException | None) -> None:
        with self._condition:
            if self._resolved:
                raise FutureAlreadyResolvedError(
                    "Result future already resolved",
                    code=StatusCode.FAILED_PRECONDITION,
                    hint="Each operation writes its result exactly once.",
                )
            self._value = value
            self._error = error
            self._resolved = True
            callbacks = self._callbacks
            self._callbacks = []
            self._condition.notify_all()
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("future-callback-failed callback=%r", callback)

    def __repr__(self) -> str:
        with self._condition:
            if not self._resolved:
                state = "pending"
            elif self._error is not None:
                state = f"failed error={type(self._error).__name__}"
            else:
                state = "resolved"
        return f"<ResultFuture {state}>"
