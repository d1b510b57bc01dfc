from __future__ import annotations

from rpcretry.errors import (
    ErrorClass,
    PermanentError,
    PolicyExhaustedError,
    PredicateNeverSatisfiedError,
    RpcRetryError,
    StatusCode,
    TransportError,
    classify,
)


def test_status_codes_are_deterministic() -> None:
    assert int(StatusCode.OK) == 0
    assert int(StatusCode.CANCELLED) == 1
    assert int(StatusCode.DEADLINE_EXCEEDED) == 4
    assert int(StatusCode.PERMISSION_DENIED) == 7
    assert int(StatusCode.ABORTED) == 10
    assert int(StatusCode.UNAVAILABLE) == 14
    assert int(StatusCode.UNAUTHENTICATED) == 16


def test_transient_codes_are_retryable() -> None:
    assert classify(StatusCode.UNAVAILABLE) is ErrorClass.RETRYABLE
    assert classify(StatusCode.DEADLINE_EXCEEDED) is ErrorClass.RETRYABLE
    assert classify(StatusCode.ABORTED) is ErrorClass.RETRYABLE


def test_rejections_are_permanent() -> None:
    assert classify(StatusCode.PERMISSION_DENIED) is ErrorClass.PERMANENT
    assert classify(StatusCode.NOT_FOUND) is ErrorClass.PERMANENT
    assert classify(StatusCode.INVALID_ARGUMENT) is ErrorClass.PERMANENT


def test_classification_is_total_over_all_codes() -> None:
    for code in StatusCode:
        assert classify(code) in (ErrorClass.RETRYABLE, ErrorClass.PERMANENT)


def test_transport_error_reports_its_class() -> None:
    transient = TransportError("try-again", code=StatusCode.UNAVAILABLE)
    denied = TransportError("uh oh", code=StatusCode.PERMISSION_DENIED)

    assert transient.is_retryable
    assert denied.error_class is ErrorClass.PERMANENT


def test_terminal_errors_are_distinguishable() -> None:
    assert issubclass(PredicateNeverSatisfiedError, PolicyExhaustedError)
    assert not issubclass(PermanentError, PolicyExhaustedError)
    assert issubclass(PermanentError, RpcRetryError)


def test_rpc_retry_error_string_contains_hint() -> None:
    err = RpcRetryError("ListTables failed", code=StatusCode.UNAVAILABLE, hint="Retry later")
    assert "Retry later" in str(err)
