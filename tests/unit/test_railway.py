"""
Tests for the railway package — Result, error codes, HTTP mapping, execution contexts.

Tests cover:
  - Success/Failure creation and introspection
  - map, flat_map, ensure, peek, recover_with
  - Static factories (from_computation, from_optional, all_of)
  - ErrorCode categories and HTTP status mapping
  - LoggingExecutionContext crash containment
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from crl_publisher.railway import (
    ErrorCode,
    Failure,
    FailureDescription,
    LoggingExecutionContext,
    NoOpExecutionContext,
    Result,
    ResultAssertions,
    Success,
)
from crl_publisher.railway import http_support
from crl_publisher.railway.http_support import (
    ErrorResponse,
    HttpStatusMapper,
    build_fastapi_response,
    build_response,
)

# ═══════════════════════════════════════════════════════════════
# 1. Creation & Introspection
# ═══════════════════════════════════════════════════════════════


class TestCreation:
    def test_success_wraps_value(self):
        result = Result.success(42)
        assert result.is_success()
        assert result.value() == 42
        assert result

    def test_success_rejects_none(self):
        with pytest.raises(TypeError, match="must not be None"):
            Success(None)

    def test_failure_carries_code_message_and_exception(self):
        ex = ValueError("bad")
        result = Result.failure(ErrorCode.INVALID_DER, "Failed to parse CRL", ex)
        assert result.is_failure()
        assert not result
        assert result.error().code is ErrorCode.INVALID_DER
        assert result.error().exception is ex

    def test_failure_rejects_none(self):
        with pytest.raises(TypeError, match="must not be None"):
            Failure(None)

    def test_value_on_failure_raises(self):
        with pytest.raises(ValueError, match="Cannot get value"):
            Result.failure(ErrorCode.STALE_CRL, "older").value()

    def test_error_on_success_raises(self):
        with pytest.raises(ValueError, match="Cannot get error"):
            Result.success(1).error()


# ═══════════════════════════════════════════════════════════════
# 2. Transformations
# ═══════════════════════════════════════════════════════════════


class TestTransformations:
    def test_map_and_flat_map_chain(self):
        result = Result.success(2).map(lambda n: n * 3).flat_map(lambda n: Result.success(n + 1))
        assert result.value() == 7

    def test_flat_map_short_circuits(self):
        called = []
        result = Result.failure(ErrorCode.INVALID_PEM, "no block").flat_map(
            lambda v: called.append(v) or Result.success(v)
        )
        assert result.is_failure()
        assert called == []

    def test_ensure(self):
        assert Result.success(5).ensure(lambda n: n > 0, ErrorCode.INVALID_DER, "neg").is_success()
        failed = Result.success(-1).ensure(lambda n: n > 0, ErrorCode.INVALID_DER, "neg")
        assert failed.error().message == "neg"

    def test_peek_and_peek_failure(self):
        seen = []
        Result.success(1).peek(seen.append).peek_failure(seen.append)
        Result.failure(ErrorCode.STALE_CRL, "x").peek(seen.append).peek_failure(
            lambda err: seen.append(err.code)
        )
        assert seen == [1, ErrorCode.STALE_CRL]

    def test_recover_with(self):
        failed = Result.failure(ErrorCode.NOT_FOUND, "gone")
        assert failed.recover_with(lambda _: Result.success(3)).value() == 3
        assert Result.success(1).recover_with(lambda _: Result.success(3)).value() == 1

    def test_either(self):
        assert Result.success(1).either(lambda v: v + 1, lambda e: 0) == 2
        assert Result.failure(ErrorCode.NOT_FOUND, "x").either(lambda v: v, lambda e: -1) == -1


# ═══════════════════════════════════════════════════════════════
# 3. Static factories
# ═══════════════════════════════════════════════════════════════


class TestFactories:
    def test_from_computation_success(self):
        assert Result.from_computation(lambda: 10, ErrorCode.UNKNOWN_ERROR, "x").value() == 10

    def test_from_computation_captures_exception(self):
        def explode():
            raise ValueError("bad tag")

        result = Result.from_computation(explode, ErrorCode.INVALID_DER, "Failed to parse CRL")
        assert result.error().message == "Failed to parse CRL: bad tag"
        assert isinstance(result.error().exception, ValueError)

    def test_from_optional(self):
        assert Result.from_optional(1, "missing", ErrorCode.NOT_FOUND).value() == 1
        missing = Result.from_optional(None, "missing", ErrorCode.NOT_FOUND)
        assert missing.error().code is ErrorCode.NOT_FOUND

    def test_all_of(self):
        assert Result.all_of([Result.success(1), Result.success(2)]).value() == [1, 2]
        first_failure = Result.all_of(
            [Result.success(1), Result.failure(ErrorCode.STALE_CRL, "a"), Result.failure(ErrorCode.NOT_FOUND, "b")]
        )
        assert first_failure.error().code is ErrorCode.STALE_CRL

    def test_equality_and_repr(self):
        assert Result.success(1) == Result.success(1)
        assert Result.failure(ErrorCode.STALE_CRL, "x") == Result.failure(ErrorCode.STALE_CRL, "x")
        assert repr(Result.failure(ErrorCode.STALE_CRL, "x")) == "Failure(stale_crl: 'x')"

    def test_pattern_matching(self):
        match Result.success("ok"):
            case Success(value):
                assert value == "ok"
            case _:
                pytest.fail("expected Success")


# ═══════════════════════════════════════════════════════════════
# 4. Error codes & HTTP mapping
# ═══════════════════════════════════════════════════════════════


class TestErrorCodes:
    @pytest.mark.parametrize(
        "code,category",
        [
            (ErrorCode.INVALID_PEM, "decode"),
            (ErrorCode.UNSUPPORTED_MEDIA_TYPE, "decode"),
            (ErrorCode.ISSUER_NOT_FOUND, "trust"),
            (ErrorCode.INVALID_SIGNATURE, "trust"),
            (ErrorCode.STALE_CRL, "ordering"),
            (ErrorCode.STORAGE_ERROR, "storage"),
            (ErrorCode.UNKNOWN_ERROR, "server"),
        ],
    )
    def test_category(self, code, category):
        assert code.category == category

    def test_every_code_has_a_category(self):
        for code in ErrorCode:
            assert code.category in {"decode", "trust", "ordering", "storage", "server"}

    def test_only_decode_errors_are_retryable(self):
        assert ErrorCode.INVALID_DER.retryable
        assert not ErrorCode.ISSUER_NOT_FOUND.retryable
        assert not ErrorCode.STALE_CRL.retryable

    def test_wire_values(self):
        assert ErrorCode.STALE_CRL.value == "stale_crl"
        assert ErrorCode.ISSUER_NOT_FOUND.value == "issuer_not_found"

    def test_full_stack_trace(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            desc = FailureDescription(ErrorCode.STORAGE_ERROR, "write failed", e)
        assert "RuntimeError: boom" in desc.full_stack_trace()
        assert FailureDescription(ErrorCode.STALE_CRL, "plain").full_stack_trace() == "plain"
        assert str(desc) == "storage_error: write failed"


class TestHttpSupport:
    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ErrorCode.INVALID_PEM, 400),
            (ErrorCode.INVALID_DER, 400),
            (ErrorCode.UNSUPPORTED_MEDIA_TYPE, 415),
            (ErrorCode.ISSUER_NOT_FOUND, 400),
            (ErrorCode.INVALID_SIGNATURE, 400),
            (ErrorCode.STALE_CRL, 409),
            (ErrorCode.NOT_FOUND, 404),
            (ErrorCode.PRECONDITION_FAILED, 412),
            (ErrorCode.STORAGE_ERROR, 500),
            (ErrorCode.CONFIGURATION_ERROR, 500),
            (ErrorCode.UNKNOWN_ERROR, 500),
        ],
    )
    def test_error_code_to_http_status(self, code, expected_status):
        assert HttpStatusMapper.map_error_code(code) == expected_status

    def test_error_response_body(self):
        failure = FailureDescription(ErrorCode.STALE_CRL, "CRL is not newer than the stored version")
        body = ErrorResponse.from_failure(failure).to_dict()
        assert body["error_code"] == "stale_crl"
        assert body["category"] == "ordering"
        assert body["retryable"] is False
        assert body["timestamp"] == failure.timestamp.isoformat()

    def test_decode_failures_are_marked_retryable(self):
        body, _ = build_response(Result.failure(ErrorCode.INVALID_PEM, "no block"))
        assert body["retryable"] is True

    def test_server_failure_logs_trace_but_body_omits_it(self, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr(http_support, "log", logger)
        try:
            raise RuntimeError("disk on fire")
        except RuntimeError as e:
            failed = Result.failure(ErrorCode.STORAGE_ERROR, "write failed", e)
        body, status = build_response(failed)
        assert status == 500
        assert "disk on fire" not in json.dumps(body)
        event, fields = logger.error.call_args.args[0], logger.error.call_args.kwargs
        assert event == "http.server_error"
        assert "RuntimeError: disk on fire" in fields["detail"]

    def test_client_failure_is_not_logged_as_server_error(self, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr(http_support, "log", logger)
        build_response(Result.failure(ErrorCode.STALE_CRL, "older"))
        logger.error.assert_not_called()

    def test_build_response_success_with_serializer(self):
        body, status = build_response(Result.success(3), 201, serializer=lambda n: {"n": n})
        assert (body, status) == ({"n": 3}, 201)

    def test_build_response_failure(self):
        body, status = build_response(Result.failure(ErrorCode.INVALID_SIGNATURE, "bad sig"))
        assert status == 400
        assert body["error_code"] == "invalid_signature"

    def test_build_fastapi_response(self):
        response = build_fastapi_response(Result.failure(ErrorCode.UNSUPPORTED_MEDIA_TYPE, "json"))
        assert response.status_code == 415
        assert json.loads(response.body)["message"] == "json"


# ═══════════════════════════════════════════════════════════════
# 5. Execution contexts
# ═══════════════════════════════════════════════════════════════


class TestExecutionContexts:
    def test_noop_passthrough(self):
        assert NoOpExecutionContext().execute(lambda: Result.success(1)).value() == 1

    def test_logging_context_passes_results_through(self):
        ctx = LoggingExecutionContext(operation="CrlIngestion")
        assert ctx.execute(lambda: Result.success("ok")).value() == "ok"
        failed = ctx.execute(lambda: Result.failure(ErrorCode.STALE_CRL, "older"))
        assert failed.error().code is ErrorCode.STALE_CRL

    def test_logging_context_contains_crashes(self):
        def crash():
            raise RuntimeError("exploded")

        result = LoggingExecutionContext(operation="Boom").execute(crash)
        error = ResultAssertions.assert_failure(result, ErrorCode.UNKNOWN_ERROR)
        assert "exploded" in error.message


class TestResultAssertions:
    def test_assert_success_returns_value(self):
        assert ResultAssertions.assert_success(Result.success(4)) == 4

    def test_assert_success_fails_on_failure(self):
        with pytest.raises(AssertionError, match="Expected Success"):
            ResultAssertions.assert_success(Result.failure(ErrorCode.NOT_FOUND, "x"))

    def test_assert_failure_checks_code(self):
        with pytest.raises(AssertionError, match="Expected error code"):
            ResultAssertions.assert_failure(
                Result.failure(ErrorCode.NOT_FOUND, "x"), ErrorCode.STALE_CRL
            )

    def test_message_contains_is_case_insensitive(self):
        ResultAssertions.assert_failure_message_contains(
            Result.failure(ErrorCode.STALE_CRL, "CRL is not newer"), "crl IS NOT"
        )
