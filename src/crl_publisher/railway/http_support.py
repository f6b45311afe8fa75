"""
HTTP integration — ErrorCode→HTTP status mapping and response builders.

    status = HttpStatusMapper.map_error_code(ErrorCode.STALE_CRL)  # → 409
    return build_fastapi_response(result, success_status=201)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

import structlog
from fastapi.responses import JSONResponse

from crl_publisher.railway.failure import ErrorCode, FailureDescription
from crl_publisher.railway.result import Result

T = TypeVar("T")
log = structlog.get_logger()


# ──────────────────────── Error Code → HTTP Status Mapping ────────────────────────


class HttpStatusMapper:
    """Maps ErrorCode enum values to HTTP status codes."""

    _CODE_TO_STATUS: dict[ErrorCode, int] = {
        # Decode errors
        ErrorCode.INVALID_PEM: 400,
        ErrorCode.INVALID_DER: 400,
        ErrorCode.UNSUPPORTED_MEDIA_TYPE: 415,
        # Trust errors
        ErrorCode.ISSUER_NOT_FOUND: 400,
        ErrorCode.INVALID_SIGNATURE: 400,
        # Ordering errors
        ErrorCode.STALE_CRL: 409,
        # Storage errors
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.PRECONDITION_FAILED: 412,
        ErrorCode.STORAGE_ERROR: 500,
        # Server errors
        ErrorCode.CONFIGURATION_ERROR: 500,
        ErrorCode.UNKNOWN_ERROR: 500,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        return cls._CODE_TO_STATUS.get(code, 500)

    @classmethod
    def map_failure(cls, failure: FailureDescription) -> int:
        return cls.map_error_code(failure.code)


# ──────────────────────── Error Response DTO ────────────────────────


@dataclass(frozen=True, slots=True)
class ErrorResponse:
    """
    Standardized error response body.

        {
            "error_code": "stale_crl",
            "category": "ordering",
            "retryable": false,
            "message": "CRL is not newer than the stored version",
            "timestamp": "2026-10-18T10:30:00+00:00"
        }
    """

    error_code: str
    category: str
    retryable: bool
    message: str
    timestamp: str

    @staticmethod
    def from_failure(failure: FailureDescription) -> ErrorResponse:
        return ErrorResponse(
            error_code=failure.code.value,
            category=failure.code.category,
            retryable=failure.code.retryable,
            message=failure.message,
            timestamp=failure.timestamp.isoformat(),
        )

    def to_dict(self) -> dict[str, str | bool]:
        return asdict(self)


# ──────────────────────── Response Builders ────────────────────────


def build_response(
    result: Result[T],
    success_status: int = 200,
    serializer: Callable[[T], Any] | None = None,
) -> tuple[Any, int]:
    """
    Build a (body, status_code) tuple from a Result.

        body, status = build_response(result, success_status=201, serializer=receipt_to_dict)
    """
    return result.either(
        on_success=lambda value: (
            serializer(value) if serializer is not None else value,
            success_status,
        ),
        on_failure=_error_response,
    )


def _error_response(failure: FailureDescription) -> tuple[dict[str, str | bool], int]:
    status = HttpStatusMapper.map_failure(failure)
    # server faults keep their traceback in the log, never in the body
    if status >= 500:
        log.error(
            "http.server_error",
            status=status,
            error_code=failure.code.value,
            detail=failure.full_stack_trace(),
        )
    return ErrorResponse.from_failure(failure).to_dict(), status


def build_fastapi_response(
    result: Result[T],
    success_status: int = 200,
    serializer: Callable[[T], Any] | None = None,
) -> JSONResponse:
    """Build a FastAPI JSONResponse from a Result."""
    body, status = build_response(result, success_status, serializer)
    return JSONResponse(content=body, status_code=status)
