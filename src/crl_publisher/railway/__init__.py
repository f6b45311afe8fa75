"""
Railway-Oriented Programming primitives used across the ingestion pipeline.

    from crl_publisher.railway import Result, ErrorCode

    # crl_publisher.pipeline.select_decoding, abridged
    def select_decoding(content_type: str | None) -> Result[bool]:
        media_type = (content_type or "").split(";", 1)[0].strip().lower()
        if media_type.startswith("text/"):
            return Result.success(True)
        if media_type in DER_MEDIA_TYPES:
            return Result.success(False)
        return Result.failure(
            ErrorCode.UNSUPPORTED_MEDIA_TYPE, f"Unsupported content type {media_type}"
        )
"""

from crl_publisher.railway.assertions import ResultAssertions
from crl_publisher.railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from crl_publisher.railway.failure import ErrorCode, FailureDescription
from crl_publisher.railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]
