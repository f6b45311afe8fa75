"""
Execution contexts — separate WHAT (pure stage logic) from HOW it runs.

A context wraps a Result-returning computation with cross-cutting
behaviour. The ingestion pipeline runs inside a LoggingExecutionContext so
every upload produces one start line and one completion line with duration
and outcome, regardless of which stage decided it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol, TypeVar, runtime_checkable

import structlog

from crl_publisher.railway.failure import ErrorCode, FailureDescription
from crl_publisher.railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger()


@runtime_checkable
class ExecutionContext(Protocol):
    """Any class implementing execute(computation) satisfies this protocol."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]: ...


class NoOpExecutionContext:
    """Passthrough execution context — runs computation without any wrapper."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Execution context that logs entry, exit, duration, and result state.

    Wraps another context (decorator pattern). An exception escaping the
    computation is converted to an UNKNOWN_ERROR failure so the caller always
    receives a Result.

        ctx = LoggingExecutionContext(operation="CrlIngestion")
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        log.debug("execution.started", operation=self._operation)
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except Exception as e:
            elapsed = time.monotonic() - start
            log.exception(
                "execution.crashed",
                operation=self._operation,
                elapsed_seconds=round(elapsed, 3),
            )
            return Failure(
                FailureDescription(ErrorCode.UNKNOWN_ERROR, f"Execution failed: {e}", e)
            )

        elapsed = time.monotonic() - start
        if result.is_success():
            log.info(
                "execution.completed",
                operation=self._operation,
                elapsed_seconds=round(elapsed, 3),
                outcome="success",
            )
        else:
            failure = result.error()
            log.info(
                "execution.completed",
                operation=self._operation,
                elapsed_seconds=round(elapsed, 3),
                outcome="failure",
                error_code=failure.code.value,
                category=failure.code.category,
            )
        return result
