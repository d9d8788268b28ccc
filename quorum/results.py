"""Result constructors and the operation-boundary guard.

Engine code builds its envelopes through these helpers so failure shapes
stay uniform. ``guarded`` wraps an async operation and converts any
unexpected exception into an operational failure, preserving the original
message in ``details``.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from pydantic import ValidationError

from quorum.schemas.result import ErrorCode, Result, ResultError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_NOT_FOUND_CODES = {
    "validation": ErrorCode.VALIDATION_NOT_FOUND,
    "expert": ErrorCode.EXPERT_NOT_FOUND,
    "feedback": ErrorCode.FEEDBACK_NOT_FOUND,
}


def success(data: Any = None) -> Result:
    """Build a successful Result carrying *data*."""
    return Result(success=True, data=data)


def failure(
    code: ErrorCode,
    message: str,
    details: dict[str, Any] | None = None,
) -> Result:
    """Build a failed Result."""
    return Result(
        success=False,
        error=ResultError(code=code, message=message, details=details or {}),
    )


def not_found(kind: str, resource_id: str) -> Result:
    """Failure for a missing validation, expert, or feedback record."""
    code = _NOT_FOUND_CODES.get(kind, ErrorCode.OPERATION_FAILED)
    return failure(
        code,
        f"{kind.capitalize()} not found: {resource_id}",
        {"kind": kind, "id": resource_id},
    )


def not_initialized(component: str) -> Result:
    """Failure for a call made before initialize() or after shutdown()."""
    return failure(
        ErrorCode.SYSTEM_NOT_INITIALIZED,
        f"{component} is not initialized",
        {"component": component},
    )


def propagate(result: Result) -> Result:
    """Re-wrap a failed Result so it can be returned under another payload type."""
    if result.error is None:
        return failure(ErrorCode.OPERATION_FAILED, "Unknown failure")
    return Result(success=False, error=result.error)


def from_validation_error(exc: ValidationError) -> Result:
    """Convert the first pydantic error into a MISSING_REQUIRED_FIELD/INVALID_DATA failure."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    if first.get("type") == "missing":
        return failure(
            ErrorCode.MISSING_REQUIRED_FIELD,
            f"Missing required field: {field}",
            {"field": field},
        )
    return failure(
        ErrorCode.INVALID_DATA,
        f"Invalid value for {field}: {first.get('msg', 'invalid')}",
        {"field": field, "value": first.get("input")},
    )


def guarded(
    message: str,
    code: ErrorCode = ErrorCode.OPERATION_FAILED,
) -> Callable[[Callable[P, Awaitable[Result]]], Callable[P, Awaitable[Result]]]:
    """Decorate an async operation so unexpected exceptions become failures.

    Args:
        message: Failure message used when the operation raises.
        code: Failure code used when the operation raises.
    """

    def decorator(
        func: Callable[P, Awaitable[Result]],
    ) -> Callable[P, Awaitable[Result]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                logger.exception("%s (%s)", message, func.__qualname__)
                return failure(code, message, {"error": str(e)})

        return wrapper

    return decorator
