"""
Error taxonomy surfaced to tool callers.

Upstream wording never leaks into ``message``; it is kept under ``details``
for diagnostics only.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    INVALID_INPUT = "INVALID_INPUT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    TOOL_ERROR = "TOOL_ERROR"


# Only these are retried by the HTTP client
RETRYABLE_CODES = frozenset({ErrorCode.RATE_LIMIT, ErrorCode.UPSTREAM_ERROR})

# These abort a whole fan-out instead of degrading one branch
FATAL_CODES = frozenset({ErrorCode.UNAUTHORIZED, ErrorCode.INVALID_INPUT})


class ApiError(Exception):
    """An upstream or local failure mapped onto the fixed error taxonomy."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.details = details or {}
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    @property
    def fatal(self) -> bool:
        return self.code in FATAL_CODES

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload

    def __repr__(self) -> str:
        return f"ApiError({self.code.value}, {self.message!r})"


class ConfigurationError(ValueError):
    """Raised at startup when the environment cannot produce a working server."""


def aborts_fan_out(exc: BaseException) -> bool:
    """Whether a branch failure must abort the whole fan-out rather than degrade."""
    return isinstance(exc, ApiError) and exc.fatal
