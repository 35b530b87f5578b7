"""
Error taxonomy for the experimentation engine.

Every failure surfaced to callers carries a stable code and a message, so the
HTTP adapter (or any other caller) can map it without parsing text.
"""

from enum import Enum
from typing import Dict


class ErrorCode(str, Enum):
    """Stable error codes."""
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    NOT_IN_TRAFFIC = "NOT_IN_TRAFFIC"
    NOT_RUNNING = "NOT_RUNNING"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    RECORD_FAILED = "RECORD_FAILED"
    AGGREGATION_FAILED = "AGGREGATION_FAILED"


# Expected non-assignment outcomes: "no experience assigned", not a fault.
BENIGN_CODES = frozenset({ErrorCode.NOT_ELIGIBLE, ErrorCode.NOT_IN_TRAFFIC})

# Only persistence failures on metric writes are safe to retry.
RETRYABLE_CODES = frozenset({ErrorCode.RECORD_FAILED, ErrorCode.AGGREGATION_FAILED})


class ExperimentError(Exception):
    """Structured engine error with a ``{code, message}`` shape."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(f"{code.value}: {message}")
        self.code = code
        self.message = message

    @property
    def benign(self) -> bool:
        return self.code in BENIGN_CODES

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code.value, "message": self.message}


def validation_error(message: str) -> ExperimentError:
    return ExperimentError(ErrorCode.VALIDATION, message)


def not_found(message: str) -> ExperimentError:
    return ExperimentError(ErrorCode.NOT_FOUND, message)
