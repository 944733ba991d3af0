from __future__ import annotations

from typing import Any, Dict, Optional


class AllowlistError(Exception):
    """
    Base error for verification and selection.

    kind    - error family shown to callers ("ValidationError", ...).
    code    - stable machine code (NO_SPOTS_AVAILABLE, EVENT_NOT_FOUND, ...).
    message - safe human-readable message.
    details - optional structured context (spots available, counts, ids).
    """

    kind = "AllowlistError"
    default_code = "ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details: Dict[str, Any] = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.kind,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(AllowlistError):
    """Malformed input; raised before any side effect."""

    kind = "ValidationError"
    default_code = "VALIDATION_ERROR"


class NotFoundError(AllowlistError):
    kind = "NotFoundError"
    default_code = "NOT_FOUND"


class CapacityError(AllowlistError):
    """NO_SPOTS_AVAILABLE or TOO_MANY_WINNERS."""

    kind = "CapacityError"
    default_code = "NO_SPOTS_AVAILABLE"


class EligibilityError(AllowlistError):
    """NO_ELIGIBLE_ENTRIES, INELIGIBLE_ENTRIES, INVALID_ENTRY_STATUS, ..."""

    kind = "EligibilityError"
    default_code = "NO_ELIGIBLE_ENTRIES"


class ExternalDependencyError(AllowlistError):
    """Discord/Solana facts, or the announcement bot, could not be reached."""

    kind = "ExternalDependencyError"
    default_code = "EXTERNAL_DEPENDENCY_FAILED"


class InternalError(AllowlistError):
    kind = "InternalError"
    default_code = "INTERNAL_ERROR"


class RateLimitedError(ValidationError):
    default_code = "RATE_LIMITED"


def error_payload(exc: BaseException) -> Dict[str, Any]:
    """Structured {error, code, message} for any exception; unknown ones are masked."""
    if isinstance(exc, AllowlistError):
        return exc.to_payload()
    return InternalError("Unexpected internal error.").to_payload()
