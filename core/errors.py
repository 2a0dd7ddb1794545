"""Typed error outcomes for the fulfillment pipeline.

Every failure the core reports to a caller is one of these types. None of
them is retried by the core; retry policy belongs to the calling layer.
"""

from typing import Any, Dict, Optional


class FulfillmentError(Exception):
    """Base exception for fulfillment pipeline errors."""

    code = "FULFILLMENT_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(FulfillmentError):
    """Malformed input that the caller must correct."""
    code = "VALIDATION_ERROR"


class NotFound(FulfillmentError):
    """Referenced aggregate does not exist."""
    code = "NOT_FOUND"


class InvalidTransition(FulfillmentError):
    """Requested state edge is not legal; nothing was mutated."""
    code = "INVALID_TRANSITION"


class StaleState(FulfillmentError):
    """Stored status differs from the caller's expected status.

    The caller must re-read current state and retry, or surface the conflict.
    """
    code = "STALE_STATE"

    def __init__(self, message: str, expected: Any = None, actual: Any = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("expected", _value(expected))
        details.setdefault("actual", _value(actual))
        super().__init__(message, details)
        self.expected = expected
        self.actual = actual


class Unauthorized(FulfillmentError):
    """Actor role or invite token does not permit the action."""
    code = "UNAUTHORIZED"


class IncompleteGate(FulfillmentError):
    """Checklist or signature missing at completion time; session stays open."""
    code = "INCOMPLETE_GATE"


def _value(status: Any) -> Any:
    return getattr(status, "value", status)
