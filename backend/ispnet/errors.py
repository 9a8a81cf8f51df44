"""
Error types raised by the allocation services.

Each class carries the HTTP status it maps to and an optional payload that
is merged into the JSON error body by the handler registered in main.py:

    {"detail": "<message>", ...payload}
"""
from typing import Any, Dict, Optional


class IPAMError(Exception):
    """Base class for expected errors. Messages are safe to show to operators."""
    status_code = 400

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, **self.payload}


class ValidationFailed(IPAMError):
    """Request is structurally valid JSON but semantically unusable."""


class InvalidCIDR(IPAMError):
    """Malformed CIDR, or host bits set. Always carries a suggested correction."""

    def __init__(self, message: str, suggestion: str):
        super().__init__(message, {"correctedCIDR": suggestion})
        self.suggestion = suggestion


class SubnetTooLarge(IPAMError):
    pass


class AlreadyGenerated(IPAMError):
    pass


class GenerationIncomplete(IPAMError):
    """A batch failed after earlier batches were committed."""
    status_code = 500


class OverlapConflict(IPAMError):
    status_code = 409


class NotAvailable(IPAMError):
    pass


class PoolExhausted(IPAMError):
    status_code = 404


class NotFound(IPAMError):
    status_code = 404


class HasDependents(IPAMError):
    pass


class ActiveServiceExists(IPAMError):
    pass


class RouterUnavailable(IPAMError):
    status_code = 404
