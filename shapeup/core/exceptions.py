"""
Error taxonomy for the challenge core.

Every error carries the HTTP status the API layer should answer with, so
endpoints can let them propagate and the app-level handler renders them.
"""

from typing import Any, Dict, Optional


class ShapeUpError(Exception):
    """Base exception class for ShapeUp"""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self) -> Dict[str, Any]:
        rv = dict(self.payload or ())
        rv["detail"] = self.message
        return rv


class ValidationError(ShapeUpError):
    """Raised when input validation fails"""

    def __init__(self, message="Validation error", payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(ShapeUpError):
    """Raised when a challenge, participant or record does not exist"""

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ForbiddenError(ShapeUpError):
    """Raised when the acting user may not perform the operation"""

    def __init__(self, message="Forbidden", payload=None):
        super().__init__(message, 403, payload)


class IllegalStateError(ShapeUpError):
    """Raised when the challenge is in the wrong state for the operation"""

    def __init__(self, message="Illegal state", payload=None):
        super().__init__(message, 409, payload)
