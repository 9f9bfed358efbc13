"""
Domain exceptions for the Plurr API.

Entity-store and upload functions raise these; the exception handler
registered in main.py turns them into JSON responses with the matching
status code. Unexpected errors never reach the client verbatim.
"""

from typing import Any, Dict, Optional


class PlurrError(Exception):
    """Base exception carrying an HTTP status and a machine-readable code."""

    def __init__(
        self,
        message: str,
        code: str = "PLURR_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
        }
        if self.details:
            result["details"] = self.details
        return result


class InvalidInputError(PlurrError):
    """Missing or malformed fields."""

    def __init__(self, message: str = "Invalid input", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="INVALID_INPUT", status_code=400, details=details)


class UnsupportedMediaTypeError(PlurrError):
    def __init__(self, content_type: Optional[str], allowed: list):
        super().__init__(
            "Non JPEG Image File",
            code="UNSUPPORTED_MEDIA_TYPE",
            status_code=400,
            details={"content_type": content_type, "allowed_types": allowed},
        )


class PayloadTooLargeError(PlurrError):
    def __init__(self, size_bytes: int, max_bytes: int):
        super().__init__(
            "File Size Too Large",
            code="PAYLOAD_TOO_LARGE",
            status_code=400,
            details={"size_bytes": size_bytes, "max_bytes": max_bytes},
        )


class UnauthorizedError(PlurrError):
    """No authenticated user on a request that needs one."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, code="UNAUTHORIZED", status_code=403)


class ForbiddenError(PlurrError):
    """Authenticated user is not allowed to perform the mutation."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="FORBIDDEN", status_code=403)


class NotFoundError(PlurrError):
    def __init__(self, resource: str, identifier: Optional[str] = None):
        details = {"id": identifier} if identifier is not None else None
        super().__init__(f"{resource} not found", code="NOT_FOUND", status_code=404, details=details)


class ResourceExhaustedError(PlurrError):
    """Identifier allocation ran out of attempts."""

    def __init__(self, what: str, attempts: int):
        super().__init__(
            f"Could not allocate a unique {what} after {attempts} attempts",
            code="RESOURCE_EXHAUSTED",
            status_code=500,
        )


class InternalError(PlurrError):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, code="INTERNAL_ERROR", status_code=500)
