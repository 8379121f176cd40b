"""
cloudmgr error types: one exception per outcome category.
"""

from typing import Any, Optional


class CloudMgrError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class AuthError(CloudMgrError):
    def __init__(self, message: str, code: str = "auth_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class SessionError(CloudMgrError):
    def __init__(self, message: str, code: str = "session_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class NoSessionError(SessionError):
    """Raised when no connect has happened in this process."""

    def __init__(self, message: str = "Not connected. Call connect() first."):
        super().__init__(message, code="no_session")


class ValidationError(CloudMgrError):
    def __init__(self, message: str, problems: Optional[list[str]] = None):
        super().__init__("invalid_request", message, {"problems": problems or []})
        self.problems = problems or []


class APIError(CloudMgrError):
    def __init__(
        self,
        message: str,
        code: str = "api_error",
        status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
        self.status = status


class TransientError(APIError):
    def __init__(self, message: str, status: Optional[int] = None, code: str = "transient_exhausted"):
        super().__init__(message, code=code, status=status)


class PaginationError(APIError):
    def __init__(self, message: str, code: str = "pagination_exhausted"):
        super().__init__(message, code=code)


class PartialSuccessError(APIError):
    def __init__(self, message: str, items: list[Any], status: Optional[int] = None):
        super().__init__(message, code="partial_success", status=status, details={"items": items})
        self.items = items


class CancelledError(CloudMgrError):
    def __init__(self, message: str = "Request cancelled", code: str = "cancelled"):
        super().__init__(code, message)
