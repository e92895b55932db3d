from typing import Any, Dict, Optional

from fastapi import status


class BaseAppException(Exception):
    def __init__(self, code: str, message: str, http_status: int, extra: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra or {}
        super().__init__(message)

    def to_detail(self) -> Dict[str, Any]:
        detail = {"code": self.code, "message": self.message}
        detail.update(self.extra)
        return detail

class NotFoundError(BaseAppException):
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_404_NOT_FOUND)

class ConflictError(BaseAppException):
    def __init__(self, code: str, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, status.HTTP_409_CONFLICT, extra)

class ValidationAppError(BaseAppException):
    def __init__(self, code: str, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, status.HTTP_400_BAD_REQUEST, extra)

class AccountConflictError(ValidationAppError):
    """Account state conflicts reported as 400 with a machine-readable code
    (EMAIL_EXISTS, USE_GOOGLE, INVALID_CODE, CODE_EXPIRED)."""

class AuthenticationError(BaseAppException):
    def __init__(self, code: str = "UNAUTHORIZED", message: str = "authentication required"):
        super().__init__(code, message, status.HTTP_401_UNAUTHORIZED)

class InternalServerError(BaseAppException):
    def __init__(self, message: str = "internal error"):
        super().__init__("INTERNAL_ERROR", message, status.HTTP_500_INTERNAL_SERVER_ERROR)
