"""
Custom Exceptions
Application-specific exception classes
"""

from datetime import datetime
from typing import Any, Dict, Optional


class AppException(Exception):
    """Base application exception"""

    def __init__(
        self,
        message: str,
        code: str = "app_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(self.message)


class ValidationException(AppException):
    """Validation error exception"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="validation_error",
            status_code=400,
            details=details,
        )


class AuthenticationException(AppException):
    """Authentication error exception"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="authentication_error",
            status_code=401,
            details=details,
        )


class AuthorizationException(AppException):
    """Authorization error exception"""

    def __init__(
        self,
        message: str = "Permission denied",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="authorization_error",
            status_code=403,
            details=details,
        )


class AccessDeniedException(AppException):
    """Session-level data room access denied"""

    def __init__(
        self,
        message: str = "Access denied",
        requires_activation: bool = False,
        requires_2fa: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if requires_activation:
            details["requires_activation"] = True
        if requires_2fa:
            details["requires_2fa"] = True
        super().__init__(
            message=message,
            code="access_denied",
            status_code=403,
            details=details,
        )

