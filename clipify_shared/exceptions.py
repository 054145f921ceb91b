"""
Exception hierarchy for the Clipify desktop authentication subsystem.

This module defines structured exceptions with error codes, context information,
and recovery suggestions. Authentication failures are raised as typed variants
at the point where they occur so callers never need to inspect message text.
"""

import asyncio
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum

from aiohttp import ClientError


class ErrorCode(Enum):
    """Standardized error codes."""

    # Authentication errors (1000-1099)
    AUTH_INVALID_TOKEN = "AUTH_1001"
    AUTH_TOKEN_EXPIRED = "AUTH_1002"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_1003"
    AUTH_REFRESH_FAILED = "AUTH_1004"
    AUTH_REFRESH_REJECTED = "AUTH_1005"
    AUTH_REQUIRED = "AUTH_1006"

    # Network errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # Storage errors (3000-3099)
    STORAGE_NOT_INITIALIZED = "STORAGE_3001"
    STORAGE_WRITE_FAILED = "STORAGE_3002"
    STORAGE_READ_FAILED = "STORAGE_3003"
    STORAGE_BACKEND_UNAVAILABLE = "STORAGE_3004"

    # Validation errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"
    VALIDATION_INVALID_TOKEN_FORMAT = "VALIDATION_4002"

    # API errors (5000-5099)
    API_REQUEST_FAILED = "API_5001"
    API_ACCESS_DENIED = "API_5002"
    API_NOT_FOUND = "API_5003"
    API_SERVER_ERROR = "API_5004"

    # Callback errors (6000-6099)
    CALLBACK_PROVIDER_ERROR = "CALLBACK_6001"
    CALLBACK_MISSING_TOKEN = "CALLBACK_6002"
    CALLBACK_INVALID_URL = "CALLBACK_6003"

    # Configuration errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_VALUE = "CONFIG_8004"

    # Internal errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    REFRESH_TOKEN = "refresh_token"
    REAUTHENTICATE = "reauthenticate"
    USER_INTERVENTION = "user_intervention"
    IGNORE = "ignore"


class ClipifyError(Exception):
    """
    Base exception class for all Clipify client errors.

    Carries an error code, severity, context and recovery suggestions so that
    logging and user-facing messages stay consistent.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }

    def get_http_status_code(self) -> int:
        """Get the HTTP status code that best describes this error."""
        code_mapping = {
            ErrorCode.AUTH_INVALID_TOKEN: 401,
            ErrorCode.AUTH_TOKEN_EXPIRED: 401,
            ErrorCode.AUTH_REFRESH_REJECTED: 401,
            ErrorCode.AUTH_REQUIRED: 401,
            ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS: 403,
            ErrorCode.API_ACCESS_DENIED: 403,
            ErrorCode.API_NOT_FOUND: 404,
            ErrorCode.VALIDATION_INVALID_INPUT: 400,
            ErrorCode.VALIDATION_INVALID_TOKEN_FORMAT: 400,
            ErrorCode.NETWORK_TIMEOUT: 408,
        }

        return code_mapping.get(self.error_code, 500)


# Authentication variants

class AuthenticationError(ClipifyError):
    """Credential failures that require a token refresh or a new login."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_INVALID_TOKEN, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.REFRESH_TOKEN, RecoveryAction.REAUTHENTICATE])
        super().__init__(message=message, error_code=error_code, **kwargs)


class UnauthorizedError(AuthenticationError):
    """The server rejected our credentials (HTTP 401/403) and they could not be renewed."""

    def __init__(self, message: str = "Authentication required", status: Optional[int] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if status is not None:
            context['status'] = status
        self.status = status
        kwargs.setdefault('recovery_actions', [RecoveryAction.REAUTHENTICATE])
        super().__init__(message, error_code=ErrorCode.AUTH_REQUIRED, context=context, **kwargs)


class TokenExpiredError(AuthenticationError):
    """No usable access token is available."""

    def __init__(self, message: str = "Invalid or expired token", **kwargs):
        super().__init__(message, error_code=ErrorCode.AUTH_TOKEN_EXPIRED, **kwargs)


class TokenRefreshError(AuthenticationError):
    """Renewing the access token with the refresh token failed."""

    def __init__(self, message: str = "Token refresh failed", **kwargs):
        super().__init__(message, error_code=ErrorCode.AUTH_REFRESH_FAILED, **kwargs)


class NetworkError(ClipifyError):
    """Transport failures and timeouts. Never a reason to drop credentials."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        kwargs.setdefault('recovery_actions', [RecoveryAction.RETRY_WITH_BACKOFF])
        super().__init__(message=message, error_code=error_code, **kwargs)


class ApiError(ClipifyError):
    """Non-2xx response from the API."""

    def __init__(
        self,
        message: str,
        status: int,
        status_text: str = "",
        data: Any = None,
        **kwargs
    ):
        self.status = status
        self.status_text = status_text
        self.data = data
        context = kwargs.pop('context', None) or {}
        context.update({'status': status, 'status_text': status_text})
        super().__init__(
            message=message,
            error_code=self._code_for_status(status),
            context=context,
            **kwargs
        )

    @staticmethod
    def _code_for_status(status: int) -> ErrorCode:
        if status >= 500:
            return ErrorCode.API_SERVER_ERROR
        if status == 403:
            return ErrorCode.API_ACCESS_DENIED
        if status == 404:
            return ErrorCode.API_NOT_FOUND
        return ErrorCode.API_REQUEST_FAILED

    @property
    def category(self) -> str:
        """Coarse user-facing category derived only from the status code."""
        if self.status >= 500:
            return "server error"
        if self.status == 403:
            return "access denied"
        if self.status == 404:
            return "not found"
        return "request error"

    def get_http_status_code(self) -> int:
        return self.status


class CallbackError(ClipifyError):
    """A deep-link callback could not be turned into tokens."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CALLBACK_INVALID_URL, **kwargs):
        kwargs.setdefault('recovery_actions', [RecoveryAction.USER_INTERVENTION])
        super().__init__(message=message, error_code=error_code, **kwargs)


class TokenStorageError(ClipifyError):
    """Secure storage backend failures."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        super().__init__(message=message, error_code=error_code, **kwargs)


class StorageNotInitializedError(TokenStorageError):
    """Token accessors were used before the store was initialized."""

    def __init__(self, message: str = "Token storage not initialized", **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)
        super().__init__(message, error_code=ErrorCode.STORAGE_NOT_INITIALIZED, **kwargs)


class ValidationError(ClipifyError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if field_name:
            context['field_name'] = field_name

        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class ConfigurationError(ClipifyError):
    """Configuration related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None,
                 error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE, **kwargs):
        context = kwargs.pop('context', None) or {}
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> ClipifyError:
    """
    Convert a generic exception to a structured ClipifyError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Error code used when no specific mapping exists

    Returns:
        Structured ClipifyError
    """
    if isinstance(exception, ClipifyError):
        return exception

    if isinstance(exception, (asyncio.TimeoutError, TimeoutError)):
        return NetworkError(str(exception) or "Request timed out",
                            error_code=ErrorCode.NETWORK_TIMEOUT,
                            context=context, cause=exception)

    if isinstance(exception, (ConnectionError, ClientError)):
        return NetworkError(str(exception), context=context, cause=exception)

    if isinstance(exception, ValueError):
        return ValidationError(str(exception), context=context, cause=exception)

    return ClipifyError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
