"""
Exception hierarchy for the Taxi Manager client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so that every layer of the client (transport, token
refresh, credential storage, configuration) reports failures the same way.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the Taxi Manager client."""

    # Authentication errors (1000-1099)
    AUTH_INVALID_CREDENTIALS = "AUTH_1001"
    AUTH_TOKEN_EXPIRED = "AUTH_1002"
    AUTH_REFRESH_FAILED = "AUTH_1003"
    AUTH_REFRESH_TOKEN_MISSING = "AUTH_1004"
    AUTH_UNKNOWN_ROLE = "AUTH_1005"
    AUTH_NOT_AUTHENTICATED = "AUTH_1006"

    # Network errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # HTTP response errors (3000-3099)
    HTTP_CLIENT_ERROR = "HTTP_3001"
    HTTP_UNAUTHORIZED = "HTTP_3002"
    HTTP_SERVER_ERROR = "HTTP_3003"
    HTTP_MALFORMED_RESPONSE = "HTTP_3004"

    # Validation errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"

    # Credential storage errors (5000-5099)
    STORAGE_READ_FAILED = "STORAGE_5001"
    STORAGE_WRITE_FAILED = "STORAGE_5002"

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
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class TaxiManagerError(Exception):
    """
    Base exception class for all Taxi Manager client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[BaseException] = None,
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

        if cause is not None:
            self.__cause__ = cause
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
        """Get the HTTP status code this error corresponds to."""
        code_mapping = {
            ErrorCode.AUTH_INVALID_CREDENTIALS: 401,
            ErrorCode.AUTH_TOKEN_EXPIRED: 401,
            ErrorCode.AUTH_REFRESH_FAILED: 401,
            ErrorCode.AUTH_REFRESH_TOKEN_MISSING: 401,
            ErrorCode.AUTH_NOT_AUTHENTICATED: 401,
            ErrorCode.AUTH_UNKNOWN_ROLE: 403,
            ErrorCode.HTTP_UNAUTHORIZED: 401,
            ErrorCode.HTTP_CLIENT_ERROR: 400,
            ErrorCode.VALIDATION_INVALID_INPUT: 400,
            ErrorCode.HTTP_SERVER_ERROR: 502,
            ErrorCode.HTTP_MALFORMED_RESPONSE: 502,
            ErrorCode.NETWORK_TIMEOUT: 408,
        }

        return code_mapping.get(self.error_code, 500)


class AuthenticationError(TaxiManagerError):
    """Authentication related errors. The user has to log in again."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_INVALID_CREDENTIALS, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.REAUTHENTICATE])
        super().__init__(message=message, error_code=error_code, **kwargs)


class TokenRefreshError(AuthenticationError):
    """The refresh exchange failed; the whole refresh wave is terminal."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_REFRESH_FAILED, **kwargs):
        kwargs.setdefault('user_message', "Your session has expired. Please log in again.")
        super().__init__(message=message, error_code=error_code, **kwargs)


class NetworkError(TaxiManagerError):
    """Transport errors: unreachable server, connection reset, timeout."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF],
            **kwargs
        )


class APIResponseError(TaxiManagerError):
    """The server answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        detail: Optional[str] = None,
        payload: Any = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        **kwargs
    ):
        context = kwargs.pop('context', {})
        context.update({'status_code': status_code, 'method': method, 'path': path})

        if status_code == 401:
            error_code = ErrorCode.HTTP_UNAUTHORIZED
            recovery_actions = [RecoveryAction.REFRESH_TOKEN]
        elif status_code >= 500:
            error_code = ErrorCode.HTTP_SERVER_ERROR
            recovery_actions = [RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.CONTACT_ADMIN]
        else:
            error_code = ErrorCode.HTTP_CLIENT_ERROR
            recovery_actions = [RecoveryAction.USER_INTERVENTION]

        super().__init__(
            message=message,
            error_code=kwargs.pop('error_code', error_code),
            severity=kwargs.pop('severity', ErrorSeverity.MEDIUM),
            recovery_actions=kwargs.pop('recovery_actions', recovery_actions),
            context=context,
            **kwargs
        )
        self.status_code = status_code
        self.detail = detail
        self.payload = payload
        self.method = method
        self.path = path

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    def get_http_status_code(self) -> int:
        return self.status_code


class CredentialStoreError(TaxiManagerError):
    """Credential storage read or write failures."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_READ_FAILED, key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if key:
            context['key'] = key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.REAUTHENTICATE],
            context=context,
            **kwargs
        )


class ConfigurationError(TaxiManagerError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
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


class ValidationError(TaxiManagerError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
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


def handle_exception(
    exception: BaseException,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> TaxiManagerError:
    """
    Convert a generic exception to a structured TaxiManagerError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Error code used when no specific mapping exists

    Returns:
        Structured TaxiManagerError
    """
    if isinstance(exception, TaxiManagerError):
        return exception

    if isinstance(exception, TimeoutError):
        return NetworkError(str(exception) or "Request timed out", ErrorCode.NETWORK_TIMEOUT,
                            context=context, cause=exception)
    if isinstance(exception, ConnectionError):
        return NetworkError(str(exception), ErrorCode.NETWORK_CONNECTION_FAILED,
                            context=context, cause=exception)
    if isinstance(exception, ValueError):
        return ValidationError(str(exception), context=context, cause=exception)

    return TaxiManagerError(
        message=str(exception) or type(exception).__name__,
        error_code=default_error_code,
        context=context,
        cause=exception
    )
