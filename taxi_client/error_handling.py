"""
Error handling for the Taxi Manager client.

This module turns API and transport failures into messages that can be shown
to the user, keeps a short error history, and dispatches recovery callbacks
(for example routing the user back to the login screen when the session
expired).
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable, List

from taxi_shared.exceptions import (
    TaxiManagerError, RecoveryAction, APIResponseError, AuthenticationError,
    NetworkError, handle_exception
)
from taxi_shared.logging_config import log_structured_error, AuditLogger

logger = logging.getLogger(__name__)

GENERIC_REQUEST_MESSAGE = "The request could not be completed. Please try again."
SERVER_ERROR_MESSAGE = "Server error. Please try again later."
CONNECTION_MESSAGE = "Could not connect to the server. Check your network connection."
CONFIGURATION_MESSAGE = "The request could not be prepared. Contact technical support."


def describe_api_error(error: BaseException) -> str:
    """
    Message suitable for showing to the user.

    4xx answers use the server's ``detail``/``error`` field when present,
    5xx answers and transport failures get fixed messages.
    """
    if isinstance(error, APIResponseError):
        logger.error(f"Error {error.status_code}: {error.payload!r}")
        if error.status_code >= 500:
            return SERVER_ERROR_MESSAGE
        if isinstance(error.payload, dict):
            message = error.payload.get('detail') or error.payload.get('error')
            if message:
                return str(message)
        return GENERIC_REQUEST_MESSAGE

    if isinstance(error, NetworkError):
        logger.error(f"No response received: {error.message}")
        return CONNECTION_MESSAGE

    if isinstance(error, AuthenticationError):
        return error.user_message

    logger.error(f"Request setup error: {error}")
    return CONFIGURATION_MESSAGE


class ClientErrorHandler:
    """
    Centralized error handling for client front ends.

    Logs structured errors, records them for diagnostics and runs the
    callback registered for the error's first recovery action.
    """

    def __init__(self, max_history: int = 50):
        self._error_history: List[Dict[str, Any]] = []
        self._max_history = max_history
        self._recovery_callbacks: Dict[RecoveryAction, Callable[[TaxiManagerError], None]] = {}
        self._audit_logger = AuditLogger("client_audit")

        logger.debug("Client error handler initialized")

    def register_recovery_callback(self, action: RecoveryAction, callback: Callable[[TaxiManagerError], None]):
        """Register a callback function for a specific recovery action."""
        self._recovery_callbacks[action] = callback
        logger.debug(f"Recovery callback registered for action: {action.value}")

    def handle_error(
        self,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None,
        auto_recover: bool = True
    ) -> str:
        """
        Handle an error and return the message to display.

        Args:
            error: The error that occurred
            context: Additional context information
            auto_recover: Whether to run the registered recovery callback

        Returns:
            User-facing message
        """
        structured_error = handle_exception(error, context)

        self._add_to_error_history(structured_error)
        log_structured_error(logger, structured_error)
        self._audit_logger.log_error(structured_error)

        if auto_recover:
            self._attempt_recovery(structured_error)

        return describe_api_error(structured_error)

    def _attempt_recovery(self, error: TaxiManagerError) -> bool:
        for action in error.recovery_actions:
            callback = self._recovery_callbacks.get(action)
            if callback is None:
                continue
            try:
                callback(error)
                logger.info(f"Recovery action {action.value} executed")
                return True
            except Exception as e:
                logger.error(f"Recovery action {action.value} failed: {e}")
                return False
        return False

    def _add_to_error_history(self, error: TaxiManagerError):
        self._error_history.append({
            'timestamp': datetime.now().isoformat(),
            'error_code': error.error_code.value,
            'message': error.message,
            'severity': error.severity.value,
        })
        if len(self._error_history) > self._max_history:
            self._error_history = self._error_history[-self._max_history:]

    def get_error_history(self) -> List[Dict[str, Any]]:
        return list(self._error_history)

    def clear_error_history(self):
        self._error_history.clear()
