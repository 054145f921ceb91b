"""
Authentication error classification and handling.

Recognizes authentication failures among arbitrary errors and turns the first
one of a burst into a single logout.
"""

import logging
from typing import Optional, Tuple

from clipify_client.auth.auth_service import AuthService
from clipify_shared.exceptions import AuthenticationError, ClipifyError
from clipify_shared.logging_config import AuditLogger

logger = logging.getLogger(__name__)

AUTH_ERROR_PATTERNS: Tuple[str, ...] = (
    'authentication_required',
    'unauthorized',
    'invalid or expired token',
    'token refresh failed',
    '401',
    '403',
)


def _error_text(error: object) -> str:
    if isinstance(error, ClipifyError):
        return error.message
    if isinstance(error, BaseException):
        return str(error)
    message = getattr(error, 'message', None)
    return message if isinstance(message, str) else str(error)


class AuthErrorHandler:
    """
    Routes authentication failures to a logout on the auth service.

    Only one failure is handled at a time. Callers arriving while a logout
    is in progress return immediately without triggering another one.
    """

    def __init__(self, auth_service: AuthService):
        self.auth_service = auth_service
        self._is_handling = False
        self._audit = AuditLogger()

    @property
    def is_handling(self) -> bool:
        return self._is_handling

    def is_auth_error(self, error: object) -> bool:
        """Check whether an error signals lost or invalid authentication."""
        if error is None:
            return False
        if isinstance(error, AuthenticationError):
            return True

        text = _error_text(error).lower()
        return any(pattern in text for pattern in AUTH_ERROR_PATTERNS)

    async def handle_auth_error(self, error: object, context: str = "unknown") -> bool:
        """
        Log the user out in response to an authentication error.

        Returns:
            True if this call triggered a logout, False for errors that are
            not authentication related or while another one is being handled
        """
        if self._is_handling:
            logger.debug(f"Already handling an auth error, ignoring error from {context}")
            return False

        self._is_handling = True
        try:
            if not self.is_auth_error(error):
                logger.debug(f"Ignoring non-authentication error from {context}")
                return False

            logger.warning(f"Authentication error in {context}: {_error_text(error)}")
            user = self.auth_service.get_current_user()
            self._audit.log_logout(user_id=user.id if user else None, forced=True)

            try:
                await self.auth_service.logout()
            except Exception as e:
                logger.error(f"Failed to logout after auth error: {e}")
            return True
        finally:
            self._is_handling = False

    async def handle_error(self, error: object, context: str = "unknown") -> Optional[bool]:
        """
        Handle an error only if it is authentication related.

        Returns:
            None for unrelated errors, otherwise the result of handle_auth_error
        """
        if not self.is_auth_error(error):
            return None
        return await self.handle_auth_error(error, context)
