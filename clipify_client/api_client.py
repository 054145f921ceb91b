"""
Authenticated HTTP API Client for the Clipify desktop client.

This module wraps outbound API calls with bearer-token attachment, a single
refresh-and-retry on 401, conversion of unrecoverable authentication failures
into a forced logout, and typed errors for every other non-2xx response.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, TYPE_CHECKING

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from clipify_client.auth.token_refresh import TokenRefreshService
from clipify_client.auth.token_storage import SecureTokenStorage
from clipify_shared.exceptions import (
    ApiError, NetworkError, TokenExpiredError, UnauthorizedError,
    TokenStorageError, ErrorCode
)
from clipify_shared.interfaces import INotificationService
from clipify_shared.logging_config import log_structured_error
from clipify_shared.models import ApiResponse

if TYPE_CHECKING:
    from clipify_client.auth.error_handler import AuthErrorHandler

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."

_ERROR_NOTIFICATIONS = {
    "server error": ("Server Error", "A server error occurred. Please try again later."),
    "access denied": ("Access Denied", "You do not have permission to perform this action."),
    "not found": ("Not Found", "The requested resource was not found."),
}


class AuthenticatedAPIClient:
    """
    HTTP client for the Clipify API.

    Requests that require authentication fail fast with TokenExpiredError
    when no valid access token is stored. A 401 triggers one token refresh
    and one retry; a second 401, or a failed refresh, forces a logout and
    raises UnauthorizedError.
    """

    def __init__(
        self,
        base_url: str,
        token_storage: SecureTokenStorage,
        refresh_service: TokenRefreshService,
        error_handler: Optional['AuthErrorHandler'] = None,
        notifications: Optional[INotificationService] = None,
        timeout: float = 30.0,
        session: Optional[ClientSession] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.token_storage = token_storage
        self.refresh_service = refresh_service
        self.error_handler = error_handler
        self.notifications = notifications
        self.default_timeout = timeout

        self._session = session
        self._owns_session = session is None

        logger.info(f"API client initialized for server: {self.base_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                headers={'User-Agent': 'ClipifyDesktop/1.0'}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def update_base_url(self, base_url: str) -> None:
        self.base_url = base_url.rstrip('/')
        logger.info(f"API base URL updated to: {self.base_url}")

    def set_default_timeout(self, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError("Timeout must be positive")
        self.default_timeout = timeout

    def _build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _build_headers(self, custom_headers: Optional[Dict[str, str]], requires_auth: bool) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        headers.update(custom_headers or {})

        if requires_auth:
            access_token = self.token_storage.get_access_token()
            if not access_token:
                logger.warning("No valid access token available for authenticated request")
                raise TokenExpiredError()
            headers['Authorization'] = f'Bearer {access_token}'

        return headers

    async def request(
        self,
        endpoint: str,
        method: str = 'GET',
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        timeout: Optional[float] = None,
        requires_auth: bool = True
    ) -> ApiResponse:
        """
        Make an API request.

        Args:
            endpoint: Path relative to the base URL
            method: HTTP method
            headers: Extra request headers
            body: JSON-serializable request body
            timeout: Timeout in seconds, defaults to the client default
            requires_auth: Whether to attach the bearer token

        Returns:
            The parsed response

        Raises:
            TokenExpiredError: No valid access token for an authenticated request
            UnauthorizedError: Authentication failed and the user was logged out
            ApiError: Any other non-2xx response
            NetworkError: Timeout or transport failure
        """
        method = method.upper()
        url = self._build_url(endpoint)
        timeout = timeout or self.default_timeout
        request_headers = self._build_headers(headers, requires_auth)

        logger.debug(f"Making {method} request to {url} (auth: {requires_auth})")
        response = await self._send(method, url, request_headers, body, timeout)

        if response.status == 401 and requires_auth:
            if not await self.refresh_service.refresh_token():
                await self._force_logout(f"{method} {endpoint}", "token refresh failed")
                raise UnauthorizedError(status=401)

            logger.info("Retrying request after token refresh")
            retry_headers = self._build_headers(headers, requires_auth)
            response = await self._send(method, url, retry_headers, body, timeout)

            if response.status == 401:
                await self._force_logout(f"{method} {endpoint}", "request unauthorized after token refresh")
                raise UnauthorizedError(status=401)

        if not response.ok:
            await self._raise_http_error(response, endpoint)

        logger.debug(f"{method} {url} succeeded with status {response.status}")
        return response

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
        timeout: float
    ) -> ApiResponse:
        session = await self._ensure_session()
        try:
            async with session.request(
                method=method,
                url=url,
                json=body,
                headers=headers,
                timeout=ClientTimeout(total=timeout)
            ) as response:
                data = await self._parse_response(response)
                return ApiResponse(
                    data=data,
                    status=response.status,
                    status_text=response.reason or "",
                    headers=dict(response.headers)
                )
        except asyncio.TimeoutError as e:
            logger.error(f"API request timeout: {method} {url}")
            raise NetworkError(
                f"Request timeout after {timeout}s",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                context={'method': method, 'url': url},
                cause=e
            )
        except ClientError as e:
            logger.error(f"API request failed: {method} {url}: {e}")
            raise NetworkError(
                f"Request failed: {e}",
                context={'method': method, 'url': url},
                cause=e
            )

    async def _parse_response(self, response) -> Any:
        content_type = response.headers.get('Content-Type', '')

        if 'application/json' in content_type:
            try:
                return await response.json(content_type=None)
            except ValueError:
                return await response.text()

        if content_type.startswith('text/'):
            return await response.text()

        raw = await response.read()
        return raw or None

    async def _raise_http_error(self, response: ApiResponse, endpoint: str) -> None:
        data = response.data
        message = None
        if isinstance(data, dict):
            message = data.get('message') or data.get('detail')
        if not message:
            message = f"HTTP {response.status}: {response.status_text}"

        error = ApiError(
            message,
            status=response.status,
            status_text=response.status_text,
            data=data,
            context={'endpoint': endpoint}
        )
        log_structured_error(logger, error)

        title, user_message = _ERROR_NOTIFICATIONS.get(
            error.category,
            ("Request Error", message or "There was an error with your request.")
        )
        if self.notifications is not None:
            await self.notifications.error(title, user_message)

        raise error

    async def _force_logout(self, context: str, reason: str) -> None:
        """Drop credentials and hand the failure to the auth error handler."""
        logger.warning(f"Authentication lost during {context}: {reason}, logging out")

        try:
            self.token_storage.clear_all_tokens()
        except TokenStorageError as e:
            logger.error(f"Failed to clear tokens during forced logout: {e}")

        if self.error_handler is not None:
            await self.error_handler.handle_auth_error(
                UnauthorizedError(f"Authentication required: {reason}", status=401),
                context=context
            )

        if self.notifications is not None:
            await self.notifications.error("Authentication Error", SESSION_EXPIRED_MESSAGE)

    async def get(self, endpoint: str, **options) -> ApiResponse:
        return await self.request(endpoint, method='GET', **options)

    async def post(self, endpoint: str, body: Any = None, **options) -> ApiResponse:
        return await self.request(endpoint, method='POST', body=body, **options)

    async def put(self, endpoint: str, body: Any = None, **options) -> ApiResponse:
        return await self.request(endpoint, method='PUT', body=body, **options)

    async def delete(self, endpoint: str, **options) -> ApiResponse:
        return await self.request(endpoint, method='DELETE', **options)

    async def patch(self, endpoint: str, body: Any = None, **options) -> ApiResponse:
        return await self.request(endpoint, method='PATCH', body=body, **options)

    def is_authenticated(self) -> bool:
        return self.token_storage.has_valid_access_token()

    def get_access_token(self) -> Optional[str]:
        return self.token_storage.get_access_token()
