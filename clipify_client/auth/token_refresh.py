"""
Token refresh for the Clipify desktop client.

Exchanges the stored refresh token for a new access token and rewrites the
token record in one piece. Concurrent callers share a single in-flight
exchange.
"""

import asyncio
import time
import logging
from typing import Optional, Dict, Any, Callable

from aiohttp import ClientSession, ClientTimeout, ClientError

from clipify_client.auth.token_storage import SecureTokenStorage
from clipify_shared.exceptions import TokenStorageError, ValidationError
from clipify_shared.logging_config import AuditLogger
from clipify_shared.models import TokenRecord, UserProfile

logger = logging.getLogger(__name__)

REFRESH_PATH = "/api/v1/auth/refresh"


class TokenRefreshService:
    """
    Performs the refresh-token exchange against the identity endpoint.

    refresh_token() returns False instead of raising. When the server rejects
    the refresh token (401/403) all stored credentials are cleared; any other
    failure leaves them untouched so a flaky network never logs the user out.
    """

    def __init__(
        self,
        token_storage: SecureTokenStorage,
        api_base_url: str,
        timeout: float = 30.0,
        session: Optional[ClientSession] = None,
        clock: Callable[[], float] = time.time
    ):
        self.token_storage = token_storage
        self.api_base_url = api_base_url.rstrip('/')
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._inflight: Optional[asyncio.Future] = None
        self._audit = AuditLogger()

    async def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this service created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def is_refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def refresh_token(self) -> bool:
        """
        Refresh the access token.

        Callers arriving while an exchange is already running wait for it and
        receive its result instead of starting a second exchange.

        Returns:
            True if a new access token was stored
        """
        task = self._inflight
        if task is None or task.done():
            task = asyncio.ensure_future(self._perform_refresh())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        else:
            logger.debug("Joining in-flight token refresh")

        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Future) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _perform_refresh(self) -> bool:
        refresh_token = self.token_storage.get_refresh_token()
        if not refresh_token:
            logger.info("No refresh token available, skipping refresh")
            return False

        url = f"{self.api_base_url}{REFRESH_PATH}"
        logger.info("Refreshing access token")

        try:
            session = await self._ensure_session()
            async with session.post(
                url,
                json={'refresh_token': refresh_token},
                headers={
                    'Authorization': f'Bearer {refresh_token}',
                    'Content-Type': 'application/json'
                },
                timeout=ClientTimeout(total=self.timeout)
            ) as response:
                if response.status in (401, 403):
                    logger.warning(f"Refresh token rejected ({response.status}), clearing stored credentials")
                    cleared = self._clear_credentials()
                    self._audit.log_token_refresh(False, status=response.status, credentials_cleared=cleared)
                    return False

                if not 200 <= response.status < 300:
                    logger.warning(f"Token refresh failed with status {response.status}")
                    self._audit.log_token_refresh(False, status=response.status)
                    return False

                data = await response.json(content_type=None)

        except (ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Token refresh request failed: {e or type(e).__name__}")
            self._audit.log_token_refresh(False)
            return False
        except ValueError as e:
            logger.warning(f"Token refresh response was not valid JSON: {e}")
            self._audit.log_token_refresh(False)
            return False

        success = self._store_refreshed_tokens(data, refresh_token)
        self._audit.log_token_refresh(success, status=response.status)
        return success

    def _clear_credentials(self) -> bool:
        try:
            self.token_storage.clear_all_tokens()
            return True
        except TokenStorageError as e:
            logger.error(f"Failed to clear rejected credentials: {e}")
            return False

    def _store_refreshed_tokens(self, data: Any, previous_refresh_token: str) -> bool:
        if not isinstance(data, dict):
            logger.warning("Token refresh response is not a JSON object")
            return False

        access_token = data.get('access_token') or data.get('token')
        if not access_token:
            logger.warning("Token refresh response contains no access token")
            return False

        now = int(self._clock())
        expires_in = data.get('expires_in', data.get('expiresIn'))
        expires_at = None
        if expires_in is not None:
            try:
                expires_at = now + int(expires_in)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid expires_in in refresh response: {expires_in!r}")

        record = TokenRecord(
            access_token=access_token,
            refresh_token=data.get('refresh_token') or previous_refresh_token,
            token_type=data.get('token_type') or "Bearer",
            scope=data.get('scope'),
            expires_at=expires_at,
            issued_at=now
        )

        try:
            self.token_storage.store_token_info(record)
        except (ValidationError, TokenStorageError) as e:
            logger.error(f"Failed to store refreshed tokens: {e}")
            return False

        user = data.get('user')
        if isinstance(user, dict):
            self._store_user(user)

        logger.info("Access token refreshed")
        return True

    def _store_user(self, user: Dict[str, Any]) -> None:
        try:
            profile = UserProfile.from_dict({**user, 'avatar': user.get('avatar') or user.get('picture')})
            self.token_storage.store_user_info(profile)
        except (KeyError, TypeError, ValueError, TokenStorageError) as e:
            logger.warning(f"Could not store user from refresh response: {e}")

    async def get_current_access_token(self) -> Optional[str]:
        """Return a usable access token, refreshing first if needed."""
        token = self.token_storage.get_access_token()
        if token:
            return token

        if self.token_storage.has_refresh_token() and await self.refresh_token():
            return self.token_storage.get_access_token()
        return None
