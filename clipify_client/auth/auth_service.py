"""
Login session coordination for the Clipify desktop client.

AuthService owns the authentication state. It starts browser logins, accepts
the matching deep-link callback, persists the resulting tokens, performs
logout and publishes every state change to subscribers.
"""

import asyncio
import dataclasses
import logging
import time
import uuid
import webbrowser
from typing import Optional, List, Callable
from urllib.parse import quote

from aiohttp import ClientSession, ClientTimeout, ClientError

from clipify_client.auth.callback_parser import parse_auth_callback
from clipify_client.auth.token_storage import SecureTokenStorage
from clipify_client.deeplink import DeepLinkDispatcher
from clipify_shared.exceptions import ClipifyError, TokenStorageError
from clipify_shared.interfaces import (
    IConfigurationManager, INotificationService, IWindowHost
)
from clipify_shared.logging_config import AuditLogger
from clipify_shared.models import AuthState, UserProfile

logger = logging.getLogger(__name__)

LOGOUT_PATH = "/api/v1/auth/logout"

BROWSER_ERROR = "Failed to open browser for authentication"
LOGOUT_ERROR = "Failed to logout completely"
INITIALIZE_ERROR = "Failed to initialize authentication"

AuthStateListener = Callable[[AuthState], None]


class AuthService:
    """
    Single source of truth for the authentication state.

    Each login attempt is tagged with a session identifier. A callback is
    only accepted while a session is active; cancel_login() and a new login()
    both invalidate the previous one, so a late callback is dropped silently.
    State changes are published synchronously to subscribers as immutable
    AuthState snapshots.
    """

    def __init__(
        self,
        token_storage: SecureTokenStorage,
        config: IConfigurationManager,
        notifications: Optional[INotificationService] = None,
        window_host: Optional[IWindowHost] = None,
        deep_links: Optional[DeepLinkDispatcher] = None,
        session: Optional[ClientSession] = None,
        browser_opener: Callable[[str], bool] = webbrowser.open,
        clock: Callable[[], float] = time.time
    ):
        self.token_storage = token_storage
        self.config = config
        self.notifications = notifications
        self.window_host = window_host
        self.deep_links = deep_links
        self._session = session
        self._owns_session = session is None
        self._browser_opener = browser_opener
        self._clock = clock

        self._state = AuthState()
        self._listeners: List[AuthStateListener] = []
        self._login_session_id: Optional[str] = None
        self._detach_deep_links: Optional[Callable[[], None]] = None
        self._audit = AuditLogger()

    # Lifecycle

    async def initialize(self) -> None:
        """Open storage, restore a previous login and attach to deep links."""
        try:
            self.token_storage.initialize()
            self.check_existing_auth()
            if self.deep_links is not None:
                self._detach_deep_links = self.deep_links.set_listener(self.handle_callback)
                await self.process_pending_deep_links()
        except ClipifyError as e:
            logger.error(f"Failed to initialize auth service: {e}")
            self._update_state(error=INITIALIZE_ERROR)

    def check_existing_auth(self) -> bool:
        """Hydrate the state from storage without contacting the network."""
        if not self.token_storage.has_valid_access_token():
            logger.info("No existing authentication found")
            return False

        user = self.token_storage.get_user_info()
        self._update_state(is_authenticated=True, user=user, error=None)
        logger.info("Existing authentication found")
        return True

    async def process_pending_deep_links(self) -> int:
        """Handle deep links queued before the listener was attached."""
        if self.deep_links is None:
            return 0

        pending = self.deep_links.get_pending_events()
        if not pending:
            logger.info("No pending deep link events found")
            return 0

        logger.info(f"Processing {len(pending)} pending deep link events")
        for event in pending:
            if await self.handle_callback(event.url):
                self.deep_links.mark_processed(event.id)
            else:
                self.deep_links.mark_error(event.id, self._state.error or "Callback not accepted")
        return len(pending)

    async def cleanup(self) -> None:
        """Detach from deep links, drop subscribers and close the HTTP session."""
        if self._detach_deep_links is not None:
            self._detach_deep_links()
            self._detach_deep_links = None
        self._listeners.clear()
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.info("Auth service cleanup completed")

    # Login

    @property
    def current_session_id(self) -> Optional[str]:
        return self._login_session_id

    def _new_session_id(self) -> str:
        return f"login_{int(self._clock() * 1000)}_{uuid.uuid4().hex[:9]}"

    def build_login_url(self) -> str:
        redirect_uri = self.config.get_redirect_uri()
        base = self.config.get_frontend_base_url().rstrip('/')
        return f"{base}/login?redirect={quote(redirect_uri, safe='')}"

    async def login(self) -> None:
        """
        Start a browser login.

        Any previous login session is invalidated. Failing to open the
        browser is reported through the state, never raised.
        """
        self._login_session_id = self._new_session_id()
        session_id = self._login_session_id
        self._update_state(is_loading=True, error=None)

        login_url = self.build_login_url()
        logger.info(f"Starting authentication via website login (session: {session_id})")
        await self._notify("Authentication", "Opening website for authentication...", "info")

        try:
            opened = self._browser_opener(login_url)
        except Exception as e:
            logger.error(f"Failed to start authentication: {e}")
            opened = False

        if not opened:
            self._update_state(is_loading=False, error=BROWSER_ERROR)
            self._audit.log_login(session_id=session_id, success=False, failure_reason=BROWSER_ERROR)
            await self._notify("Authentication Error", BROWSER_ERROR, "error")
            return

        logger.info(f"Browser opened for authentication (session: {session_id})")

    def cancel_login(self) -> None:
        """Invalidate the current login session. Idempotent."""
        self._login_session_id = None
        self._update_state(is_loading=False, error=None)
        logger.info("Login process cancelled by user")

    async def handle_callback(self, url: str) -> bool:
        """
        Consume a login callback.

        Returns:
            True if the callback was accepted and the user is now signed in
        """
        session_id = self._login_session_id
        if session_id is None:
            logger.warning("Received auth callback but no login session is active, ignoring")
            return False

        logger.info(f"Received auth callback (session: {session_id})")

        try:
            payload = parse_auth_callback(url)
            self.token_storage.store_token_info(payload.to_token_record(int(self._clock())))
            if payload.user is not None:
                self.token_storage.store_user_info(payload.user)
        except ClipifyError as e:
            message = f"Authentication failed: {e.message}"
            logger.error(f"Failed to handle auth callback: {e.message}")
            self._update_state(is_loading=False, error=message)
            self._audit.log_login(session_id=session_id, success=False, failure_reason=e.message)
            await self._notify("Authentication Failed", message, "error")
            return False

        self._login_session_id = None
        self._update_state(
            is_authenticated=True,
            is_loading=False,
            user=payload.user,
            error=None
        )
        self._audit.log_login(
            user_id=payload.user.id if payload.user else None,
            session_id=session_id
        )
        logger.info("Authentication completed successfully")

        await self._notify("Authentication Success", "Authentication successful!", "success")
        if self.window_host is not None:
            try:
                await self.window_host.show_main_window()
            except Exception as e:
                logger.warning(f"Failed to show main window after auth: {e}")
        return True

    # Logout

    async def logout(self) -> None:
        """
        Log out locally, telling the server first when a valid token exists.

        The remote call is best effort. The state always ends unauthenticated
        and not loading.
        """
        self._update_state(is_loading=True, error=None)
        user_id = self._state.user.id if self._state.user else None

        remote_notified = False
        access_token = self.token_storage.get_access_token()
        if access_token:
            remote_notified = await self._notify_server_logout(access_token)

        try:
            self.token_storage.clear_all_tokens()
        except TokenStorageError as e:
            logger.error(f"Failed to logout: {e}")
            self._update_state(is_authenticated=False, is_loading=False, user=None, error=LOGOUT_ERROR)
            await self._notify("Logout Error", LOGOUT_ERROR, "error")
            return

        self._update_state(is_authenticated=False, is_loading=False, user=None, error=None)
        self._audit.log_logout(user_id=user_id, remote_notified=remote_notified)
        logger.info("Logout completed successfully")
        await self._notify("Logout", "Logged out successfully", "success")

    async def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    async def _notify_server_logout(self, access_token: str) -> bool:
        url = f"{self.config.get_api_base_url().rstrip('/')}{LOGOUT_PATH}"
        timeout = ClientTimeout(total=float(self.config.get_config('api.timeout', 30.0)))
        try:
            session = await self._ensure_session()
            async with session.post(
                url,
                headers={
                    'Authorization': f'Bearer {access_token}',
                    'Content-Type': 'application/json'
                },
                timeout=timeout
            ) as response:
                if 200 <= response.status < 300:
                    logger.info("Logout API call successful")
                    return True
                logger.warning(f"Logout API returned status {response.status}, continuing with local logout")
        except (ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Logout API call failed, continuing with local logout: {e}")
        return False

    # State

    def subscribe(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update_state(self, **changes) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        snapshot = self._state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Error in auth state listener: {e}")

    async def _notify(self, title: str, message: str, level: str) -> None:
        if self.notifications is not None:
            await self.notifications.show_notification(title, message, level)

    def get_auth_state(self) -> AuthState:
        return self._state

    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    def get_current_user(self) -> Optional[UserProfile]:
        return self._state.user

    def get_access_token(self) -> Optional[str]:
        return self.token_storage.get_access_token()

    def has_valid_access_token(self) -> bool:
        return self.token_storage.has_valid_access_token()
