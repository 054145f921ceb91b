"""
Composition root for the Clipify desktop authentication subsystem.

Builds every auth component exactly once from a configuration and wires them
together: token storage, refresh service, auth service, error handler,
authenticated API client and deep-link dispatcher.
"""

import logging
from typing import Optional, Callable, Any, Iterable

from clipify_client.api_client import AuthenticatedAPIClient
from clipify_client.auth.auth_service import AuthService
from clipify_client.auth.error_handler import AuthErrorHandler
from clipify_client.auth.token_refresh import TokenRefreshService
from clipify_client.auth.token_storage import SecureTokenStorage
from clipify_client.config import ClientConfiguration
from clipify_client.deeplink import DeepLinkDispatcher
from clipify_client.notifications import LoggingNotificationService, CallbackWindowHost

logger = logging.getLogger(__name__)


class ClipifyAuthApp:
    """Owns the lifetime of the authentication components."""

    def __init__(
        self,
        config: ClientConfiguration,
        on_notification: Optional[Callable[[str, str, str], Any]] = None,
        on_show_window: Optional[Callable[[], Any]] = None,
        browser_opener: Optional[Callable[[str], bool]] = None,
        token_storage: Optional[SecureTokenStorage] = None
    ):
        self.config = config

        self.notifications = LoggingNotificationService(
            on_notification=on_notification,
            enabled=config.should_show_notifications()
        )
        self.window_host = CallbackWindowHost(on_show=on_show_window)

        self.token_storage = token_storage or SecureTokenStorage(
            service_name=config.get_storage_service_name(),
            storage_dir=config.get_storage_dir(),
            expiry_buffer=config.get_token_expiry_buffer()
        )
        self.deep_links = DeepLinkDispatcher(scheme=config.get_app_scheme())

        auth_options = {}
        if browser_opener is not None:
            auth_options['browser_opener'] = browser_opener
        self.auth_service = AuthService(
            self.token_storage,
            config,
            notifications=self.notifications,
            window_host=self.window_host,
            deep_links=self.deep_links,
            **auth_options
        )

        self.refresh_service = TokenRefreshService(
            self.token_storage,
            config.get_api_base_url(),
            timeout=config.get_api_timeout()
        )
        self.error_handler = AuthErrorHandler(self.auth_service)
        self.api_client = AuthenticatedAPIClient(
            config.get_api_base_url(),
            self.token_storage,
            self.refresh_service,
            error_handler=self.error_handler,
            notifications=self.notifications,
            timeout=config.get_api_timeout()
        )

        self._started = False

    async def start(self, argv: Iterable[str] = ()) -> None:
        """
        Initialize the auth service and route a deep link passed at launch.

        A URL in argv is dispatched before initialization so it is queued and
        handled once the listener attaches, the same as a link delivered by
        the operating system before startup completed.
        """
        if self._started:
            return

        startup_url = self.deep_links.find_in_argv(argv)
        if startup_url:
            await self.deep_links.dispatch(startup_url)

        await self.auth_service.initialize()
        self._started = True
        logger.info(f"Clipify auth started ({self.config.get_environment()} environment)")

    async def handle_url(self, url: str) -> bool:
        """Feed a URL delivered by the OS or a second instance."""
        return await self.deep_links.dispatch(url)

    async def shutdown(self) -> None:
        await self.api_client.close()
        await self.refresh_service.close()
        await self.auth_service.cleanup()
        self._started = False
        logger.info("Clipify auth shut down")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
