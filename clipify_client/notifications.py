"""
Notification and window-host adapters.

The authentication subsystem reports user-visible events through
INotificationService and asks the host to raise its window through
IWindowHost. These implementations log the request and forward it to an
optional callback supplied by whatever UI embeds the client.
"""

import asyncio
import logging
from typing import Optional, Callable, Any

from clipify_shared.interfaces import INotificationService, IWindowHost

logger = logging.getLogger(__name__)

_LEVELS = {
    'info': logging.INFO,
    'success': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


async def _call_host(callback: Callable[..., Any], *args) -> None:
    result = callback(*args)
    if asyncio.iscoroutine(result):
        await result


class LoggingNotificationService(INotificationService):
    """Notification sink that logs and forwards to an optional host callback."""

    def __init__(
        self,
        on_notification: Optional[Callable[[str, str, str], Any]] = None,
        enabled: bool = True
    ):
        self.on_notification = on_notification
        self.enabled = enabled

    async def show_notification(self, title: str, message: str, level: str = "info") -> None:
        logger.log(_LEVELS.get(level, logging.INFO), f"[{title}] {message}")

        if not self.enabled or self.on_notification is None:
            return

        try:
            await _call_host(self.on_notification, title, message, level)
        except Exception as e:
            # notification failures never propagate
            logger.warning(f"Notification callback failed: {e}")


class CallbackWindowHost(IWindowHost):
    """Window host that forwards show requests to a callback, if any."""

    def __init__(self, on_show: Optional[Callable[[], Any]] = None):
        self.on_show = on_show

    async def show_main_window(self) -> None:
        if self.on_show is None:
            logger.debug("No window host attached, ignoring show request")
            return
        await _call_host(self.on_show)
