"""
Deep-link dispatch for the custom URI scheme.

URLs routed to the application by the operating system (as a startup
argument, via a second instance, or through an open-url event) are checked
against the application scheme and forwarded to the registered listener.
Links that arrive before a listener is attached are queued so they can be
processed once the authentication service has started.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, List, Callable, Any, Iterable

logger = logging.getLogger(__name__)


@dataclass
class PendingDeepLink:
    """A deep link received while no listener was attached."""
    id: str
    url: str
    processed: bool = False
    error: Optional[str] = None


class DeepLinkDispatcher:
    """Routes app-scheme URLs to a single listener."""

    def __init__(self, scheme: str = "clipify"):
        self.scheme = scheme
        self._listener: Optional[Callable[[str], Any]] = None
        self._pending: List[PendingDeepLink] = []

    @property
    def prefix(self) -> str:
        return f"{self.scheme}://"

    def is_app_link(self, url: Any) -> bool:
        return isinstance(url, str) and url.startswith(self.prefix)

    def find_in_argv(self, argv: Iterable[str]) -> Optional[str]:
        """Return the first app-scheme URL among process arguments."""
        return next((arg for arg in argv if self.is_app_link(arg)), None)

    def set_listener(self, listener: Callable[[str], Any]) -> Callable[[], None]:
        """Attach the listener and return a function that detaches it."""
        self._listener = listener
        logger.info("Deep link listener registered")

        def detach() -> None:
            if self._listener is listener:
                self._listener = None
                logger.info("Deep link listener detached")

        return detach

    async def dispatch(self, url: str) -> bool:
        """
        Handle a URL routed to the application.

        Returns:
            False if the URL is not an app link, True otherwise
        """
        if not self.is_app_link(url):
            logger.error(f"Rejected deep link with unexpected scheme (expected {self.prefix})")
            return False

        logger.info("Deep link received")

        if self._listener is None:
            event = PendingDeepLink(id=str(uuid.uuid4()), url=url)
            self._pending.append(event)
            logger.info(f"No deep link listener attached, queued event {event.id}")
            return True

        result = self._listener(url)
        if asyncio.iscoroutine(result):
            await result
        return True

    def get_pending_events(self) -> List[PendingDeepLink]:
        return [event for event in self._pending if not event.processed]

    def mark_processed(self, event_id: str) -> None:
        self._settle(event_id, None)

    def mark_error(self, event_id: str, error: str) -> None:
        self._settle(event_id, error)

    def _settle(self, event_id: str, error: Optional[str]) -> None:
        """Flag a queued event as handled and drop it from the queue."""
        for event in self._pending:
            if event.id == event_id:
                event.processed = True
                event.error = error
        self._pending = [event for event in self._pending if event.id != event_id]
