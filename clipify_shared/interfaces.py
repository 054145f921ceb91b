"""
Core interfaces for the Clipify desktop client.

These abstract interfaces describe the collaborators the authentication
subsystem talks to but does not own: the host notification surface, the
window layer and the configuration manager.
"""

from abc import ABC, abstractmethod
from typing import Any


class INotificationService(ABC):
    """Interface for user-visible notifications."""

    @abstractmethod
    async def show_notification(self, title: str, message: str, level: str = "info") -> None:
        """Show a notification. level is one of info, success, warning, error."""
        pass

    async def info(self, title: str, message: str) -> None:
        await self.show_notification(title, message, "info")

    async def success(self, title: str, message: str) -> None:
        await self.show_notification(title, message, "success")

    async def error(self, title: str, message: str) -> None:
        await self.show_notification(title, message, "error")


class IWindowHost(ABC):
    """Interface for the host window layer."""

    @abstractmethod
    async def show_main_window(self) -> None:
        """Bring the main window to the foreground."""
        pass


class IConfigurationManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get_api_base_url(self) -> str:
        """Get the API base URL."""
        pass

    @abstractmethod
    def get_frontend_base_url(self) -> str:
        """Get the website base URL used for browser login."""
        pass

    @abstractmethod
    def get_redirect_uri(self) -> str:
        """Get the custom-scheme redirect target for login callbacks."""
        pass

    @abstractmethod
    def set_config(self, key: str, value: Any) -> None:
        """Set configuration value."""
        pass

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass
