"""
Tests for deep-link dispatch and the notification/window adapters.
"""

from unittest.mock import Mock, AsyncMock

import pytest

from clipify_client.deeplink import DeepLinkDispatcher
from clipify_client.notifications import LoggingNotificationService, CallbackWindowHost

CALLBACK = "clipify://auth/callback?token=abc"


class TestDeepLinkDispatcher:
    """Routing app-scheme URLs."""

    def test_is_app_link(self):
        dispatcher = DeepLinkDispatcher()

        assert dispatcher.is_app_link(CALLBACK)
        assert not dispatcher.is_app_link("https://clipify.space/login")
        assert not dispatcher.is_app_link("clipifyx://auth/callback")
        assert not dispatcher.is_app_link(None)

    def test_find_in_argv(self):
        dispatcher = DeepLinkDispatcher()

        assert dispatcher.find_in_argv(["/usr/bin/clipify", "--flag", CALLBACK]) == CALLBACK
        assert dispatcher.find_in_argv(["/usr/bin/clipify"]) is None

    @pytest.mark.asyncio
    async def test_foreign_scheme_is_rejected(self):
        listener = Mock()
        dispatcher = DeepLinkDispatcher()
        dispatcher.set_listener(listener)

        assert await dispatcher.dispatch("evil://auth/callback?token=abc") is False

        listener.assert_not_called()
        assert dispatcher.get_pending_events() == []

    @pytest.mark.asyncio
    async def test_forwards_to_async_listener(self):
        listener = AsyncMock()
        dispatcher = DeepLinkDispatcher()
        dispatcher.set_listener(listener)

        assert await dispatcher.dispatch(CALLBACK) is True

        listener.assert_awaited_once_with(CALLBACK)

    @pytest.mark.asyncio
    async def test_forwards_to_sync_listener(self):
        received = []
        dispatcher = DeepLinkDispatcher()
        dispatcher.set_listener(received.append)

        await dispatcher.dispatch(CALLBACK)

        assert received == [CALLBACK]

    @pytest.mark.asyncio
    async def test_queues_without_listener(self):
        dispatcher = DeepLinkDispatcher()

        await dispatcher.dispatch(CALLBACK)
        await dispatcher.dispatch("clipify://auth/callback?token=def")

        pending = dispatcher.get_pending_events()
        assert [event.url for event in pending] == [CALLBACK, "clipify://auth/callback?token=def"]
        assert all(not event.processed for event in pending)

        dispatcher.mark_processed(pending[0].id)
        dispatcher.mark_error(pending[1].id, "no session")

        assert dispatcher.get_pending_events() == []
        assert pending[1].error == "no session"
        assert dispatcher._pending == []

    @pytest.mark.asyncio
    async def test_settled_events_leave_the_queue(self):
        dispatcher = DeepLinkDispatcher()
        for _ in range(3):
            await dispatcher.dispatch(CALLBACK)

        first, second, third = dispatcher.get_pending_events()
        dispatcher.mark_processed(first.id)
        dispatcher.mark_error(third.id, "stale")

        assert dispatcher._pending == [second]
        assert first.processed and third.error == "stale"

    @pytest.mark.asyncio
    async def test_detach_restores_queueing(self):
        listener = Mock()
        dispatcher = DeepLinkDispatcher(scheme="clipify-dev")
        detach = dispatcher.set_listener(listener)
        detach()

        await dispatcher.dispatch("clipify-dev://auth/callback")

        listener.assert_not_called()
        assert len(dispatcher.get_pending_events()) == 1


class TestNotifications:
    """LoggingNotificationService and CallbackWindowHost."""

    @pytest.mark.asyncio
    async def test_helpers_forward_level(self):
        received = []
        service = LoggingNotificationService(on_notification=lambda *args: received.append(args))

        await service.info("Title", "info message")
        await service.success("Title", "done")
        await service.error("Title", "failed")

        assert received == [
            ("Title", "info message", "info"),
            ("Title", "done", "success"),
            ("Title", "failed", "error"),
        ]

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        callback = AsyncMock()
        service = LoggingNotificationService(on_notification=callback)

        await service.show_notification("Logout", "Logged out successfully", "success")

        callback.assert_awaited_once_with("Logout", "Logged out successfully", "success")

    @pytest.mark.asyncio
    async def test_disabled_only_logs(self, caplog):
        callback = Mock()
        service = LoggingNotificationService(on_notification=callback, enabled=False)

        with caplog.at_level("INFO"):
            await service.show_notification("Title", "quiet")

        callback.assert_not_called()
        assert "[Title] quiet" in caplog.text

    @pytest.mark.asyncio
    async def test_callback_failure_is_contained(self):
        service = LoggingNotificationService(on_notification=Mock(side_effect=RuntimeError("tray gone")))

        await service.error("Title", "message")

    @pytest.mark.asyncio
    async def test_window_host(self):
        on_show = Mock()

        await CallbackWindowHost(on_show).show_main_window()
        await CallbackWindowHost().show_main_window()

        on_show.assert_called_once_with()
