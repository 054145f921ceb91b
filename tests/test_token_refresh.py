"""
Tests for the token refresh service.
"""

import asyncio

import aiohttp
import pytest

from clipify_client.auth.token_refresh import TokenRefreshService, REFRESH_PATH
from clipify_shared.models import TokenRecord, UserProfile

from conftest import NOW


@pytest.fixture
def logged_in(storage):
    storage.store_token_info(TokenRecord("old.access.token", refresh_token="refresh-1",
                                         expires_at=NOW + 3600))
    storage.store_user_info(UserProfile(id="u1", email="ada@example.com"))
    return storage


def make_service(storage, session, clock):
    return TokenRefreshService(storage, "https://api.test/", timeout=5, session=session, clock=clock)


class TestRefreshSuccess:
    """Successful refresh-token exchanges."""

    @pytest.mark.asyncio
    async def test_stores_new_access_token(self, logged_in, clock, make_session, make_response):
        session = make_session(make_response(json_data={
            'access_token': 'new.access.token',
            'expires_in': 3600
        }))
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is True

        assert logged_in.get_access_token() == 'new.access.token'
        assert logged_in.get_refresh_token() == 'refresh-1'
        assert logged_in.get_token_metadata()['expiresAt'] == NOW + 3600

        args, kwargs = session.post.call_args
        assert args[0] == f"https://api.test{REFRESH_PATH}"
        assert kwargs['json'] == {'refresh_token': 'refresh-1'}
        assert kwargs['headers']['Authorization'] == 'Bearer refresh-1'

    @pytest.mark.asyncio
    async def test_accepts_alternate_field_names(self, logged_in, clock, make_session, make_response):
        session = make_session(make_response(json_data={
            'token': 'alt-token',
            'expiresIn': 7200,
            'refresh_token': 'refresh-2',
            'user': {'id': 'u1', 'email': 'ada@example.com', 'picture': 'https://img/ada.png'}
        }))
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is True

        record = logged_in.get_token_info()
        assert record.access_token == 'alt-token'
        assert record.refresh_token == 'refresh-2'
        assert record.token_type == 'Bearer'
        assert record.expires_at == NOW + 7200
        assert logged_in.get_user_info().avatar == 'https://img/ada.png'

    @pytest.mark.asyncio
    async def test_response_without_expiry(self, logged_in, clock, make_session, make_response):
        session = make_session(make_response(json_data={'access_token': 'forever'}))
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is True
        assert logged_in.get_token_info().expires_at is None

    @pytest.mark.asyncio
    async def test_zero_expiry_is_already_expired(self, logged_in, clock, make_session, make_response):
        session = make_session(make_response(json_data={'access_token': 'short.lived.token', 'expires_in': 0}))
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is True

        assert logged_in.get_token_metadata()['expiresAt'] == NOW
        assert not logged_in.has_valid_access_token()
        assert logged_in.get_access_token() is None


class TestRefreshFailure:
    """Failures and what they do to stored credentials."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_refresh_token_clears_credentials(
        self, logged_in, clock, make_session, make_response, status
    ):
        session = make_session(make_response(status=status))
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is False

        assert logged_in.get_token_info() is None
        assert logged_in.get_refresh_token() is None
        assert logged_in.get_user_info() is None

    @pytest.mark.asyncio
    async def test_server_error_keeps_credentials(self, logged_in, clock, make_session, make_response):
        session = make_session(make_response(status=500))
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is False
        assert logged_in.get_access_token() == 'old.access.token'
        assert logged_in.get_refresh_token() == 'refresh-1'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [
        asyncio.TimeoutError(),
        aiohttp.ClientConnectionError("connection refused"),
    ])
    async def test_network_failure_keeps_credentials(self, logged_in, clock, make_session, failure):
        service = make_service(logged_in, make_session(failure), clock)

        assert await service.refresh_token() is False
        assert logged_in.get_access_token() == 'old.access.token'
        assert logged_in.get_refresh_token() == 'refresh-1'

    @pytest.mark.asyncio
    async def test_invalid_json_keeps_credentials(self, logged_in, clock, make_session, make_response):
        response = make_response()
        response.json.side_effect = ValueError("Expecting value")
        service = make_service(logged_in, make_session(response), clock)

        assert await service.refresh_token() is False
        assert logged_in.get_refresh_token() == 'refresh-1'

    @pytest.mark.asyncio
    async def test_response_without_access_token(self, logged_in, clock, make_session, make_response):
        session = make_session(make_response(json_data={'expires_in': 3600}))
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is False
        assert logged_in.get_access_token() == 'old.access.token'

    @pytest.mark.asyncio
    async def test_no_refresh_token_makes_no_request(self, storage, clock, make_session):
        session = make_session()
        service = make_service(storage, session, clock)

        assert await service.refresh_token() is False
        session.post.assert_not_called()


class TestSingleFlight:
    """Concurrent callers share one exchange."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self, logged_in, clock, make_session, make_response):
        release = asyncio.Event()

        async def slow_json(content_type=None):
            await release.wait()
            return {'access_token': 'shared.access.token', 'expires_in': 3600}

        response = make_response()
        response.json.side_effect = slow_json
        session = make_session(response)
        service = make_service(logged_in, session, clock)

        callers = [asyncio.ensure_future(service.refresh_token()) for _ in range(3)]
        await asyncio.sleep(0)
        assert service.is_refreshing

        release.set()
        results = await asyncio.gather(*callers)

        assert results == [True, True, True]
        assert session.post.call_count == 1
        assert not service.is_refreshing

    @pytest.mark.asyncio
    async def test_later_call_starts_new_exchange(self, logged_in, clock, make_session, make_response):
        session = make_session(
            make_response(json_data={'access_token': 'first', 'expires_in': 3600}),
            make_response(json_data={'access_token': 'second', 'expires_in': 3600}),
        )
        service = make_service(logged_in, session, clock)

        assert await service.refresh_token() is True
        assert await service.refresh_token() is True

        assert session.post.call_count == 2
        assert logged_in.get_access_token() == 'second'


class TestCurrentAccessToken:
    """get_current_access_token() refreshes only when needed."""

    @pytest.mark.asyncio
    async def test_returns_stored_token(self, logged_in, clock, make_session):
        session = make_session()
        service = make_service(logged_in, session, clock)

        assert await service.get_current_access_token() == 'old.access.token'
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_refreshes_expired_token(self, logged_in, clock, make_session, make_response):
        clock.advance(3600)
        session = make_session(make_response(json_data={'access_token': 'renewed', 'expires_in': 3600}))
        service = make_service(logged_in, session, clock)

        assert await service.get_current_access_token() == 'renewed'

    @pytest.mark.asyncio
    async def test_close_leaves_injected_session_open(self, storage, clock, make_session):
        session = make_session()
        service = make_service(storage, session, clock)

        await service.close()
        session.close.assert_not_called()
