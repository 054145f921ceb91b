"""
Tests for deep-link callback parsing.
"""

import json
import logging
from urllib.parse import urlencode

import pytest

from clipify_client.auth.callback_parser import parse_auth_callback, DEFAULT_EXPIRES_IN
from clipify_shared.exceptions import CallbackError, ErrorCode


def callback_url(**params):
    return f"clipify://auth/callback?{urlencode(params)}"


class TestSuccessfulCallbacks:
    """Callbacks that carry tokens."""

    def test_tokens_and_user_json(self):
        user = {'id': 'u1', 'email': 'ada@example.com', 'name': 'Ada',
                'picture': 'https://img/ada.png', 'plan': 'pro'}
        payload = parse_auth_callback(callback_url(
            token='access.token.sig',
            refresh_token='refresh-1',
            user=json.dumps(user)
        ))

        assert payload.access_token == 'access.token.sig'
        assert payload.refresh_token == 'refresh-1'
        assert payload.token_type == 'Bearer'
        assert payload.expires_in == DEFAULT_EXPIRES_IN
        assert payload.user.id == 'u1'
        assert payload.user.email == 'ada@example.com'
        assert payload.user.avatar == 'https://img/ada.png'
        assert payload.user.plan == 'pro'

    def test_double_encoded_user_json(self):
        from urllib.parse import quote

        user = quote(json.dumps({'id': 7, 'email': 'bob@example.com'}))
        payload = parse_auth_callback(callback_url(token='t', user=user))

        assert payload.user.id == '7'
        assert payload.user.email == 'bob@example.com'

    def test_discrete_user_params(self):
        payload = parse_auth_callback(callback_url(
            token='t', user_id='u2', email='carol@example.com', plan='free'
        ))

        assert payload.user.id == 'u2'
        assert payload.user.name == 'carol'
        assert payload.user.plan == 'free'

    def test_malformed_user_json_falls_back_to_discrete_params(self):
        payload = parse_auth_callback(callback_url(
            token='t', user='{broken', user_id='u3', email='dan@example.com', name='Dan'
        ))

        assert payload.user.id == 'u3'
        assert payload.user.name == 'Dan'

    def test_no_user(self):
        payload = parse_auth_callback(callback_url(token='t'))

        assert payload.user is None
        assert payload.refresh_token is None

    def test_token_metadata_params(self):
        payload = parse_auth_callback(callback_url(
            token='t', expires_in='3600', token_type='MAC', scope='clips:read'
        ))

        assert payload.expires_in == 3600
        assert payload.token_type == 'MAC'
        assert payload.scope == 'clips:read'

    @pytest.mark.parametrize("value", ["abc", "-5", "0", ""])
    def test_invalid_expires_in_uses_default(self, value):
        payload = parse_auth_callback(callback_url(token='t', expires_in=value))

        assert payload.expires_in == DEFAULT_EXPIRES_IN

    def test_token_record_expiry(self):
        payload = parse_auth_callback(callback_url(token='t', refresh_token='r', expires_in='600'))
        record = payload.to_token_record(now=1000)

        assert record.expires_at == 1600
        assert record.issued_at == 1000
        assert record.refresh_token == 'r'

    def test_tokens_are_not_logged(self, caplog):
        caplog.set_level(logging.DEBUG)
        parse_auth_callback(callback_url(token='secret-access', refresh_token='secret-refresh'))

        assert 'secret-access' not in caplog.text
        assert 'secret-refresh' not in caplog.text
        assert '[REDACTED]' in caplog.text


class TestFailedCallbacks:
    """Callbacks that must be rejected."""

    def test_provider_error(self):
        with pytest.raises(CallbackError) as exc_info:
            parse_auth_callback(callback_url(error='access_denied', error_description='denied'))

        assert exc_info.value.message == "Auth error: access_denied - denied"
        assert exc_info.value.error_code == ErrorCode.CALLBACK_PROVIDER_ERROR

    def test_provider_error_without_description(self):
        with pytest.raises(CallbackError, match="Auth error: server_error - No description provided"):
            parse_auth_callback(callback_url(error='server_error'))

    def test_error_wins_over_token(self):
        with pytest.raises(CallbackError, match="Auth error: access_denied"):
            parse_auth_callback(callback_url(error='access_denied', token='t'))

    def test_missing_token(self):
        with pytest.raises(CallbackError) as exc_info:
            parse_auth_callback(callback_url(user_id='u1', email='a@b.com'))

        assert exc_info.value.message == "No access token found in callback"
        assert exc_info.value.error_code == ErrorCode.CALLBACK_MISSING_TOKEN

    def test_empty_token(self):
        with pytest.raises(CallbackError, match="No access token found in callback"):
            parse_auth_callback("clipify://auth/callback?token=")

    @pytest.mark.parametrize("url", ["not a url", "", None, "?token=abc"])
    def test_invalid_url(self, url):
        with pytest.raises(CallbackError, match="Invalid callback URL"):
            parse_auth_callback(url)
