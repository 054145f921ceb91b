"""
Shared fixtures for the Clipify authentication tests.

HTTP is simulated with MagicMock sessions whose request()/post() calls return
async context managers yielding canned responses.
"""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock, AsyncMock, patch

import pytest

from clipify_client.auth.token_storage import SecureTokenStorage
from clipify_client.config import ClientConfiguration

NOW = 1_700_000_000

CLIPIFY_ENV_VARS = (
    'CLIPIFY_ENVIRONMENT', 'CLIPIFY_WEBSITE_BASE_URL', 'CLIPIFY_API_BASE_URL',
    'CLIPIFY_API_TIMEOUT', 'CLIPIFY_OAUTH_REDIRECT_URI', 'CLIPIFY_STORAGE_DIR',
    'CLIPIFY_TOKEN_EXPIRY_BUFFER', 'CLIPIFY_LOG_LEVEL', 'CLIPIFY_LOG_FILE',
    'CLIPIFY_SHOW_NOTIFICATIONS',
)


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_response(status=200, json_data=None, content_type='application/json',
                   text='', body=b'', reason='OK'):
    response = MagicMock()
    response.status = status
    response.reason = reason
    response.headers = {'Content-Type': content_type} if content_type else {}
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)
    response.read = AsyncMock(return_value=body)
    return response


def _context_for(outcome):
    context = MagicMock()
    if isinstance(outcome, BaseException):
        context.__aenter__ = AsyncMock(side_effect=outcome)
    else:
        context.__aenter__ = AsyncMock(return_value=outcome)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def build_session(*outcomes):
    """
    Session whose successive request()/post() calls yield the given outcomes.

    An outcome is a response mock or an exception raised on entering the
    request context.
    """
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.request.side_effect = [_context_for(outcome) for outcome in outcomes]
    session.post.side_effect = [_context_for(outcome) for outcome in outcomes]
    return session


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in CLIPIFY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as directory:
        yield Path(directory)


@pytest.fixture
def storage(temp_dir, clock):
    """File-backed token storage in a temporary directory."""
    token_storage = SecureTokenStorage(storage_dir=temp_dir, use_keyring=False, clock=clock)
    token_storage.initialize()
    return token_storage


@pytest.fixture
def memory_keyring():
    """Replace the keyring backend with a dict."""
    from keyring.errors import PasswordDeleteError

    store = {}

    def set_password(service, key, value):
        store[(service, key)] = value

    def get_password(service, key):
        return store.get((service, key))

    def delete_password(service, key):
        if (service, key) not in store:
            raise PasswordDeleteError("not found")
        del store[(service, key)]

    with patch('keyring.set_password', side_effect=set_password), \
            patch('keyring.get_password', side_effect=get_password), \
            patch('keyring.delete_password', side_effect=delete_password):
        yield store


@pytest.fixture
def config(temp_dir):
    configuration = ClientConfiguration(str(temp_dir / 'client.conf'), create_default=False)
    configuration.set_override('frontend.base_url', 'https://clipify.space/')
    configuration.set_override('api.base_url', 'https://api.test')
    return configuration


@pytest.fixture
def make_response():
    return build_response


@pytest.fixture
def make_session():
    return build_session


@pytest.fixture
def notes():
    """Notifications recorded as (title, message, level) tuples."""
    return []


@pytest.fixture
def notifications(notes):
    from clipify_client.notifications import LoggingNotificationService

    return LoggingNotificationService(
        on_notification=lambda title, message, level: notes.append((title, message, level))
    )
