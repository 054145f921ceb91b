"""
Deep-link callback parsing.

Turns a custom-scheme login callback such as
``clipify://auth/callback?token=...&refresh_token=...&user=<json>`` into a
CallbackPayload, or raises CallbackError describing why it cannot.
"""

import json
import logging
from typing import Optional, Dict
from urllib.parse import urlsplit, parse_qsl, unquote

from clipify_shared.exceptions import CallbackError, ErrorCode
from clipify_shared.logging_config import redact_params
from clipify_shared.models import CallbackPayload, UserProfile

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 86400
DEFAULT_TOKEN_TYPE = "Bearer"


def parse_auth_callback(url: str) -> CallbackPayload:
    """
    Parse an authentication callback URL.

    Args:
        url: The deep-link URL delivered by the operating system

    Returns:
        The decoded callback payload. ``user`` is None when the callback
        carries no profile.

    Raises:
        CallbackError: If the URL is malformed, reports a provider error,
            or carries no access token
    """
    params = _parse_query(url)

    error = params.get('error')
    if error:
        description = params.get('error_description') or "No description provided"
        raise CallbackError(
            f"Auth error: {error} - {description}",
            error_code=ErrorCode.CALLBACK_PROVIDER_ERROR,
            context={'provider_error': error}
        )

    token = params.get('token')
    if not token:
        raise CallbackError(
            "No access token found in callback",
            error_code=ErrorCode.CALLBACK_MISSING_TOKEN
        )

    payload = CallbackPayload(
        access_token=token,
        refresh_token=params.get('refresh_token') or None,
        token_type=params.get('token_type') or DEFAULT_TOKEN_TYPE,
        expires_in=_parse_expires_in(params.get('expires_in')),
        scope=params.get('scope') or None,
    )

    payload.user = _user_from_json(params.get('user'))
    if payload.user is None:
        payload.user = _user_from_discrete_params(params)

    return payload


def _parse_query(url: str) -> Dict[str, str]:
    if not isinstance(url, str):
        raise CallbackError("Invalid callback URL")

    try:
        parts = urlsplit(url.strip())
    except ValueError as e:
        raise CallbackError("Invalid callback URL", cause=e)

    if not parts.scheme or not (parts.netloc or parts.path):
        raise CallbackError("Invalid callback URL")

    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    logger.info(
        f"Parsing auth callback (scheme: {parts.scheme}, host: {parts.netloc}, "
        f"path: {parts.path}, params: {redact_params(params)})"
    )
    return params


def _parse_expires_in(value: Optional[str]) -> int:
    if value:
        try:
            expires_in = int(value)
            if expires_in > 0:
                return expires_in
        except ValueError:
            pass
        logger.warning(f"Ignoring invalid expires_in value: {value!r}")
    return DEFAULT_EXPIRES_IN


def _user_from_json(raw: Optional[str]) -> Optional[UserProfile]:
    if not raw:
        return None

    try:
        # parse_qsl has already decoded once; some senders double-encode
        text = raw if raw.lstrip().startswith('{') else unquote(raw)
        data = json.loads(text)
        return UserProfile(
            id=str(data['id']),
            email=data['email'],
            name=data.get('name'),
            avatar=data.get('picture'),
            plan=data.get('plan'),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to parse user JSON param, falling back to discrete params: {e}")
        return None


def _user_from_discrete_params(params: Dict[str, str]) -> Optional[UserProfile]:
    user_id = params.get('user_id')
    email = params.get('email')
    if not (user_id and email):
        return None

    return UserProfile(
        id=user_id,
        email=email,
        name=params.get('name') or email.split('@')[0],
        plan=params.get('plan'),
    )
