"""Bearer token supply for stream requests.

Token acquisition and refresh belong to the credential subsystem; this module
only defines the interface the session consumes, a static implementation, and
helpers for inspecting JWT expiry without verifying signatures.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Protocol, runtime_checkable

import jwt

from .config import ApiSettings, settings

logger = logging.getLogger(__name__)

# Treat tokens as expired slightly early to absorb clock skew
EXPIRY_SKEW_SECONDS = 5


@runtime_checkable
class CredentialProvider(Protocol):
    """Supplies the bearer token attached to stream requests."""

    def get_token(self) -> str | None:
        ...


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode a JWT payload without verifying it.

    Returns:
        The claims dict, or None if the token is not a decodable JWT
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.debug(f"Error decoding token: {e}")
        return None


def get_token_expiration_time(token: str, *, now: float | None = None) -> float:
    """Seconds until the token expires; 0 if expired, invalid or without `exp`."""
    payload = decode_token(token)
    if not payload or not isinstance(payload.get("exp"), (int, float)):
        return 0.0
    now = time.time() if now is None else now
    return max(0.0, payload["exp"] - now)


def is_token_expired(token: str, *, now: float | None = None) -> bool:
    """True if the token is invalid, lacks `exp`, or expires within the skew."""
    payload = decode_token(token)
    if not payload or not isinstance(payload.get("exp"), (int, float)):
        return True
    now = time.time() if now is None else now
    return now >= payload["exp"] - EXPIRY_SKEW_SECONDS


def get_user_from_token(token: str) -> str | None:
    """Username claim (`sub` or `username`), if the token decodes."""
    payload = decode_token(token)
    if payload is None:
        return None
    return payload.get("sub") or payload.get("username") or "Unknown"


class StaticTokenProvider:
    """Hands out a fixed token, warning when it has expired.

    The token is still returned when expired; refreshing it is the caller's
    concern and the backend will reject it if needed.
    """

    def __init__(self, token: str | None) -> None:
        self._token = token or None

    @classmethod
    def from_settings(cls, config: ApiSettings | None = None) -> StaticTokenProvider:
        config = config or settings.api
        secret = config.access_token
        return cls(secret.get_secret_value() if secret is not None else None)

    def get_token(self) -> str | None:
        if self._token and decode_token(self._token) is not None and is_token_expired(self._token):
            logger.warning("Access token has expired; request may be rejected")
        return self._token
