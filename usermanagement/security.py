"""Shared-secret authentication for the user management API."""
from __future__ import annotations

import secrets
from typing import Optional, Tuple

from fastapi.security.utils import get_authorization_scheme_param
from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    AuthenticationError,
    BaseUser,
    SimpleUser,
)
from starlette.requests import HTTPConnection

API_KEY_HEADER = "X-Api-Key"
API_CLIENT_NAME = "api-client"
API_SCOPE = "api"


def is_protected_path(path: str, prefix: str) -> bool:
    """Case-insensitive, segment-aware check that ``path`` lives under ``prefix``."""

    lowered = path.lower()
    base = prefix.rstrip("/").lower()
    return lowered == base or lowered.startswith(base + "/")


def extract_token(conn: HTTPConnection) -> Optional[str]:
    """Return the caller's token from a bearer header, falling back to ``X-Api-Key``."""

    scheme, param = get_authorization_scheme_param(conn.headers.get("authorization"))
    if scheme.lower() == "bearer" and param.strip():
        return param.strip()

    api_key = conn.headers.get(API_KEY_HEADER)
    if api_key is not None:
        return api_key
    return None


class SharedSecretBackend(AuthenticationBackend):
    """Authenticate callers against a single configured secret.

    Only paths below ``protected_prefix`` are checked. When no secret is
    configured every request is let through unauthenticated, which is meant
    for local development only.
    """

    def __init__(self, api_key: Optional[str], *, protected_prefix: str = "/api") -> None:
        self._api_key = api_key or None
        self._protected_prefix = protected_prefix

    @property
    def enabled(self) -> bool:
        return self._api_key is not None

    @property
    def protected_prefix(self) -> str:
        return self._protected_prefix

    def matches(self, token: Optional[str]) -> bool:
        if not token or self._api_key is None:
            return False
        return secrets.compare_digest(token.encode("utf-8"), self._api_key.encode("utf-8"))

    async def authenticate(self, conn: HTTPConnection) -> Optional[Tuple[AuthCredentials, BaseUser]]:
        if not is_protected_path(conn.url.path, self._protected_prefix):
            return None
        if self._api_key is None:
            return None

        if not self.matches(extract_token(conn)):
            raise AuthenticationError("Missing or invalid authentication token.")

        return AuthCredentials([API_SCOPE]), SimpleUser(API_CLIENT_NAME)


__all__ = [
    "API_CLIENT_NAME",
    "API_KEY_HEADER",
    "SharedSecretBackend",
    "extract_token",
    "is_protected_path",
]
