"""User management service: CRUD over users behind a token-gated middleware pipeline."""

from __future__ import annotations

from typing import Any

from .config import Settings, load_settings
from .errors import EmailConflictError, UserNotFoundError, UserRepositoryError
from .models import User
from .repository import InMemoryUserRepository


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the configured FastAPI application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "EmailConflictError",
    "InMemoryUserRepository",
    "Settings",
    "User",
    "UserNotFoundError",
    "UserRepositoryError",
    "create_app",
    "load_settings",
]
