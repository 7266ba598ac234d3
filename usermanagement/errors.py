"""Business-rule failures raised by the user repository."""

from __future__ import annotations


class UserRepositoryError(Exception):
    """Base class for failures the HTTP layer maps to a specific status code."""


class UserNotFoundError(UserRepositoryError, KeyError):
    def __init__(self, user_id: object) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id

    def __str__(self) -> str:
        return str(self.args[0])


class EmailConflictError(UserRepositoryError, ValueError):
    def __init__(self, email: str) -> None:
        super().__init__("Email already in use")
        self.email = email


class DuplicateUserIdError(UserRepositoryError, ValueError):
    def __init__(self, user_id: object) -> None:
        super().__init__(f"User {user_id} already exists")
        self.user_id = user_id


__all__ = ["DuplicateUserIdError", "EmailConflictError", "UserNotFoundError", "UserRepositoryError"]
