"""In-memory user storage shared by every request handled by the service."""

from __future__ import annotations

import threading
import uuid
from typing import Dict, Iterable, List, Optional

from .errors import DuplicateUserIdError, EmailConflictError, UserNotFoundError
from .models import User, normalize_email


def default_seed_users() -> List[User]:
    """Demonstration accounts loaded when seeding is enabled."""

    return [
        User.new(first_name="Alice", last_name="Rogers", email="alice.rogers@techhive.io", role="HR"),
        User.new(first_name="Bob", last_name="Nguyen", email="bob.nguyen@techhive.io", role="IT"),
    ]


class InMemoryUserRepository:
    """Thread-safe store keyed by user id with a unique, case-insensitive email index.

    Lookups rely on single-key ``dict`` operations being atomic. Every
    operation that has to keep ``_users`` and ``_email_index`` in agreement
    (create, update, delete) runs under ``_lock`` so that concurrent writers
    never observe or produce a half-applied change.
    """

    def __init__(self, seed: Iterable[User] | None = None) -> None:
        self._users: Dict[uuid.UUID, User] = {}
        self._email_index: Dict[str, uuid.UUID] = {}
        self._lock = threading.Lock()
        for user in seed or ():
            self.create(user)

    def __len__(self) -> int:
        return len(self._users)

    def list_all(self) -> List[User]:
        with self._lock:
            return list(self._users.values())

    def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return self._users.get(user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        if not email or not email.strip():
            return None
        user_id = self._email_index.get(normalize_email(email))
        if user_id is None:
            return None
        return self._users.get(user_id)

    def create(self, user: User) -> User:
        key = normalize_email(user.email)
        with self._lock:
            if user.id in self._users:
                raise DuplicateUserIdError(user.id)
            if key in self._email_index:
                raise EmailConflictError(user.email)
            self._users[user.id] = user
            self._email_index[key] = user.id
        return user

    def update(self, user: User) -> User:
        key = normalize_email(user.email)
        with self._lock:
            current = self._users.get(user.id)
            if current is None:
                raise UserNotFoundError(user.id)

            owner = self._email_index.get(key)
            if owner is not None and owner != user.id:
                raise EmailConflictError(user.email)

            previous_key = normalize_email(current.email)
            if previous_key != key:
                self._email_index.pop(previous_key, None)
                self._email_index[key] = user.id

            self._users[user.id] = user
        return user

    def delete(self, user_id: uuid.UUID) -> bool:
        with self._lock:
            removed = self._users.pop(user_id, None)
            if removed is None:
                return False
            self._email_index.pop(normalize_email(removed.email), None)
            return True


__all__ = ["InMemoryUserRepository", "default_seed_users"]
