"""Domain models for the user management service."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

ALLOWED_ROLES = ("HR", "IT", "Admin")


def canonical_role(role: str) -> Optional[str]:
    """Return the allow-listed spelling of ``role`` or ``None`` if it is not allowed."""

    candidate = role.strip().lower()
    for allowed in ALLOWED_ROLES:
        if allowed.lower() == candidate:
            return allowed
    return None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class User:
    """Represents a user account held by the repository."""

    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    role: str
    created_at: datetime

    @classmethod
    def new(cls, *, first_name: str, last_name: str, email: str, role: str) -> "User":
        return cls(
            id=uuid.uuid4(),
            first_name=first_name,
            last_name=last_name,
            email=email,
            role=role,
            created_at=_utcnow(),
        )

    def with_changes(self, *, first_name: str, last_name: str, email: str, role: str) -> "User":
        """Return a copy carrying new profile fields; ``id`` and ``created_at`` are kept."""

        return replace(self, first_name=first_name, last_name=last_name, email=email, role=role)


__all__ = ["ALLOWED_ROLES", "User", "canonical_role", "normalize_email"]
