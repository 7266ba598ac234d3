"""HTTP API exposing CRUD operations over user accounts."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, List

from fastapi import APIRouter, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from .config import Settings, load_settings
from .errors import EmailConflictError, UserNotFoundError
from .middleware import install_pipeline
from .models import ALLOWED_ROLES, User, canonical_role
from .repository import InMemoryUserRepository, default_seed_users
from .security import SharedSecretBackend

logger = logging.getLogger("usermanagement.service")

USERS_PATH = "/api/users"
_VALIDATION_TITLE = "One or more validation errors occurred."
_VALUE_ERROR_PREFIX = "Value error, "


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRequest(_CamelModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    role: str = Field(..., min_length=1, max_length=50)

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("role")
    @classmethod
    def _allowed_role(cls, value: str) -> str:
        role = canonical_role(value)
        if role is None:
            raise ValueError(f"Invalid role. Allowed: {', '.join(ALLOWED_ROLES)}")
        return role


class UserResponse(_CamelModel):
    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    role: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            role=user.role,
            created_at=user.created_at,
        )


class ConflictResponse(BaseModel):
    error: str


def _conflict(exc: EmailConflictError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})


def _field_name(location: tuple) -> str:
    parts = [str(part) for part in location]
    if parts and parts[0] in {"body", "path", "query", "header"}:
        parts = parts[1:]
    return ".".join(parts)


def _validation_errors(exc: RequestValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        message = str(error.get("msg", "Invalid value"))
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX):]
        errors.setdefault(_field_name(tuple(error.get("loc", ()))), []).append(message)
    return errors


def register_user_routes(app: FastAPI, repository: InMemoryUserRepository) -> None:
    """Expose the user CRUD endpoints backed by ``repository``."""

    router = APIRouter(prefix=USERS_PATH, tags=["Users"])

    @router.get("", response_model=List[UserResponse], name="get_users")
    def list_users() -> List[UserResponse]:
        return [UserResponse.from_user(user) for user in repository.list_all()]

    @router.get(
        "/{user_id}",
        response_model=UserResponse,
        name="get_user_by_id",
        responses={404: {"description": "User not found"}},
    )
    def get_user(user_id: uuid.UUID) -> UserResponse:
        user = repository.get_by_id(user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return UserResponse.from_user(user)

    @router.post(
        "",
        status_code=status.HTTP_201_CREATED,
        response_model=UserResponse,
        name="create_user",
        responses={409: {"model": ConflictResponse}},
    )
    def create_user(payload: UserRequest, response: Response):
        user = User.new(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            role=payload.role,
        )
        try:
            repository.create(user)
        except EmailConflictError as exc:
            logger.warning("Rejected user creation for %s: %s", payload.email, exc)
            return _conflict(exc)

        logger.info("Created user %s", user.id)
        response.headers["Location"] = f"{USERS_PATH}/{user.id}"
        return UserResponse.from_user(user)

    @router.put(
        "/{user_id}",
        response_model=UserResponse,
        name="update_user",
        responses={404: {"description": "User not found"}, 409: {"model": ConflictResponse}},
    )
    def update_user(user_id: uuid.UUID, payload: UserRequest):
        existing = repository.get_by_id(user_id)
        if existing is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        updated = existing.with_changes(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            role=payload.role,
        )
        try:
            repository.update(updated)
        except UserNotFoundError as exc:
            logger.warning("Update failed: %s", exc)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
        except EmailConflictError as exc:
            logger.warning("Rejected update of user %s: %s", user_id, exc)
            return _conflict(exc)

        logger.info("Updated user %s", user_id)
        return UserResponse.from_user(updated)

    @router.delete(
        "/{user_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        name="delete_user",
        responses={404: {"description": "User not found"}},
    )
    def delete_user(user_id: uuid.UUID) -> Response:
        if not repository.delete(user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        logger.info("Deleted user %s", user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    app.include_router(router)


def register_debug_routes(app: FastAPI) -> None:
    @app.get("/api/debug/throw", include_in_schema=False)
    async def debug_throw() -> None:
        raise RuntimeError("Simulated exception for tests")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "title": _VALIDATION_TITLE,
                "status": status.HTTP_400_BAD_REQUEST,
                "errors": _validation_errors(exc),
            },
        )


def create_app(
    *,
    settings: Settings | None = None,
    repository: InMemoryUserRepository | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application with its middleware pipeline."""

    settings = settings or load_settings()
    if repository is None:
        repository = InMemoryUserRepository(default_seed_users() if settings.seed_users else None)

    backend = SharedSecretBackend(settings.api_key, protected_prefix=settings.protected_prefix)
    if not backend.enabled:
        logger.warning(
            "No API key configured (USER_API_KEY). Requests under %s are not authenticated;"
            " set a key outside local development.",
            settings.protected_prefix,
        )

    app = FastAPI(
        title="User Management API",
        version="1.0.0",
        description="CRUD operations over user accounts behind a shared-secret token gate.",
    )
    app.state.settings = settings
    app.state.repository = repository

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    register_user_routes(app, repository)
    if settings.enable_debug_routes:
        register_debug_routes(app)
    register_exception_handlers(app)
    install_pipeline(app, backend)

    return app


__all__ = ["UserRequest", "UserResponse", "create_app", "register_user_routes"]
