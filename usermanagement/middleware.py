"""ASGI middleware making up the request pipeline.

Requests flow through the stages in this order::

    ExceptionHandlingMiddleware -> TokenAuthenticationMiddleware
        -> RequestResponseLoggingMiddleware -> FastAPI routes

Each stage only deals with its own concern and delegates the rest.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from starlette.authentication import AuthenticationBackend, AuthenticationError
from starlette.datastructures import MutableHeaders
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.requests import HTTPConnection
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("usermanagement.middleware")

CORRELATION_HEADER = "X-Correlation-ID"
INTERNAL_ERROR_PAYLOAD = {"error": "Internal server error."}
UNAUTHORIZED_PAYLOAD = {
    "title": "Unauthorized",
    "status": status.HTTP_401_UNAUTHORIZED,
    "detail": "Missing or invalid authentication token.",
}


def get_correlation_id(scope: Scope) -> str:
    """Return the request's correlation id, assigning a new one on first use."""

    state = scope.setdefault("state", {})
    correlation_id = state.get("correlation_id")
    if correlation_id is None:
        correlation_id = uuid.uuid4().hex
        state["correlation_id"] = correlation_id
    return correlation_id


def stamp_correlation_id(message: Message, correlation_id: str) -> None:
    message.setdefault("headers", [])
    headers = MutableHeaders(scope=message)
    if CORRELATION_HEADER not in headers:
        headers.append(CORRELATION_HEADER, correlation_id)


def _path_with_query(scope: Scope) -> str:
    path = scope.get("path", "")
    query = scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


def _client_address(scope: Scope) -> str:
    client = scope.get("client")
    if not client:
        return "unknown"
    return str(client[0])


def _identity(scope: Scope) -> str:
    user = scope.get("user")
    if user is not None and getattr(user, "is_authenticated", False):
        return user.display_name
    return "anonymous"


class ExceptionHandlingMiddleware:
    """Outermost stage: turn any unhandled failure into a generic 500 response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = get_correlation_id(scope)
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                stamp_correlation_id(message, correlation_id)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            logger.exception(
                "Unhandled exception processing request %s %s (%s)",
                scope.get("method"),
                scope.get("path"),
                correlation_id,
            )
            if response_started:
                logger.error(
                    "Failed to write error response (%s): response already started",
                    correlation_id,
                )
                return

            response = JSONResponse(
                INTERNAL_ERROR_PAYLOAD,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
            try:
                await response(scope, receive, send_wrapper)
            except Exception:
                logger.exception("Failed to write error response (%s)", correlation_id)


def _unauthorized(conn: HTTPConnection, exc: AuthenticationError) -> Response:
    correlation_id = get_correlation_id(conn.scope)
    logger.warning("Unauthorized request to %s (%s): %s", conn.url.path, correlation_id, exc)
    return JSONResponse(
        UNAUTHORIZED_PAYLOAD,
        status_code=status.HTTP_401_UNAUTHORIZED,
        media_type="application/problem+json",
        headers={CORRELATION_HEADER: correlation_id},
    )


class TokenAuthenticationMiddleware(AuthenticationMiddleware):
    """Reject requests the backend refuses; otherwise attach the principal to the scope."""

    def __init__(self, app: ASGIApp, backend: AuthenticationBackend) -> None:
        super().__init__(app, backend=backend, on_error=_unauthorized)


class _Latch:
    """One-shot flag: ``trip()`` returns ``True`` for the first caller only."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tripped = False

    def trip(self) -> bool:
        with self._lock:
            if self._tripped:
                return False
            self._tripped = True
            return True


class RequestResponseLoggingMiddleware:
    """Log every request once on arrival and once on completion."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        correlation_id = get_correlation_id(scope)
        method = scope.get("method", "")
        target = _path_with_query(scope)
        remote = _client_address(scope)
        identity = _identity(scope)
        completion = _Latch()

        logger.info(
            "Incoming request %s %s from %s as %s (%s)",
            method,
            target,
            remote,
            identity,
            correlation_id,
        )

        def log_completion(status_code: int) -> None:
            if not completion.trip():
                return
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "Outgoing response %s for %s %s from %s as %s (%s) completed in %.1fms",
                status_code,
                method,
                target,
                remote,
                identity,
                correlation_id,
                elapsed_ms,
            )

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                stamp_correlation_id(message, correlation_id)
                log_completion(message["status"])
            await send(message)

        failed = False
        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            failed = True
            raise
        finally:
            # The exception boundary answers failures with a 500.
            log_completion(status.HTTP_500_INTERNAL_SERVER_ERROR if failed else status.HTTP_200_OK)


def install_pipeline(app: FastAPI, backend: AuthenticationBackend) -> None:
    """Register the pipeline stages on ``app`` in their required order."""

    # Starlette wraps middleware in reverse registration order.
    app.add_middleware(RequestResponseLoggingMiddleware)
    app.add_middleware(TokenAuthenticationMiddleware, backend=backend)
    app.add_middleware(ExceptionHandlingMiddleware)


__all__ = [
    "CORRELATION_HEADER",
    "ExceptionHandlingMiddleware",
    "RequestResponseLoggingMiddleware",
    "TokenAuthenticationMiddleware",
    "get_correlation_id",
    "install_pipeline",
]
