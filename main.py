"""Command-line interface for the user management service."""

from __future__ import annotations
import argparse
import logging
import os
import secrets
import sys
from pathlib import Path
from typing import Sequence

try:
    import httpx
except ImportError as exc:  # pragma: no cover - exercised in environments missing deps
    raise SystemExit(
        "The 'httpx' package is required. Execute `pip install -e .` to install dependencies."
    ) from exc

from usermanagement.config import API_KEY_ENV, load_settings

logger = logging.getLogger("usermanagement.main")

_DEFAULT_SERVICE_URL = "http://localhost:8000"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User management service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP API (default: 8000)",
    )
    serve_parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USER_API_CONFIG)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    list_parser = subparsers.add_parser("list-users", help="List users known to a running service")
    list_parser.add_argument(
        "--service-url",
        default=None,
        help="Base URL of a running service (default: http://localhost:8000)",
    )
    list_parser.add_argument(
        "--api-key",
        default=None,
        help=f"Shared secret to authenticate with. Defaults to the {API_KEY_ENV} environment variable.",
    )

    subparsers.add_parser("generate-key", help="Print a new random shared secret")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "list-users", "generate-key"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _serve(
    *,
    host: str,
    port: int,
    config: str | None,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from usermanagement.service import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    config_path = Path(config).expanduser() if config else None
    try:
        settings = load_settings(config_path)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Failed to load configuration: {exc}") from exc

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting user management API on %s://%s:%s", protocol, host, port)

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _list_users(service_url: str | None, api_key: str | None) -> int:
    base_url = service_url or _DEFAULT_SERVICE_URL
    token = api_key or os.getenv(API_KEY_ENV)

    headers = {"Authorization": f"Bearer {token}"} if token else {}
    endpoint = base_url.rstrip("/") + "/api/users"

    try:
        response = httpx.get(endpoint, headers=headers, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact user management service: {exc}")
        return 1

    correlation_id = response.headers.get("X-Correlation-ID", "-")
    if response.status_code == 401:
        print(f"Authentication failed (correlation id {correlation_id}). Verify the API key.")
        return 1
    if response.status_code != 200:
        print(
            f"Service responded with {response.status_code} "
            f"(correlation id {correlation_id}): {response.text.strip()}"
        )
        return 1

    try:
        users = response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return 1

    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':<36}  {'Name':<24}  {'Email':<32}  {'Role':<6}  Created")
    print("-" * 120)
    for user in users:
        name = f"{user.get('firstName', '')} {user.get('lastName', '')}".strip()
        print(
            f"{user.get('id', '?'):<36}  {name:<24}  {user.get('email', ''):<32}  "
            f"{user.get('role', ''):<6}  {user.get('createdAt', '')}"
        )
    return 0


def _generate_key() -> int:
    print("Generated API key:")
    print(secrets.token_urlsafe(32))
    print(f"\nExport it as {API_KEY_ENV} (or auth.api_key in the YAML config) before starting the service.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    if args.command == "serve":
        _serve(
            host=args.host,
            port=args.port,
            config=args.config,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
        return 0
    if args.command == "list-users":
        return _list_users(args.service_url, args.api_key)
    if args.command == "generate-key":
        return _generate_key()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
