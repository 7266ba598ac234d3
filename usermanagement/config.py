"""Configuration loading for the user management service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

DEFAULT_PROTECTED_PREFIX = "/api"

CONFIG_PATH_ENV = "USER_API_CONFIG"
API_KEY_ENV = "USER_API_KEY"
PROTECTED_PREFIX_ENV = "USER_API_PROTECTED_PREFIX"
SEED_USERS_ENV = "USER_API_SEED_USERS"
DEBUG_ENV = "USER_API_DEBUG"


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _flag(value: object, default: bool) -> bool:
    if value is None or isinstance(value, bool):
        return default if value is None else value
    return _env_flag(str(value), default)


def _normalise_prefix(prefix: str) -> str:
    cleaned = "/" + prefix.strip().strip("/")
    if cleaned == "/":
        raise ValueError("Protected prefix must name at least one path segment")
    return cleaned


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service."""

    api_key: Optional[str] = None
    protected_prefix: str = DEFAULT_PROTECTED_PREFIX
    seed_users: bool = True
    enable_debug_routes: bool = False

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from the parsed YAML document."""
        auth = data.get("auth") or {}
        if not isinstance(auth, Mapping):
            raise ValueError("The 'auth' configuration section must be a mapping")

        raw_key = auth.get("api_key")
        api_key = str(raw_key).strip() if raw_key is not None else ""
        prefix = auth.get("protected_prefix", DEFAULT_PROTECTED_PREFIX)
        return Settings(
            api_key=api_key or None,
            protected_prefix=_normalise_prefix(str(prefix)),
            seed_users=_flag(data.get("seed_users"), True),
            enable_debug_routes=_flag(data.get("debug"), False),
        )


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""
    if not env_value:
        return None
    return Path(env_value).expanduser().resolve(strict=False)


def _read_config_file(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping at the top level")
    return raw


def load_settings(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ

    if config_path is None:
        config_path = resolve_config_path(env.get(CONFIG_PATH_ENV))

    settings = Settings()
    if config_path is not None:
        settings = Settings.from_dict(_read_config_file(config_path))

    api_key = env.get(API_KEY_ENV)
    if api_key is not None:
        api_key = api_key.strip() or None
    else:
        api_key = settings.api_key

    prefix = env.get(PROTECTED_PREFIX_ENV)
    return Settings(
        api_key=api_key,
        protected_prefix=_normalise_prefix(prefix) if prefix else settings.protected_prefix,
        seed_users=_env_flag(env.get(SEED_USERS_ENV), settings.seed_users),
        enable_debug_routes=_env_flag(env.get(DEBUG_ENV), settings.enable_debug_routes),
    )


__all__ = ["Settings", "load_settings", "resolve_config_path"]
