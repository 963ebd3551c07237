from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv

ENV_PREFIX = "CARTSYNC_"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ClientConfig:
    """Settings for one cart session: where the cart service lives and how
    the session keeps its local state.

    ``cache_dir`` overrides the per-user data directory the cart cache is
    written to. ``background_mutations`` picks the dispatcher for remote
    add/remove calls; hosts without a UI thread to keep free turn it off and
    get synchronous completions.
    """

    env_name: str
    api_base_url: str
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 15.0
    retries: int = 3
    retry_backoff_seconds: float = 0.3
    max_connections: int = 20
    verify_ssl: bool = True
    cache_app_name: str = "cartsync"
    cache_dir: Path | None = None
    background_mutations: bool = True

    @property
    def normalized_env(self) -> str:
        return self.env_name.lower().strip()


def _env(name: str) -> str:
    return (os.getenv(ENV_PREFIX + name) or "").strip()


def _flag(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _number(name: str, cast: Callable[[str], float], default: float, minimum: float, *, strict: bool = False) -> float:
    key = ENV_PREFIX + name
    raw = _env(name) or str(default)
    try:
        value = cast(raw)
    except ValueError as exc:
        kind = "an integer" if cast is int else "a number"
        raise ConfigError(f"Invalid {key}: expected {kind}, got {raw!r}") from exc
    if value < minimum or (strict and value == minimum):
        bound = f"> {minimum:g}" if strict else f">= {minimum:g}"
        raise ConfigError(f"Invalid {key}: expected {bound}, got {value:g}")
    return value


def _base_url(env_name: str) -> str:
    # A profile-specific URL lets one .env file carry several profiles.
    url = _env(f"API_BASE_URL_{env_name.upper()}") or _env("API_BASE_URL")
    if not url:
        raise ConfigError(f"Missing required config values: {ENV_PREFIX}API_BASE_URL")
    return url.rstrip("/")


def load_config(env_file: str | None = None) -> ClientConfig:
    """Read ``CARTSYNC_*`` settings from the environment and an optional .env file.

    ``CARTSYNC_TIMEOUT_SECONDS`` is a shorthand: it caps the connect timeout
    at five seconds and sets the read timeout unless either is given
    explicitly.
    """
    load_dotenv(env_file)

    env_name = _env("ENV") or "dev"
    api_base_url = _base_url(env_name)

    timeout = _number("TIMEOUT_SECONDS", float, 10.0, 0, strict=True)
    connect_timeout = _number("CONNECT_TIMEOUT_SECONDS", float, min(timeout, 5.0), 0, strict=True)
    read_timeout = _number("READ_TIMEOUT_SECONDS", float, max(timeout, connect_timeout), 0, strict=True)

    cache_dir = _env("CACHE_DIR")
    return ClientConfig(
        env_name=env_name,
        api_base_url=api_base_url,
        connect_timeout_seconds=connect_timeout,
        read_timeout_seconds=read_timeout,
        retries=int(_number("RETRIES", int, 3, 0)),
        retry_backoff_seconds=_number("RETRY_BACKOFF_SECONDS", float, 0.3, 0),
        max_connections=int(_number("MAX_CONNECTIONS", int, 20, 1)),
        verify_ssl=_flag("VERIFY_SSL", True),
        cache_app_name=_env("CACHE_APP_NAME") or "cartsync",
        cache_dir=Path(cache_dir).expanduser() if cache_dir else None,
        background_mutations=_flag("BACKGROUND_MUTATIONS", True),
    )
