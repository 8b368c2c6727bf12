"""Server settings merged from CLI arguments and environment variables."""

from __future__ import annotations

import os
from argparse import Namespace
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Tuple

from .pokeapi import DEFAULT_BASE_URL
from .resolver import DEFAULT_VERSION_GROUP

__all__ = ["DEFAULT_AVAILABLE_IDS", "Settings", "build_settings"]

# Bulbasaur, Charmander, Squirtle, Pikachu, Jigglypuff, Geodude
DEFAULT_AVAILABLE_IDS: Tuple[int, ...] = (1, 4, 7, 25, 39, 74)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the match server."""

    host: str = "127.0.0.1"
    port: int = 3001
    pokeapi_base_url: str = DEFAULT_BASE_URL
    version_group: str = DEFAULT_VERSION_GROUP
    available_ids: Tuple[int, ...] = DEFAULT_AVAILABLE_IDS
    request_timeout: float = 10.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535.")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive.")


def _parse_ids(value: str, source: str) -> Tuple[int, ...]:
    try:
        ids = tuple(int(part) for part in value.split(",") if part.strip())
    except ValueError as exc:
        raise ValueError(f"{source} must be a comma separated list of integers.") from exc
    if not ids:
        raise ValueError(f"{source} must name at least one Pokémon id.")
    return ids


def _pick(args: Namespace | None, name: str) -> Any:
    return getattr(args, name, None) if args is not None else None


def build_settings(
    args: Namespace | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Construct settings: CLI arguments first, then environment, then defaults."""

    env = os.environ if env is None else env
    defaults = Settings()

    host = _pick(args, "host") or env.get("POKEDUEL_HOST") or defaults.host

    port = _pick(args, "port")
    if port is None and env.get("PORT"):
        try:
            port = int(env["PORT"])
        except ValueError as exc:
            raise ValueError("PORT must be an integer.") from exc

    base_url = _pick(args, "pokeapi_url") or env.get("POKEDUEL_POKEAPI_URL") or defaults.pokeapi_base_url
    version_group = _pick(args, "version_group") or env.get("POKEDUEL_VERSION_GROUP") or defaults.version_group

    ids_arg = _pick(args, "available_ids")
    if ids_arg:
        available_ids = _parse_ids(ids_arg, "--available-ids")
    elif env.get("POKEDUEL_AVAILABLE_IDS"):
        available_ids = _parse_ids(env["POKEDUEL_AVAILABLE_IDS"], "POKEDUEL_AVAILABLE_IDS")
    else:
        available_ids = defaults.available_ids

    timeout = _pick(args, "request_timeout")
    if timeout is None and env.get("POKEDUEL_REQUEST_TIMEOUT"):
        try:
            timeout = float(env["POKEDUEL_REQUEST_TIMEOUT"])
        except ValueError as exc:
            raise ValueError("POKEDUEL_REQUEST_TIMEOUT must be a number of seconds.") from exc

    log_level = _pick(args, "log_level") or env.get("POKEDUEL_LOG_LEVEL") or defaults.log_level

    return Settings(
        host=host,
        port=port if port is not None else defaults.port,
        pokeapi_base_url=base_url,
        version_group=version_group,
        available_ids=available_ids,
        request_timeout=timeout if timeout is not None else defaults.request_timeout,
        log_level=str(log_level).upper(),
    )
