"""Command line entry point for the match server."""
from __future__ import annotations

import argparse
from typing import Sequence

from .config import Settings, build_settings
from .errors import DependencyError, PokeDuelError
from .observability import configure_logging, generate_trace_id, get_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the two-player Pokémon battle server")
    parser.add_argument("--host", help="Interface to bind (env POKEDUEL_HOST)")
    parser.add_argument("--port", type=int, help="Port to listen on (env PORT)")
    parser.add_argument("--pokeapi-url", dest="pokeapi_url", help="PokéAPI base URL")
    parser.add_argument("--version-group", dest="version_group", help="Game version group used to pick moves")
    parser.add_argument(
        "--available-ids",
        dest="available_ids",
        help="Comma separated Pokémon ids offered for team selection",
    )
    parser.add_argument(
        "--request-timeout",
        dest="request_timeout",
        type=float,
        help="Seconds before a PokéAPI request is abandoned",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    return parser


def serve(settings: Settings) -> None:
    try:
        import uvicorn  # type: ignore[import-not-found]
    except ImportError as exc:  # pragma: no cover - depends on environment
        raise DependencyError(
            "uvicorn is required to run the server.",
            remediation="Install uvicorn alongside fastapi.",
        ) from exc

    from .api import create_app

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    trace_id = generate_trace_id()
    try:
        settings = build_settings(args)
    except ValueError as exc:
        parser.error(str(exc))

    configure_logging(settings.log_level)
    logger = get_logger(__name__)
    logger.info(
        "server_starting",
        extra={
            "event": "server_starting",
            "trace_id": trace_id,
            "host": settings.host,
            "port": settings.port,
            "available_ids": list(settings.available_ids),
        },
    )
    try:
        serve(settings)
    except PokeDuelError as exc:
        logger.error(
            "server_failed",
            extra={"event": "server_failed", "trace_id": trace_id, "error": exc.to_payload()},
        )
        parser.error(f"{exc.message} (trace: {trace_id})")


if __name__ == "__main__":  # pragma: no cover
    main()
