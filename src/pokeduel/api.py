"""FastAPI application carrying the match event protocol over WebSockets."""
from __future__ import annotations

import json
import uuid
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, List, Optional

from .config import Settings
from .errors import DependencyError, DisconnectFault, ValidationError
from .observability import (
    configure_logging,
    get_logger,
    health_snapshot,
    render_metrics,
)
from .pokeapi import PokeApiClient
from .resolver import PokemonResolver
from .service import GameService
from .sessions import Session

try:  # pragma: no cover - optional dependency
    from fastapi import FastAPI, WebSocket, WebSocketDisconnect  # type: ignore[import-not-found]
    from fastapi.responses import PlainTextResponse  # type: ignore[import-not-found]
except Exception:  # pragma: no cover - gracefully handled at runtime
    FastAPI = None  # type: ignore
    WebSocket = None  # type: ignore
    WebSocketDisconnect = None  # type: ignore
    PlainTextResponse = None  # type: ignore


LOGGER = get_logger(__name__)

_SECURE_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


class WebSocketSession(Session):
    """Session bound to one WebSocket; frames are ``{"event", "data"}`` JSON objects."""

    def __init__(self, websocket: "WebSocket", session_id: str | None = None) -> None:
        super().__init__(session_id or uuid.uuid4().hex)
        self.websocket = websocket

    async def deliver(self, event: str, data: Any) -> None:
        try:
            await self.websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError) as exc:
            self.connected = False
            raise DisconnectFault(
                "Connection lost while sending.",
                context={"session_id": self.id, "outbound": event},
            ) from exc


def decode_frame(text: str | None, data: bytes | None = None) -> Dict[str, Any]:
    """Parse one inbound ``{"event", "data"}`` frame, rejecting anything else."""

    raw = text if text is not None else data
    if raw is None:
        raise ValidationError("Empty frame.", remediation="Send a JSON object.")
    try:
        frame = json.loads(raw)
    except ValueError:
        raise ValidationError("Frames must be valid JSON.", remediation="Send a JSON object.") from None
    if not isinstance(frame, dict):
        raise ValidationError("Frames must be JSON objects.", remediation="Send a JSON object.")
    return frame


def _validate_dependency() -> None:
    if FastAPI is None:
        raise DependencyError(
            "FastAPI is required to use pokeduel.api.",
            remediation="Install fastapi and uvicorn to run the match server.",
        )


def build_service(settings: Settings) -> GameService:
    client = PokeApiClient(settings.pokeapi_base_url, timeout=settings.request_timeout)
    resolver = PokemonResolver(client, version_group=settings.version_group)
    return GameService(resolver, available_ids=settings.available_ids)


def create_app(
    settings: Optional[Settings] = None,
    *,
    service: Optional[GameService] = None,
) -> "FastAPI":
    """Return a configured FastAPI application serving the match server."""

    _validate_dependency()
    assert FastAPI is not None  # for mypy

    settings = settings or Settings()
    configure_logging(settings.log_level)
    game = service or build_service(settings)
    game.register_health()

    @asynccontextmanager
    async def lifespan(app: "FastAPI"):  # type: ignore[no-untyped-def]
        await game.initialise()
        try:
            yield
        finally:
            source = game.resolver.source
            if isinstance(source, PokeApiClient):
                await source.aclose()

    app = FastAPI(title="PokéDuel", version="1.0.0", lifespan=lifespan)
    app.state.game = game

    @app.middleware("http")
    async def add_security_headers(request, call_next):  # type: ignore[no-untyped-def]
        response = await call_next(request)
        for header, value in _SECURE_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    @app.get("/health", tags=["system"])
    async def healthcheck() -> Dict[str, Any]:
        return health_snapshot()

    assert PlainTextResponse is not None  # for mypy

    @app.get("/metrics", tags=["system"], response_class=PlainTextResponse)
    async def metrics_endpoint() -> "PlainTextResponse":
        return PlainTextResponse(render_metrics(), media_type="text/plain; version=0.0.4")

    @app.get("/leaderboard", tags=["game"])
    async def leaderboard_endpoint() -> List[Dict[str, Any]]:
        return game.leaderboard.ranked()

    @app.get("/creatures", tags=["game"])
    async def creatures_endpoint() -> List[Dict[str, Any]]:
        return list(game.catalogue)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: "WebSocket") -> None:
        await websocket.accept()
        session = WebSocketSession(websocket)
        await game.connect(session)
        reason = "closed"
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                try:
                    frame = decode_frame(message.get("text"), message.get("bytes"))
                except ValidationError as error:
                    await game.reject(session, error)
                    continue
                await game.dispatch(session, frame.get("event"), frame.get("data"))
        except WebSocketDisconnect as exc:
            reason = f"code {exc.code}"
        except Exception:
            reason = "error"
            LOGGER.exception(
                "websocket_failed",
                extra={"event": "websocket_failed", "session_id": session.id},
            )
            with suppress(RuntimeError):
                await websocket.close(code=1011)
        finally:
            await game.disconnect(session, reason)

    return app


__all__ = ["WebSocketSession", "build_service", "create_app", "decode_frame"]
