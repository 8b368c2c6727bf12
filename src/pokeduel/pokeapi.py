"""Async client for the PokéAPI species and move endpoints."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .errors import RemoteFetchError
from .observability import get_logger

DEFAULT_BASE_URL = "https://pokeapi.co/api/v2"

LOGGER = get_logger(__name__)


class PokeApiClient:
    """Thin wrapper returning decoded JSON records.

    Any transport failure, timeout or non-2xx status is raised as
    :class:`~pokeduel.errors.RemoteFetchError`; a 404 carries
    ``context["status"] == 404``.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _get_json(self, path: str) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 404:
                LOGGER.warning("remote_not_found", extra={"event": "remote_not_found", "url": url})
            raise RemoteFetchError(
                f"PokéAPI returned {status} for {path}.",
                remediation="Check the identifier or retry later.",
                context={"url": url, "status": status},
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteFetchError(
                f"PokéAPI request for {path} failed.",
                remediation="Retry once the data source is reachable.",
                context={"url": url, "reason": type(exc).__name__},
            ) from exc
        return response.json()

    async def fetch_species(self, identifier: str) -> Dict[str, Any]:
        return await self._get_json(f"pokemon/{identifier}")

    async def fetch_move(self, identifier: str) -> Dict[str, Any]:
        return await self._get_json(f"move/{identifier}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["DEFAULT_BASE_URL", "PokeApiClient"]
