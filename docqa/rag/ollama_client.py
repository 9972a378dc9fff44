"""HTTP transport for an Ollama server."""

import logging
from typing import Any, Optional

import httpx

from docqa.config import Settings
from docqa.errors import GenerationError, ServiceConnectionError

logger = logging.getLogger(__name__)


class OllamaClient:
    """Thin JSON-over-HTTP client with bounded timeouts.

    Transport failures and timeouts raise ServiceConnectionError; a non-2xx
    status or an unparseable body raises GenerationError.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.base_url = settings.ollama_host.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                settings.generation_timeout, connect=settings.connect_timeout
            ),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=payload)
        except httpx.TransportError as e:
            raise ServiceConnectionError(f"Failed to connect to Ollama: {e}") from e

        if response.is_error:
            raise GenerationError(
                f"Ollama API error: {response.status_code} - {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError(f"Invalid response from Ollama: {e}") from e
        if not isinstance(data, dict):
            raise GenerationError("Invalid response from Ollama: expected a JSON object")
        return data

    def check_connection(self) -> bool:
        try:
            response = self._client.get("/api/tags", timeout=5.0)
        except httpx.HTTPError as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False
        return response.is_success
