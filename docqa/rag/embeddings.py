import logging
from typing import Any, Optional, Protocol

import httpx
from ibm_watsonx_ai.foundation_models import Embeddings as WXEmbeddings

from docqa.config import Settings
from docqa.errors import GenerationError
from docqa.rag.ollama_client import OllamaClient
from docqa.rag.watsonx import build_credentials, call_with_timeout

logger = logging.getLogger(__name__)


class EmbeddingClient(Protocol):
    model: str

    def embed(self, text: str) -> list[float]: ...


def _as_vector(value: Any, source: str) -> list[float]:
    if not isinstance(value, list) or not value:
        raise GenerationError(f"Unexpected embedding format from {source}")
    try:
        return [float(x) for x in value]
    except (TypeError, ValueError) as e:
        raise GenerationError(f"Non-numeric embedding from {source}") from e


class OllamaEmbeddingClient:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.model = settings.embed_model
        self.http = OllamaClient(settings, transport=transport)

    def embed(self, text: str) -> list[float]:
        data = self.http.post_json(
            "/api/embeddings", {"model": self.model, "prompt": text}
        )
        return _as_vector(data.get("embedding"), "Ollama")

    def close(self) -> None:
        self.http.close()


class WatsonxEmbeddingClient:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.model = settings.watsonx_embed_model
        self.client = WXEmbeddings(
            model_id=settings.watsonx_embed_model,
            project_id=settings.watsonx_project_id,
            credentials=build_credentials(settings),
        )

    def embed(self, text: str) -> list[float]:
        result = call_with_timeout(
            lambda: self.client.embed_query(text), self.settings.generation_timeout
        )
        data = result.get_result() if hasattr(result, "get_result") else result
        if isinstance(data, dict):
            # {"results": [{"embedding"|"vector"|"values": [...]}, ...]}
            results = data.get("results")
            if isinstance(results, list) and results and isinstance(results[0], dict):
                first = results[0]
                for key in ("embedding", "vector", "values"):
                    if key in first:
                        return _as_vector(first[key], "watsonx.ai")
            if "embedding" in data:
                return _as_vector(data["embedding"], "watsonx.ai")
            if data.get("embeddings"):
                return _as_vector(data["embeddings"][0], "watsonx.ai")
        if isinstance(data, list) and data:
            # either a single vector or a list of vectors
            return _as_vector(data[0] if isinstance(data[0], list) else data, "watsonx.ai")
        raise GenerationError(
            f"Unexpected query embedding response format from watsonx.ai: {type(data).__name__}"
        )


def get_embedding_client(settings: Settings) -> EmbeddingClient:
    if settings.llm_provider == "watsonx":
        return WatsonxEmbeddingClient(settings)
    if settings.llm_provider == "ollama":
        return OllamaEmbeddingClient(settings)
    raise ValueError(f"Unknown LLM_PROVIDER: {settings.llm_provider}")
