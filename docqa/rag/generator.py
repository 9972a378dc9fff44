import logging
import re
from typing import Any, Optional, Protocol

import httpx
from ibm_watsonx_ai.foundation_models import ModelInference
from ibm_watsonx_ai.metanames import GenTextParamsMetaNames as GenParams

from docqa.config import Settings
from docqa.errors import GenerationError
from docqa.rag.ollama_client import OllamaClient
from docqa.rag.watsonx import build_credentials, call_with_timeout

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful AI assistant for pharmaceutical research. "
    "Answer the question based on the provided context."
)

INSTRUCTIONS = (
    "Instructions:\n"
    "- Answer based only on the provided context\n"
    "- Be concise and factual\n"
    "- If the context doesn't contain enough information, say so\n"
    "- Cite specific details from the context when possible"
)


class AnswerClient(Protocol):
    model: str

    def generate(self, question: str, context: str) -> str: ...


def build_prompt(question: str, context: str) -> str:
    return (
        f"{SYSTEM_PROMPT}\n\nContext:\n{context}\n\nQuestion: {question}\n\n"
        f"{INSTRUCTIONS}\n\nAnswer:"
    )


def clean_output(text: str) -> str:
    """Remove prompt artifacts and structure labels from model output."""
    cleaned = text

    # Placeholder citations like [Source 1] or (Source 1, Source 2)
    cleaned = re.sub(r"\[Source\s+\d+\]", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(
        r"\(Source\s+\d+(?:,\s*Source\s+\d+)*\)", "", cleaned, flags=re.IGNORECASE
    )

    # Keep only what follows the last echoed "Answer:" label
    parts = re.split(r"^\s*Answer:\s*", cleaned, flags=re.IGNORECASE | re.MULTILINE)
    if len(parts) > 1:
        cleaned = parts[-1]
        cleaned = re.split(
            r"^\s*(?:Question|Context):\s*", cleaned, flags=re.IGNORECASE | re.MULTILINE
        )[0]

    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _require_text(raw: Any, source: str) -> str:
    if not isinstance(raw, str):
        raise GenerationError(f"Unexpected generation format from {source}")
    answer = clean_output(raw)
    if not answer:
        raise GenerationError(f"Empty answer from {source}")
    return answer


class OllamaGeneratorClient:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.model = settings.gen_model
        self.http = OllamaClient(settings, transport=transport)

    def generate(self, question: str, context: str) -> str:
        data = self.http.post_json(
            "/api/generate",
            {
                "model": self.model,
                "prompt": build_prompt(question, context),
                "stream": False,
                "options": {"temperature": float(self.settings.temperature)},
            },
        )
        return _require_text(data.get("response"), "Ollama")

    def close(self) -> None:
        self.http.close()


class WatsonxGeneratorClient:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.model = settings.watsonx_gen_model
        self.client = ModelInference(
            model_id=settings.watsonx_gen_model,
            project_id=settings.watsonx_project_id,
            credentials=build_credentials(settings),
        )

    def generate(self, question: str, context: str) -> str:
        params = {
            GenParams.TEMPERATURE: float(self.settings.temperature),
            GenParams.MAX_NEW_TOKENS: 1024,
        }
        prompt = build_prompt(question, context)
        response = call_with_timeout(
            lambda: self.client.generate(prompt=prompt, params=params),
            self.settings.generation_timeout,
        )
        data = response.get_result() if hasattr(response, "get_result") else response
        if isinstance(data, str):
            return _require_text(data, "watsonx.ai")
        if isinstance(data, dict):
            results = data.get("results")
            if isinstance(results, list) and results and isinstance(results[0], dict):
                return _require_text(results[0].get("generated_text"), "watsonx.ai")
            if "generated_text" in data:
                return _require_text(data["generated_text"], "watsonx.ai")
        raise GenerationError(
            f"Unexpected generation response format from watsonx.ai: {type(data).__name__}"
        )


def get_generator_client(settings: Settings) -> AnswerClient:
    if settings.llm_provider == "watsonx":
        return WatsonxGeneratorClient(settings)
    if settings.llm_provider == "ollama":
        return OllamaGeneratorClient(settings)
    raise ValueError(f"Unknown LLM_PROVIDER: {settings.llm_provider}")
