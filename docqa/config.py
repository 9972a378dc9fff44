"""Application configuration settings.

This module defines the Settings dataclass that loads configuration
from environment variables.
"""

from dataclasses import dataclass
import logging
import os

from dotenv import load_dotenv


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        llm_provider: Backend for embeddings and generation ("ollama" or "watsonx").
        ollama_host: Base URL of the Ollama server.
        embed_model: Ollama embedding model name.
        gen_model: Ollama generation model name.
        ibm_cloud_api_key: IBM Cloud API key for authentication.
        watsonx_region: Watsonx.ai service region.
        watsonx_project_id: Watsonx.ai project ID.
        watsonx_embed_model: Watsonx.ai embedding model ID.
        watsonx_gen_model: Watsonx.ai generation model ID.
        connect_timeout: Seconds allowed to establish a connection.
        generation_timeout: Seconds allowed for a full embedding/generation call.
        ingest_chunk_size: Chunk size used when ingesting documents.
        ingest_chunk_overlap: Chunk overlap used when ingesting documents.
        top_k: Number of passages retrieved per question.
        temperature: Generation temperature.
        embed_concurrency: Concurrent embedding calls per document.
        ingest_max_attempts: Attempts per ingestion for retryable failures.
        stale_processing_seconds: Age after which a processing document is reclaimed.
        upload_dir: Directory holding raw uploaded files.
        log_level: Root log level.
    """

    llm_provider: str
    ollama_host: str
    embed_model: str
    gen_model: str

    ibm_cloud_api_key: str
    watsonx_region: str
    watsonx_project_id: str
    watsonx_embed_model: str
    watsonx_gen_model: str

    connect_timeout: float
    generation_timeout: float

    ingest_chunk_size: int
    ingest_chunk_overlap: int
    top_k: int
    temperature: float

    embed_concurrency: int
    ingest_max_attempts: int
    stale_processing_seconds: float

    upload_dir: str
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings instance from environment variables.

        Returns:
            Settings instance with values loaded from environment.
        """
        return cls(
            llm_provider=os.getenv("LLM_PROVIDER", "ollama").lower(),
            ollama_host=os.getenv("OLLAMA_HOST", "http://localhost:11434"),
            embed_model=os.getenv("EMBED_MODEL", "nomic-embed-text"),
            gen_model=os.getenv("GEN_MODEL", "llama3.2:3b"),
            ibm_cloud_api_key=os.getenv("IBM_CLOUD_API_KEY", ""),
            watsonx_region=os.getenv("WATSONX_REGION", "us-south"),
            watsonx_project_id=os.getenv("WATSONX_PROJECT_ID", ""),
            watsonx_embed_model=os.getenv(
                "WATSONX_EMBED_MODEL",
                "ibm/granite-embedding-30m-english",
            ),
            watsonx_gen_model=os.getenv(
                "WATSONX_GEN_MODEL", "ibm/granite-13b-instruct-v2"
            ),
            connect_timeout=float(os.getenv("CONNECT_TIMEOUT", "10")),
            generation_timeout=float(os.getenv("GENERATION_TIMEOUT", "120")),
            ingest_chunk_size=int(os.getenv("INGEST_CHUNK_SIZE", "800")),
            ingest_chunk_overlap=int(os.getenv("INGEST_CHUNK_OVERLAP", "100")),
            top_k=int(os.getenv("TOP_K", "5")),
            temperature=float(os.getenv("TEMPERATURE", "0.2")),
            embed_concurrency=int(os.getenv("EMBED_CONCURRENCY", "4")),
            ingest_max_attempts=int(os.getenv("INGEST_MAX_ATTEMPTS", "3")),
            stale_processing_seconds=float(
                os.getenv("STALE_PROCESSING_SECONDS", "1800")
            ),
            upload_dir=os.getenv("UPLOAD_DIR", "data/uploads"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def get_settings() -> Settings:
    """Load ``.env`` (if present) and build settings from the environment."""
    load_dotenv()
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
