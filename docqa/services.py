"""Wiring of the ingestion and query components from settings."""

from dataclasses import dataclass
import logging
from typing import Optional

from docqa.config import Settings, configure_logging, get_settings
from docqa.rag.embeddings import EmbeddingClient, get_embedding_client
from docqa.rag.generator import AnswerClient, get_generator_client
from docqa.rag.jobs import IngestionScheduler
from docqa.rag.orchestrator import QueryOrchestrator
from docqa.rag.pipeline import DocumentUploader, IngestionPipeline, blob_text_extractor
from docqa.rag.storage import LocalBlobStore
from docqa.rag.vectorstore import VectorIndex
from docqa.store import InMemoryStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    index: VectorIndex
    store: InMemoryStore
    uploader: DocumentUploader
    ingestion: IngestionPipeline
    scheduler: IngestionScheduler
    orchestrator: QueryOrchestrator
    embedder: EmbeddingClient
    generator: AnswerClient

    def close(self) -> None:
        """Release client connections (Ollama HTTP pools)."""
        for client in (self.embedder, self.generator):
            close = getattr(client, "close", None)
            if close is not None:
                close()


def build_services(
    settings: Optional[Settings] = None,
    embedder: Optional[EmbeddingClient] = None,
    generator: Optional[AnswerClient] = None,
) -> Services:
    """Build every component, using the configured clients unless given."""
    if settings is None:
        settings = get_settings()
        configure_logging(settings.log_level)
    embedder = embedder or get_embedding_client(settings)
    generator = generator or get_generator_client(settings)

    index = VectorIndex()
    store = InMemoryStore(index)
    blobs = LocalBlobStore(settings.upload_dir)
    ingestion = IngestionPipeline(
        settings, store, embedder, blob_text_extractor(blobs)
    )
    logger.info(
        f"Services ready (provider={settings.llm_provider}, embed model={embedder.model})"
    )
    return Services(
        settings=settings,
        index=index,
        store=store,
        uploader=DocumentUploader(store, blobs),
        ingestion=ingestion,
        scheduler=IngestionScheduler(settings, store, ingestion),
        orchestrator=QueryOrchestrator(settings, store, index, embedder, generator),
        embedder=embedder,
        generator=generator,
    )
