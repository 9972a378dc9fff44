"""Document upload and ingestion pipeline.

This module provides the DocumentUploader, which records uploads with
content-hash deduplication, and the IngestionPipeline, which turns a pending
document into searchable passages.
"""

from concurrent.futures import ThreadPoolExecutor
import hashlib
import logging
import os
from typing import Callable

from docqa.config import Settings
from docqa.errors import (
    DocQAError,
    InternalError,
    InvalidTransitionError,
    ValidationError,
)
from docqa.models import Document, IngestionResult, Requester, UploadResult
from docqa.rag.chunker import chunk_text
from docqa.rag.embeddings import EmbeddingClient
from docqa.rag.extractor import SUPPORTED_MIME_TYPES, extract_text
from docqa.rag.storage import LocalBlobStore
from docqa.store import InMemoryStore

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024


class DocumentUploader:
    """Records uploaded files as pending documents."""

    def __init__(self, store: InMemoryStore, blobs: LocalBlobStore) -> None:
        self.store = store
        self.blobs = blobs

    def upload(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        owner: Requester,
        title: str | None = None,
        shareable: bool = False,
        classification: str = "unclassified",
    ) -> UploadResult:
        """Store an uploaded file and create its document record.

        Args:
            data: Raw file bytes.
            filename: Original file name.
            mime_type: Declared content type.
            owner: Uploading identity.
            title: Display title; defaults to the file name without extension.
            shareable: Whether every requester may retrieve from it.
            classification: Free-form classification label.

        Returns:
            UploadResult with ``created=False`` when a document with the same
            content already exists; that document is returned unchanged.
        """
        if not data:
            raise ValidationError("No file provided")
        if not filename:
            raise ValidationError("filename is required")
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise ValidationError(
                f"File type {mime_type} is not allowed. Allowed types: PDF, DOCX, TXT"
            )
        if len(data) > MAX_FILE_SIZE:
            raise ValidationError("File size exceeds maximum of 50 MB")

        content_hash = hashlib.sha256(data).hexdigest()
        existing = self.store.find_document_by_hash(content_hash)
        if existing is not None:
            logger.info(f"Duplicate upload of {filename}; returning document {existing.id}")
            return UploadResult(document=existing, created=False)

        key = self.blobs.put(f"docs/{content_hash}/{os.path.basename(filename)}", data)
        document = Document(
            owner_id=owner.id,
            title=(title or os.path.splitext(filename)[0])[:255],
            filename=filename,
            mime_type=mime_type,
            size=len(data),
            content_hash=content_hash,
            shareable=shareable,
            classification=classification,
            storage_key=key,
        )
        # A concurrent upload of the same bytes may have won the race.
        stored, created = self.store.get_or_create_document(document)
        if created:
            logger.info(f"Created document {stored.id} for {filename}")
        return UploadResult(document=stored, created=created)


class IngestionPipeline:
    """Pipeline for turning an uploaded document into searchable passages.

    Handles the processing status transitions, text extraction, chunking,
    concurrent embedding and passage storage.
    """

    def __init__(
        self,
        settings: Settings,
        store: InMemoryStore,
        embedder: EmbeddingClient,
        extract: Callable[[Document], str],
    ) -> None:
        """Initialize ingestion pipeline.

        Args:
            settings: Application settings.
            store: Document store.
            embedder: Embedding-generation client.
            extract: Returns the plain text of a document.
        """
        self.settings = settings
        self.store = store
        self.embedder = embedder
        self.extract = extract

    def ingest(self, document_id: str) -> IngestionResult:
        """Process one document from pending (or failed) to completed.

        Passages are swapped in together with the move to completed, and only
        while this run still holds the document's claim. A run whose claim
        was taken over (for example by the stale-processing sweep) writes
        nothing and leaves the document to the newer run.

        Raises:
            InvalidTransitionError: If the document is already processing or
                completed, or this run's claim was superseded. Nothing is
                changed in that case.
            DocQAError: Any step failure, after the document is marked failed.
        """
        document = self.store.claim_document(document_id)
        attempt = document.attempt
        logger.info(f"Processing document {document.id} (attempt {attempt}): {document.title}")

        try:
            text = self.extract(document)
            logger.info(f"Extracted {len(text)} characters from document {document.id}")

            chunks = chunk_text(
                text,
                chunk_size=self.settings.ingest_chunk_size,
                overlap=self.settings.ingest_chunk_overlap,
            )
            vectors = self._embed_all([c.text for c in chunks])

            completed = self.store.complete_claim(
                document.id,
                attempt,
                [
                    (chunk.index, vector, {"text": chunk.text, "model": self.embedder.model})
                    for chunk, vector in zip(chunks, vectors)
                ],
            )
        except DocQAError as e:
            self._fail(document.id, attempt, e)
            raise
        except Exception as e:
            self._fail(document.id, attempt, e)
            raise InternalError("Document processing failed") from e

        if completed is None:
            logger.warning(
                f"Discarding attempt {attempt} of document {document.id}: claim superseded"
            )
            raise InvalidTransitionError(
                f"Ingestion attempt {attempt} of document {document.id} was superseded"
            )

        logger.info(
            f"Successfully processed document {document.id} with {len(chunks)} passages"
        )
        return IngestionResult(
            document=completed, passage_count=len(chunks), model=self.embedder.model
        )

    def _embed_all(self, texts: list[str]) -> list[list[float]]:
        """Embed texts concurrently; results keep the order of ``texts``."""
        if not texts:
            return []
        workers = max(1, min(self.settings.embed_concurrency, len(texts)))
        if workers == 1:
            return [self.embedder.embed(t) for t in texts]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed") as pool:
            return list(pool.map(self.embedder.embed, texts))

    def _fail(self, document_id: str, attempt: int, error: Exception) -> None:
        if self.store.release_claim(document_id, attempt) is None:
            logger.warning(
                f"Attempt {attempt} of document {document_id} failed after losing its claim: {error}"
            )
            return
        logger.error(f"Document processing failed for {document_id}: {error}")


def blob_text_extractor(blobs: LocalBlobStore) -> Callable[[Document], str]:
    """Extractor reading a document's raw bytes from ``blobs``."""

    def extract(document: Document) -> str:
        if not document.storage_key:
            raise ValidationError(f"Document {document.id} has no stored file")
        return extract_text(blobs.get(document.storage_key), document.mime_type)

    return extract
