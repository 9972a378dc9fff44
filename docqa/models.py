"""Data models for the document Q&A pipeline.

This module defines Pydantic models for documents, passages, queries and
citations, plus the status lifecycles they move through.
"""

from datetime import datetime, timezone
from enum import Enum
import uuid

from pydantic import BaseModel, ConfigDict, Field

from docqa.errors import InvalidTransitionError


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# failed -> processing is the retry path for documents only.
DOCUMENT_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.PENDING: frozenset({Status.PROCESSING}),
    Status.PROCESSING: frozenset({Status.COMPLETED, Status.FAILED}),
    Status.COMPLETED: frozenset(),
    Status.FAILED: frozenset({Status.PROCESSING}),
}

QUERY_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.PENDING: frozenset({Status.PROCESSING}),
    Status.PROCESSING: frozenset({Status.COMPLETED, Status.FAILED}),
    Status.COMPLETED: frozenset(),
    Status.FAILED: frozenset(),
}


def check_transition(
    current: Status, target: Status, table: dict[Status, frozenset[Status]]
) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is in ``table``."""
    if target not in table[current]:
        raise InvalidTransitionError(
            f"Cannot move from {current.value} to {target.value}"
        )


class Role(str, Enum):
    DOCTOR = "doctor"
    RESEARCHER = "researcher"
    AUDITOR = "auditor"
    ADMIN = "admin"


ELEVATED_ROLES = frozenset({Role.ADMIN, Role.AUDITOR})


class Requester(BaseModel):
    """Identity asking a question or uploading a document."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role = Role.RESEARCHER

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


class Document(BaseModel):
    """Uploaded document and its processing lifecycle.

    Attributes:
        id: Unique document identifier.
        owner_id: Identity that uploaded the document.
        title: Display title.
        filename: Original file name.
        mime_type: Declared content type.
        size: Size of the raw bytes.
        content_hash: SHA-256 of the raw bytes, unique across documents.
        shareable: Generally shareable reference material, visible to all.
        classification: Free-form classification label.
        status: Lifecycle status.
        storage_key: Key of the raw bytes in blob storage.
        created_at: Creation timestamp.
        processing_started_at: When the current ingestion claimed the document.
        processed_at: When ingestion completed.
        attempt: Number of times ingestion has claimed the document; identifies
            the current claim.
    """

    id: str = Field(default_factory=_new_id)
    owner_id: str
    title: str
    filename: str
    mime_type: str
    size: int
    content_hash: str
    shareable: bool = False
    classification: str = "unclassified"
    status: Status = Status.PENDING
    storage_key: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    processing_started_at: datetime | None = None
    processed_at: datetime | None = None
    attempt: int = 0


class Passage(BaseModel):
    """Chunk of document text stored with its embedding vector."""

    model_config = ConfigDict(frozen=True)

    id: int
    document_id: str
    chunk_index: int = Field(ge=0)
    text: str
    vector: list[float]
    model: str


class TextChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    index: int
    size: int


class SearchHit(BaseModel):
    """Retrieved passage with its cosine similarity to the query vector."""

    model_config = ConfigDict(frozen=True)

    passage: Passage
    score: float


class Query(BaseModel):
    id: str = Field(default_factory=_new_id)
    owner_id: str
    question: str
    status: Status = Status.PENDING
    answer: str | None = None
    processing_time: float | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Citation(BaseModel):
    """Link between a query's answer and one retrieved passage."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    query_id: str
    document_id: str
    passage_id: int
    chunk_index: int
    relevance_score: float = Field(ge=0.0, le=1.0)


class UploadResult(BaseModel):
    document: Document
    created: bool


class IngestionResult(BaseModel):
    document: Document
    passage_count: int
    model: str


class QueryResult(BaseModel):
    """Completed query with citations in similarity-descending order."""

    query: Query
    citations: list[Citation]
    hits: list[SearchHit]

    def audit_refs(self) -> list[tuple[str, str]]:
        """(entity type, id) pairs touched by this answer, for an audit log."""
        refs = [("query", self.query.id)]
        refs.extend(("document", c.document_id) for c in self.citations)
        return refs
