"""In-memory persistent store for documents, queries and citations.

All mutations happen under one lock, so status changes are atomic
compare-and-set operations and readers always get consistent copies.
Passages live in the VectorIndex; deleting a document removes them there.
"""

from datetime import datetime, timedelta
import logging
import threading
from typing import Any, Iterable, Mapping, Sequence

from docqa.errors import InvalidTransitionError, NotFoundError
from docqa.models import (
    DOCUMENT_TRANSITIONS,
    QUERY_TRANSITIONS,
    Citation,
    Document,
    Query,
    Status,
    check_transition,
    utcnow,
)
from docqa.rag.vectorstore import VectorIndex

logger = logging.getLogger(__name__)

_CLAIMABLE = frozenset({Status.PENDING, Status.FAILED})


class InMemoryStore:
    def __init__(self, index: VectorIndex):
        self.index = index
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = {}
        self._by_hash: dict[str, str] = {}
        self._queries: dict[str, Query] = {}
        self._citations: dict[str, list[Citation]] = {}

    # Documents

    def get_or_create_document(self, document: Document) -> tuple[Document, bool]:
        """Insert ``document`` unless one with the same content hash exists.

        Returns:
            Tuple of (stored document, created flag).
        """
        with self._lock:
            existing_id = self._by_hash.get(document.content_hash)
            if existing_id is not None:
                return self._documents[existing_id].model_copy(), False
            self._documents[document.id] = document.model_copy()
            self._by_hash[document.content_hash] = document.id
            return document.model_copy(), True

    def find_document_by_hash(self, content_hash: str) -> Document | None:
        with self._lock:
            doc_id = self._by_hash.get(content_hash)
            return self._documents[doc_id].model_copy() if doc_id else None

    def get_document(self, document_id: str) -> Document:
        with self._lock:
            return self._require_document(document_id).model_copy()

    def list_documents(self, owner_id: str | None = None) -> list[Document]:
        with self._lock:
            docs = [
                d.model_copy()
                for d in self._documents.values()
                if owner_id is None or d.owner_id == owner_id
            ]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    def document_ids(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._documents)

    def visible_document_ids(self, owner_id: str) -> frozenset[str]:
        """Ids of documents owned by ``owner_id`` or flagged shareable."""
        with self._lock:
            return frozenset(
                d.id
                for d in self._documents.values()
                if d.owner_id == owner_id or d.shareable
            )

    def claim_document(self, document_id: str) -> Document:
        """Atomically move a pending or failed document to processing.

        The returned document's ``attempt`` identifies this claim; only the
        holder of the current claim can complete or release it.

        Raises:
            InvalidTransitionError: If the document is processing or completed.
        """
        with self._lock:
            doc = self._require_document(document_id)
            if doc.status not in _CLAIMABLE:
                raise InvalidTransitionError(
                    f"Document {document_id} is {doc.status.value}; "
                    "only pending or failed documents can be processed"
                )
            claimed = doc.model_copy(
                update={
                    "status": Status.PROCESSING,
                    "processing_started_at": utcnow(),
                    "processed_at": None,
                    "attempt": doc.attempt + 1,
                }
            )
            self._documents[document_id] = claimed
            return claimed.model_copy()

    def complete_claim(
        self,
        document_id: str,
        attempt: int,
        passages: Iterable[tuple[int, Sequence[float], Mapping[str, Any]]],
    ) -> Document | None:
        """Finish the ingestion holding claim ``attempt``.

        Swaps the document's passages for ``passages`` and moves it to
        completed in one step.

        Returns:
            The completed document, or None when the claim is no longer
            current (superseded or deleted). Nothing is written then.
        """
        with self._lock:
            if self._current_claim(document_id, attempt) is None:
                return None
            self.index.replace_document(document_id, passages)
            return self._move_document(
                document_id, Status.COMPLETED, processed_at=utcnow()
            )

    def release_claim(self, document_id: str, attempt: int) -> Document | None:
        """Fail the ingestion holding claim ``attempt`` and drop its passages.

        Returns:
            The failed document, or None when the claim is no longer current.
            Nothing is changed then.
        """
        with self._lock:
            if self._current_claim(document_id, attempt) is None:
                return None
            self.index.remove_document(document_id)
            return self._move_document(document_id, Status.FAILED)

    def stale_documents(self, older_than: timedelta, now: datetime | None = None) -> list[Document]:
        """Documents stuck in processing for longer than ``older_than``."""
        cutoff = (now or utcnow()) - older_than
        with self._lock:
            return [
                d.model_copy()
                for d in self._documents.values()
                if d.status is Status.PROCESSING
                and d.processing_started_at is not None
                and d.processing_started_at <= cutoff
            ]

    def delete_document(self, document_id: str) -> None:
        """Delete a document, its passages and the citations pointing at it."""
        with self._lock:
            doc = self._require_document(document_id)
            del self._documents[document_id]
            self._by_hash.pop(doc.content_hash, None)
            for query_id, citations in self._citations.items():
                self._citations[query_id] = [
                    c for c in citations if c.document_id != document_id
                ]
            removed = self.index.remove_document(document_id)
        logger.info(f"Deleted document {document_id} and {removed} passages")

    # Queries

    def add_query(self, query: Query) -> Query:
        with self._lock:
            self._queries[query.id] = query.model_copy()
            self._citations[query.id] = []
            return query.model_copy()

    def get_query(self, query_id: str) -> Query:
        with self._lock:
            query = self._queries.get(query_id)
            if query is None:
                raise NotFoundError(f"Query {query_id} not found")
            return query.model_copy()

    def list_queries(self, owner_id: str) -> list[Query]:
        with self._lock:
            queries = [q.model_copy() for q in self._queries.values() if q.owner_id == owner_id]
        return sorted(queries, key=lambda q: q.created_at, reverse=True)

    def mark_query_processing(self, query_id: str) -> Query:
        return self._move_query(query_id, Status.PROCESSING)

    def mark_query_failed(self, query_id: str) -> Query:
        return self._move_query(query_id, Status.FAILED)

    def complete_query(
        self,
        query_id: str,
        answer: str,
        processing_time: float,
        citations: Iterable[Citation],
    ) -> tuple[Query, list[Citation]]:
        """Set the answer, move to completed and record citations in one step."""
        with self._lock:
            query = self._move_query(
                query_id,
                Status.COMPLETED,
                answer=answer,
                processing_time=processing_time,
            )
            stored = list(citations)
            self._citations[query_id] = stored
            return query, list(stored)

    def citations_for(self, query_id: str) -> list[Citation]:
        with self._lock:
            if query_id not in self._queries:
                raise NotFoundError(f"Query {query_id} not found")
            return list(self._citations[query_id])

    # Internals

    def _require_document(self, document_id: str) -> Document:
        doc = self._documents.get(document_id)
        if doc is None:
            raise NotFoundError(f"Document {document_id} not found")
        return doc

    def _current_claim(self, document_id: str, attempt: int) -> Document | None:
        doc = self._documents.get(document_id)
        if doc is None or doc.status is not Status.PROCESSING or doc.attempt != attempt:
            return None
        return doc

    def _move_document(self, document_id: str, target: Status, **changes) -> Document:
        with self._lock:
            doc = self._require_document(document_id)
            check_transition(doc.status, target, DOCUMENT_TRANSITIONS)
            moved = doc.model_copy(update={"status": target, **changes})
            self._documents[document_id] = moved
            return moved.model_copy()

    def _move_query(self, query_id: str, target: Status, **changes) -> Query:
        with self._lock:
            query = self._queries.get(query_id)
            if query is None:
                raise NotFoundError(f"Query {query_id} not found")
            check_transition(query.status, target, QUERY_TRANSITIONS)
            moved = query.model_copy(update={"status": target, **changes})
            self._queries[query_id] = moved
            return moved.model_copy()
