"""Question answering over the accessible part of the corpus.

This module provides the QueryOrchestrator class, which drives one question
through embedding, access-filtered retrieval, answer generation and citation
recording.
"""

import logging
import time

from docqa.config import Settings
from docqa.errors import DocQAError, InternalError, NotFoundError, ValidationError
from docqa.models import Citation, Query, QueryResult, Requester, SearchHit
from docqa.rag.access import accessible_document_ids
from docqa.rag.embeddings import EmbeddingClient
from docqa.rag.generator import AnswerClient
from docqa.rag.vectorstore import VectorIndex
from docqa.store import InMemoryStore

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"
MIN_QUESTION_LENGTH = 3
MAX_QUESTION_LENGTH = 1000


class QueryOrchestrator:
    """Answers questions with citations, restricted to what the requester may see.

    No retries happen here: a ServiceConnectionError reaches the caller with
    ``retryable`` set, every other failure is final. Either way the query is
    left failed.
    """

    def __init__(
        self,
        settings: Settings,
        store: InMemoryStore,
        index: VectorIndex,
        embedder: EmbeddingClient,
        generator: AnswerClient,
    ) -> None:
        self.settings = settings
        self.store = store
        self.index = index
        self.embedder = embedder
        self.generator = generator

    @staticmethod
    def validate_question(question: str | None) -> str:
        if question is None or not question.strip():
            raise ValidationError("question parameter is required")
        question = question.strip()
        if not MIN_QUESTION_LENGTH <= len(question) <= MAX_QUESTION_LENGTH:
            raise ValidationError(
                f"question must be between {MIN_QUESTION_LENGTH} and "
                f"{MAX_QUESTION_LENGTH} characters"
            )
        return question

    @staticmethod
    def build_context(hits: list[SearchHit]) -> str:
        return CONTEXT_SEPARATOR.join(hit.passage.text for hit in hits)

    def answer(self, question: str, requester: Requester) -> QueryResult:
        """Answer ``question`` for ``requester``.

        Args:
            question: Natural-language question.
            requester: Identity asking; decides which documents are searched.

        Returns:
            QueryResult with the completed query and one citation per
            retrieved passage, highest similarity first.

        Raises:
            ValidationError: Missing or invalid question; no query is created.
            NotFoundError: No accessible passage to answer from.
            ServiceConnectionError: Embedding or generation service unreachable.
            GenerationError: Service returned an unusable response.
            InternalError: Anything else.
        """
        question = self.validate_question(question)
        start = time.perf_counter()

        query = self.store.add_query(Query(owner_id=requester.id, question=question))
        self.store.mark_query_processing(query.id)

        try:
            query_vector = self.embedder.embed(question)
            allowed = accessible_document_ids(requester, self.store)
            hits = self.index.find_similar(
                query_vector, k=self.settings.top_k, allowed_document_ids=allowed
            )
            if not hits:
                raise NotFoundError("No relevant documents found")
            logger.info(f"Retrieved {len(hits)} passages for query {query.id}")

            answer = self.generator.generate(question, self.build_context(hits))
            elapsed = time.perf_counter() - start

            citations = [
                Citation(
                    query_id=query.id,
                    document_id=hit.passage.document_id,
                    passage_id=hit.passage.id,
                    chunk_index=hit.passage.chunk_index,
                    relevance_score=min(1.0, max(0.0, hit.score)),
                )
                for hit in hits
            ]
            completed, stored = self.store.complete_query(
                query.id, answer, elapsed, citations
            )
        except DocQAError as e:
            self.store.mark_query_failed(query.id)
            logger.warning(f"Query {query.id} failed: {e.message}")
            raise
        except Exception as e:
            self.store.mark_query_failed(query.id)
            logger.exception(f"Query {query.id} failed unexpectedly")
            raise InternalError("Query processing failed") from e

        logger.info(f"Answered query {query.id} in {elapsed:.2f}s")
        return QueryResult(query=completed, citations=stored, hits=hits)
