"""Background ingestion scheduling.

Each document is ingested in its own asyncio task; the synchronous pipeline
runs in a worker thread. Connection failures are retried with exponential
backoff, and a reconciliation sweep reclaims documents stuck in processing.
"""

import asyncio
from datetime import timedelta
import logging
from typing import Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from docqa.config import Settings
from docqa.errors import ServiceConnectionError
from docqa.models import IngestionResult
from docqa.rag.pipeline import IngestionPipeline
from docqa.store import InMemoryStore

logger = logging.getLogger(__name__)


class IngestionScheduler:
    def __init__(
        self,
        settings: Settings,
        store: InMemoryStore,
        pipeline: IngestionPipeline,
        backoff: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        self.settings = settings
        self.store = store
        self.pipeline = pipeline
        self.backoff = backoff
        self.max_backoff = max_backoff
        self._tasks: dict[str, asyncio.Task] = {}

    def enqueue(self, document_id: str) -> "asyncio.Task[IngestionResult]":
        """Start ingesting a document unless it is already in flight here.

        Must be called from a running event loop.
        """
        task = self._tasks.get(document_id)
        if task is not None and not task.done():
            logger.info(f"Document {document_id} already queued")
            return task
        task = asyncio.create_task(self._run(document_id), name=f"ingest-{document_id}")
        self._tasks[document_id] = task
        task.add_done_callback(lambda t: self._on_done(document_id, t))
        return task

    def in_flight(self) -> set[str]:
        return {doc_id for doc_id, t in self._tasks.items() if not t.done()}

    async def drain(self) -> None:
        """Wait for every queued ingestion to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def reconcile(self, now=None) -> list[str]:
        """Fail and re-queue documents stuck in processing past the threshold.

        Returns:
            Ids of the re-queued documents.
        """
        threshold = timedelta(seconds=self.settings.stale_processing_seconds)
        busy = self.in_flight()
        requeued = []
        for document in self.store.stale_documents(threshold, now=now):
            if document.id in busy:
                continue
            # The stuck run may finish or be deleted after the snapshot was taken.
            if self.store.release_claim(document.id, document.attempt) is None:
                logger.info(f"Document {document.id} left processing before reclaim")
                continue
            logger.warning(f"Reclaimed document {document.id} stuck in processing")
            self.enqueue(document.id)
            requeued.append(document.id)
        return requeued

    async def reconcile_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reconcile()
            except Exception:
                logger.exception("Stale-processing sweep failed")

    async def _run(self, document_id: str) -> IngestionResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.ingest_max_attempts)),
            wait=wait_exponential(multiplier=self.backoff, max=self.max_backoff),
            retry=retry_if_exception_type(ServiceConnectionError),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                f"Retrying document {document_id} after {state.outcome.exception()}"
            ),
        )
        result: Optional[IngestionResult] = None
        async for attempt in retrying:
            with attempt:
                result = await asyncio.to_thread(self.pipeline.ingest, document_id)
        return result

    def _on_done(self, document_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(document_id) is task:
            del self._tasks[document_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Ingestion of document {document_id} failed: {error}")
