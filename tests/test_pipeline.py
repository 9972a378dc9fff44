"""Tests for uploads and document ingestion."""

import random
import threading
import time

import pytest

from docqa.errors import (
    GenerationError,
    InternalError,
    InvalidTransitionError,
    ParsingError,
    ServiceConnectionError,
    ValidationError,
)
from docqa.models import Status
from docqa.rag.pipeline import MAX_FILE_SIZE, IngestionPipeline

from conftest import FakeEmbedder

TEXT = "text/plain"


def _two_chunk_text() -> bytes:
    first = " ".join(f"Aspirin dosage note {i}." for i in range(30))
    second = " ".join(f"Insulin trial note {i}." for i in range(30))
    return f"{first}\n\n{second}".encode()


class TestDocumentUploader:
    """Tests for DocumentUploader."""

    def test_upload_creates_pending_document(self, uploader, alice, blobs):
        result = uploader.upload(b"hello world", "notes.txt", TEXT, alice)
        doc = result.document
        assert result.created
        assert doc.status is Status.PENDING
        assert doc.owner_id == "alice"
        assert doc.title == "notes"
        assert doc.size == 11
        assert len(doc.content_hash) == 64
        assert blobs.get(doc.storage_key) == b"hello world"

    def test_duplicate_content_returns_existing(self, uploader, store, alice, bob):
        first = uploader.upload(b"same bytes", "a.txt", TEXT, alice)
        second = uploader.upload(b"same bytes", "b.txt", TEXT, bob, title="Other")
        assert not second.created
        assert second.document.id == first.document.id
        assert second.document.filename == "a.txt"
        assert len(store.list_documents()) == 1

    @pytest.mark.parametrize(
        "data,filename,mime",
        [
            (b"", "a.txt", TEXT),
            (b"x", "", TEXT),
            (b"x", "a.png", "image/png"),
        ],
    )
    def test_invalid_uploads(self, uploader, alice, data, filename, mime):
        with pytest.raises(ValidationError):
            uploader.upload(data, filename, mime, alice)

    def test_oversized_upload(self, uploader, alice):
        with pytest.raises(ValidationError):
            uploader.upload(b"x" * (MAX_FILE_SIZE + 1), "big.txt", TEXT, alice)


class TestIngestionPipeline:
    """Tests for IngestionPipeline."""

    def test_ingest_two_chunks(self, uploader, pipeline, index, store, alice):
        doc = uploader.upload(_two_chunk_text(), "drugs.txt", TEXT, alice).document

        result = pipeline.ingest(doc.id)

        passages = index.passages_for(doc.id)
        assert result.passage_count == 2
        assert result.model == "fake-embed"
        assert [p.chunk_index for p in passages] == [0, 1]
        assert passages[0].text.startswith("Aspirin")
        assert passages[1].text.endswith("Insulin trial note 29.")
        assert all(p.model == "fake-embed" for p in passages)
        stored = store.get_document(doc.id)
        assert stored.status is Status.COMPLETED
        assert stored.processed_at is not None

    def test_empty_text_completes_with_no_passages(self, uploader, pipeline, index, alice):
        doc = uploader.upload(b"  \n\n  ", "blank.txt", TEXT, alice).document
        assert pipeline.ingest(doc.id).passage_count == 0
        assert index.passages_for(doc.id) == []

    def test_completed_document_is_not_reingested(self, uploader, pipeline, embedder, alice):
        doc = uploader.upload(_two_chunk_text(), "drugs.txt", TEXT, alice).document
        pipeline.ingest(doc.id)
        calls = len(embedder.calls)
        with pytest.raises(InvalidTransitionError):
            pipeline.ingest(doc.id)
        assert len(embedder.calls) == calls

    @pytest.mark.parametrize(
        "error", [ServiceConnectionError("down"), GenerationError("bad payload")]
    )
    def test_embedding_failure_marks_failed_and_propagates(
        self, settings, store, index, uploader, blobs, alice, error
    ):
        from docqa.rag.pipeline import blob_text_extractor

        embedder = FakeEmbedder(fail_on="Insulin", fail_times=100, error=error)
        pipeline = IngestionPipeline(settings, store, embedder, blob_text_extractor(blobs))
        doc = uploader.upload(_two_chunk_text(), "drugs.txt", TEXT, alice).document

        with pytest.raises(type(error)):
            pipeline.ingest(doc.id)

        assert store.get_document(doc.id).status is Status.FAILED
        assert index.passages_for(doc.id) == []

    def test_parse_failure_marks_failed(self, uploader, pipeline, store, alice):
        doc = uploader.upload(b"\xff\xfe\xfa not utf8", "bad.txt", TEXT, alice).document
        with pytest.raises(ParsingError):
            pipeline.ingest(doc.id)
        assert store.get_document(doc.id).status is Status.FAILED

    def test_unexpected_error_becomes_internal_error(self, settings, store, index, uploader, alice):
        def explode(document):
            raise RuntimeError("disk on fire")

        pipeline = IngestionPipeline(settings, store, FakeEmbedder(), explode)
        doc = uploader.upload(b"text", "a.txt", TEXT, alice).document

        with pytest.raises(InternalError) as excinfo:
            pipeline.ingest(doc.id)
        assert "disk on fire" not in excinfo.value.message
        assert store.get_document(doc.id).status is Status.FAILED

    def test_retry_after_failure_replaces_passages(
        self, settings, store, index, uploader, blobs, alice
    ):
        from docqa.rag.pipeline import blob_text_extractor

        embedder = FakeEmbedder(fail_on="Insulin", fail_times=1)
        pipeline = IngestionPipeline(settings, store, embedder, blob_text_extractor(blobs))
        doc = uploader.upload(_two_chunk_text(), "drugs.txt", TEXT, alice).document
        # Leftover from an interrupted earlier run.
        index.upsert(doc.id, 0, [1.0] * 5, {"text": "stale", "model": "old"})
        index.upsert(doc.id, 7, [1.0] * 5, {"text": "stale", "model": "old"})

        with pytest.raises(ServiceConnectionError):
            pipeline.ingest(doc.id)
        result = pipeline.ingest(doc.id)

        passages = index.passages_for(doc.id)
        assert result.document.status is Status.COMPLETED
        assert [p.chunk_index for p in passages] == [0, 1]
        assert all(p.text != "stale" for p in passages)

    def test_concurrent_embeddings_keep_chunk_order(self, settings, store, index, uploader, alice):
        class JitteryEmbedder(FakeEmbedder):
            def embed(self, text):
                time.sleep(random.uniform(0, 0.01))
                return super().embed(text)

        paragraphs = [" ".join(f"Section {n} aspirin line {i}." for i in range(20)) for n in range(12)]
        text = "\n\n".join(paragraphs)
        pipeline = IngestionPipeline(settings, store, JitteryEmbedder(), lambda d: text)
        doc = uploader.upload(text.encode(), "long.txt", TEXT, alice).document

        result = pipeline.ingest(doc.id)

        passages = index.passages_for(doc.id)
        assert result.passage_count == len(passages) > 3
        assert [p.chunk_index for p in passages] == list(range(len(passages)))
        for passage in passages:
            assert passage.vector == [float(passage.text.lower().count("aspirin")), 0.0, 0.0, 0.0, 0.0]

    def test_duplicate_triggers_run_one_ingestion(self, settings, store, index, uploader, alice):
        started = threading.Event()
        release = threading.Event()

        def slow_extract(document):
            started.set()
            release.wait(timeout=5)
            return "Aspirin only."

        pipeline = IngestionPipeline(settings, store, FakeEmbedder(), slow_extract)
        doc = uploader.upload(b"Aspirin only.", "a.txt", TEXT, alice).document
        outcome = {}

        def first():
            outcome["first"] = pipeline.ingest(doc.id)

        worker = threading.Thread(target=first)
        worker.start()
        assert started.wait(timeout=5)
        with pytest.raises(InvalidTransitionError):
            pipeline.ingest(doc.id)
        release.set()
        worker.join()

        assert outcome["first"].passage_count == 1
        assert len(index.passages_for(doc.id)) == 1

    @pytest.mark.parametrize("first_run_fails", [False, True])
    def test_reclaimed_run_cannot_touch_newer_run(
        self, settings, store, index, uploader, alice, first_run_fails
    ):
        entered = [threading.Event(), threading.Event()]
        gates = [threading.Event(), threading.Event()]
        texts = ["Aspirin from the stuck run.", "Insulin from the retry."]
        calls = []
        lock = threading.Lock()

        def gated_extract(document):
            with lock:
                n = len(calls)
                calls.append(document.attempt)
            entered[n].set()
            gates[n].wait(timeout=5)
            if n == 0 and first_run_fails:
                raise ParsingError("truncated file")
            return texts[n]

        pipeline = IngestionPipeline(settings, store, FakeEmbedder(), gated_extract)
        doc = uploader.upload(b"Aspirin.", "a.txt", TEXT, alice).document
        outcome = {}

        def run(name):
            try:
                outcome[name] = pipeline.ingest(doc.id)
            except Exception as e:
                outcome[name] = e

        stuck = threading.Thread(target=run, args=("stuck",))
        stuck.start()
        assert entered[0].wait(timeout=5)

        # What the stale-processing sweep does with a stuck claim.
        current = store.get_document(doc.id)
        assert store.release_claim(doc.id, current.attempt) is not None
        retry = threading.Thread(target=run, args=("retry",))
        retry.start()
        assert entered[1].wait(timeout=5)

        gates[0].set()
        stuck.join()
        expected = ParsingError if first_run_fails else InvalidTransitionError
        assert isinstance(outcome["stuck"], expected)
        assert store.get_document(doc.id).status is Status.PROCESSING
        assert index.passages_for(doc.id) == []

        gates[1].set()
        retry.join()
        assert outcome["retry"].passage_count == 1
        assert calls == [1, 2]
        final = store.get_document(doc.id)
        assert final.status is Status.COMPLETED
        assert [p.text for p in index.passages_for(doc.id)] == [texts[1]]
