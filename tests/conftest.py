import dataclasses
import os
import threading
from unittest.mock import patch

import pytest

from docqa.config import Settings
from docqa.errors import ServiceConnectionError
from docqa.models import Requester, Role
from docqa.rag.pipeline import DocumentUploader, IngestionPipeline, blob_text_extractor
from docqa.rag.storage import LocalBlobStore
from docqa.rag.vectorstore import VectorIndex
from docqa.store import InMemoryStore

VOCABULARY = ["aspirin", "insulin", "dosage", "trial", "warfarin"]


class FakeEmbedder:
    """Bag-of-keywords embedding over a tiny vocabulary."""

    model = "fake-embed"

    def __init__(self, fail_on: str | None = None, fail_times: int = 0, error=None):
        self.calls: list[str] = []
        self.fail_on = fail_on
        self.fail_times = fail_times
        self.error = error or ServiceConnectionError("embedding service down")
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
            if self.fail_on is not None and self.fail_on in text and self.fail_times > 0:
                self.fail_times -= 1
                raise self.error
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY]


class FakeGenerator:
    model = "fake-gen"

    def __init__(self, answer: str = "Generated answer.", error=None):
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def generate(self, question: str, context: str) -> str:
        self.calls.append((question, context))
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def settings(tmp_path):
    with patch.dict(os.environ, {"UPLOAD_DIR": str(tmp_path / "uploads")}, clear=True):
        base = Settings.from_env()
    return dataclasses.replace(base, embed_concurrency=3)


@pytest.fixture
def index():
    return VectorIndex()


@pytest.fixture
def store(index):
    return InMemoryStore(index)


@pytest.fixture
def blobs(settings):
    return LocalBlobStore(settings.upload_dir)


@pytest.fixture
def uploader(store, blobs):
    return DocumentUploader(store, blobs)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def pipeline(settings, store, index, embedder, blobs):
    return IngestionPipeline(settings, store, embedder, blob_text_extractor(blobs))


@pytest.fixture
def alice():
    return Requester(id="alice", role=Role.DOCTOR)


@pytest.fixture
def bob():
    return Requester(id="bob", role=Role.RESEARCHER)


@pytest.fixture
def admin():
    return Requester(id="root", role=Role.ADMIN)


@pytest.fixture
def auditor():
    return Requester(id="audit", role=Role.AUDITOR)
