"""Exact nearest-neighbour passage index.

Passages are scanned linearly, which is fine for a corpus of thousands of
passages. An approximate index would be the next step for larger corpora.
"""

import heapq
import logging
import threading
from typing import (
    Any,
    Collection,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
)

import numpy as np

from docqa.models import Passage, SearchHit

logger = logging.getLogger(__name__)


def _as_array(vector: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    if vector is None:
        return None
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1 or arr.size == 0:
        return None
    return arr


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector is missing or empty, when their lengths
    differ, or when either has zero norm.
    """
    va, vb = _as_array(a), _as_array(b)
    if va is None or vb is None or va.shape != vb.shape:
        return 0.0
    na, nb = float(np.linalg.norm(va)), float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


class _Entry(NamedTuple):
    passage: Passage
    array: np.ndarray
    norm: float


class VectorIndex:
    """In-memory passage store answering filtered k-NN queries.

    Every write swaps in one immutable ``Passage`` under a lock, and every
    search works on a snapshot, so readers never see half-written passages.
    Equal scores are ordered by passage id (insertion order).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[tuple[str, int], _Entry] = {}
        self._next_id = 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def upsert(
        self,
        document_id: str,
        chunk_index: int,
        vector: Sequence[float],
        metadata: Mapping[str, Any],
    ) -> Passage:
        """Store or replace the passage at ``(document_id, chunk_index)``.

        Args:
            document_id: Owning document.
            chunk_index: 0-based position of the chunk in the document.
            vector: Embedding vector.
            metadata: Must contain ``text`` and ``model``.

        Returns:
            The stored passage.
        """
        with self._lock:
            return self._insert(document_id, chunk_index, vector, metadata)

    def replace_document(
        self,
        document_id: str,
        items: Iterable[tuple[int, Sequence[float], Mapping[str, Any]]],
    ) -> List[Passage]:
        """Swap a document's passages for ``(chunk_index, vector, metadata)`` items.

        Searches see either the old set or the new one, never a mix.
        """
        items = list(items)
        with self._lock:
            self._remove(document_id)
            return [self._insert(document_id, i, v, m) for i, v, m in items]

    def remove_document(self, document_id: str) -> int:
        """Drop all passages of a document; returns how many were removed."""
        with self._lock:
            return self._remove(document_id)

    def _insert(
        self,
        document_id: str,
        chunk_index: int,
        vector: Sequence[float],
        metadata: Mapping[str, Any],
    ) -> Passage:
        arr = np.asarray(vector, dtype=np.float64)
        passage = Passage(
            id=self._next_id,
            document_id=document_id,
            chunk_index=chunk_index,
            text=metadata["text"],
            vector=[float(x) for x in arr.tolist()] if arr.ndim == 1 else [],
            model=metadata["model"],
        )
        self._next_id += 1
        norm = float(np.linalg.norm(arr)) if arr.ndim == 1 and arr.size else 0.0
        self._entries[(document_id, chunk_index)] = _Entry(passage, arr, norm)
        return passage

    def _remove(self, document_id: str) -> int:
        keys = [k for k in self._entries if k[0] == document_id]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def passages_for(self, document_id: str) -> List[Passage]:
        with self._lock:
            passages = [e.passage for k, e in self._entries.items() if k[0] == document_id]
        return sorted(passages, key=lambda p: p.chunk_index)

    def document_ids(self) -> set[str]:
        with self._lock:
            return {k[0] for k in self._entries}

    def find_similar(
        self,
        query_vector: Sequence[float],
        k: int,
        allowed_document_ids: Optional[Collection[str]] = None,
    ) -> List[SearchHit]:
        """Return up to ``k`` passages most similar to ``query_vector``.

        Args:
            query_vector: Embedding of the question.
            k: Maximum number of hits.
            allowed_document_ids: When given, only passages of these documents
                are ranked. Filtering happens before top-k selection.

        Returns:
            Hits sorted by similarity, highest first.
        """
        if k <= 0:
            return []
        if allowed_document_ids is not None:
            allowed = set(allowed_document_ids)
            if not allowed:
                return []
        else:
            allowed = None

        with self._lock:
            entries = list(self._entries.values())
        if allowed is not None:
            entries = [e for e in entries if e.passage.document_id in allowed]
        if not entries:
            return []

        q = _as_array(query_vector)
        q_norm = float(np.linalg.norm(q)) if q is not None else 0.0

        def score(entry: _Entry) -> float:
            if q is None or q_norm == 0.0 or entry.norm == 0.0:
                return 0.0
            if entry.array.shape != q.shape:
                return 0.0
            return float(np.dot(entry.array, q) / (entry.norm * q_norm))

        scored = [(score(e), e.passage) for e in entries]
        top = heapq.nsmallest(k, scored, key=lambda item: (-item[0], item[1].id))
        return [SearchHit(passage=p, score=s) for s, p in top]
