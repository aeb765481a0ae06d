"""
yogarag/vectorstore.py - In-memory vector retrieval
====================================================

This module handles query-time retrieval over the chunk snapshot:
- Cosine similarity (shared with the safety classifier)
- An immutable in-memory snapshot of chunk vectors
- Exact top-K search with deterministic tie-breaking

Key Concepts:
- Snapshot: built offline by yogarag.indexer, loaded read-only at startup
- Search: brute-force cosine over every chunk, O(N*D) per query. At the
  corpus sizes we serve this beats building an ANN index, and it is exact.
- Reload: a new snapshot is built off to the side and swapped in with a
  single assignment, so in-flight searches keep the snapshot they started
  with.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from yogarag.config import INDEX_SNAPSHOT_PATH, TOP_K_RESULTS
from yogarag.errors import DimensionMismatchError
from yogarag.snapshots import Chunk, load_chunks

logger = logging.getLogger(__name__)


# =============================================================================
# SIMILARITY
# =============================================================================

def cosine_similarity(a, b) -> float:
    """
    Cosine similarity between two vectors: dot(a, b) / (|a| * |b|).

    Defined as 0.0 when either vector has zero norm. The result is clipped
    to [-1, 1] to absorb floating point drift.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatchError(a.shape[0], b.shape[0])

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class RetrievalResult:
    """One search hit. ``score`` is the cosine similarity to the query."""
    id: str
    text: str
    source: str
    score: float


@dataclass(frozen=True, eq=False)
class IndexSnapshot:
    """
    Immutable in-memory view of the chunk snapshot.

    Attributes:
        chunks: Chunks in snapshot order
        matrix: Read-only (N, D) array of chunk embeddings
        norms: Read-only (N,) array of row norms
    """
    chunks: tuple[Chunk, ...]
    matrix: np.ndarray
    norms: np.ndarray

    @classmethod
    def empty(cls) -> "IndexSnapshot":
        return cls(chunks=(), matrix=np.empty((0, 0)), norms=np.empty(0))

    @classmethod
    def from_chunks(cls, chunks) -> "IndexSnapshot":
        chunks = tuple(chunks)
        if not chunks:
            return cls.empty()

        matrix = np.array([c.embedding for c in chunks], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        matrix.setflags(write=False)
        norms.setflags(write=False)
        return cls(chunks=chunks, matrix=matrix, norms=norms)

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def dimension(self) -> Optional[int]:
        return self.matrix.shape[1] if self.chunks else None

    def scores(self, query_embedding) -> np.ndarray:
        """Cosine similarity of the query against every chunk, in snapshot order."""
        query = np.asarray(query_embedding, dtype=np.float64).ravel()
        if query.shape[0] != self.dimension:
            raise DimensionMismatchError(self.dimension, query.shape[0])

        query_norm = np.linalg.norm(query)
        if query_norm == 0.0:
            return np.zeros(len(self.chunks))

        dots = self.matrix @ query
        denominators = self.norms * query_norm
        scores = np.divide(dots, denominators, out=np.zeros_like(dots), where=denominators > 0)
        return np.clip(scores, -1.0, 1.0)


# =============================================================================
# RETRIEVER
# =============================================================================

class VectorRetriever:
    """
    Top-K nearest-neighbour search over the chunk snapshot.

    Usage:
        retriever = VectorRetriever()
        retriever.load()
        results = retriever.search(query_embedding, top_k=3)
    """

    def __init__(self, snapshot_path: Path = INDEX_SNAPSHOT_PATH):
        self.snapshot_path = Path(snapshot_path)
        self._snapshot = IndexSnapshot.empty()

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    @property
    def chunk_count(self) -> int:
        return len(self._snapshot)

    @property
    def dimension(self) -> Optional[int]:
        return self._snapshot.dimension

    def read(self) -> IndexSnapshot:
        """
        Parse the chunk snapshot from disk without serving it.

        A missing snapshot reads as empty: every search returns no results
        until the index is built.

        Raises:
            SnapshotError: If the snapshot file is malformed
        """
        chunks = load_chunks(self.snapshot_path)
        if chunks is None:
            logger.warning(
                "Index snapshot not found at %s. Run 'yogarag-build' to create it.",
                self.snapshot_path,
            )
            chunks = ()
        return IndexSnapshot.from_chunks(chunks)

    def load(self) -> int:
        """
        Load (or reload) the chunk snapshot from disk.

        Returns:
            Number of chunks loaded

        Raises:
            SnapshotError: If the snapshot file is malformed
        """
        snapshot = self.read()
        self.use_snapshot(snapshot)
        logger.info("Loaded %d chunks from index", len(snapshot))
        return len(snapshot)

    reload = load

    def use_snapshot(self, snapshot: IndexSnapshot) -> None:
        """Swap in an already-built snapshot."""
        self._snapshot = snapshot

    def search(self, query_embedding, top_k: int = TOP_K_RESULTS) -> list[RetrievalResult]:
        """
        Find the chunks most similar to a query embedding.

        Args:
            query_embedding: Vector with the same dimension as the snapshot
            top_k: Maximum number of results

        Returns:
            Up to top_k results, highest score first. Equal scores keep
            snapshot order.

        Raises:
            ValueError: If top_k < 1
            DimensionMismatchError: If the query dimension is wrong
        """
        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")

        snapshot = self._snapshot
        if not len(snapshot):
            return []

        scores = snapshot.scores(query_embedding)
        order = np.argsort(-scores, kind="stable")[:top_k]

        results = []
        for idx in order:
            chunk = snapshot.chunks[idx]
            results.append(RetrievalResult(
                id=chunk.id,
                text=chunk.text,
                source=chunk.source,
                score=float(scores[idx]),
            ))
        return results
