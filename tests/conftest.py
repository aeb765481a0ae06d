"""Shared fakes for the embedding, retrieval and completion collaborators."""

import json
import time

import numpy as np
import pytest

from yogarag.errors import CompletionError
from yogarag.snapshots import Chunk, UnsafeIntent
from yogarag.vectorstore import IndexSnapshot, RetrievalResult, VectorRetriever


class FakeEmbedder:
    """Looks texts up in a dict; anything unknown gets the default vector."""

    def __init__(self, vectors: dict | None = None, default=(0.0, 0.0, 1.0)) -> None:
        self.vectors = vectors or {}
        self.default = default
        self.calls: list[str] = []
        self.warmed = False

    def warm_up(self) -> None:
        self.warmed = True

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        return np.array(self.vectors.get(text, self.default), dtype=np.float32)

    def embed_many(self, texts: list[str]) -> np.ndarray:
        return np.array([self.embed(t) for t in texts], dtype=np.float32)


class LengthEmbedder:
    """Deterministic 3-d vector derived from the text."""

    def embed(self, text: str) -> np.ndarray:
        return np.array([float(len(text)), float(text.count("a")), 1.0])

    def embed_many(self, texts: list[str]) -> np.ndarray:
        return np.array([self.embed(t) for t in texts])


class BrokenEmbedder:
    def embed(self, text: str) -> np.ndarray:
        raise RuntimeError("model unavailable")

    def embed_many(self, texts: list[str]) -> np.ndarray:
        raise RuntimeError("model unavailable")


class SlowEmbedder:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    def embed(self, text: str) -> np.ndarray:
        time.sleep(self.delay)
        return np.array([1.0, 0.0, 0.0])


class FakeCompletion:
    """Records every message list it receives."""

    def __init__(self, response: str = "Grounded answer", error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[list[dict]] = []

    def complete(self, messages: list[dict]) -> str:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.response


class FailingCompletion(FakeCompletion):
    def __init__(self) -> None:
        super().__init__(error=CompletionError("upstream 500"))


class StubRetriever(VectorRetriever):
    """Returns fixed results and counts search calls."""

    def __init__(self, results: list[RetrievalResult] | None = None) -> None:
        super().__init__(snapshot_path="does-not-exist.json")
        self.results = results or []
        self.search_calls = 0

    def search(self, query_embedding, top_k: int = 3) -> list[RetrievalResult]:
        self.search_calls += 1
        return self.results[:top_k]


def make_chunk(id_: str, embedding, source: str = "Doc", text: str | None = None) -> Chunk:
    return Chunk(
        id=id_,
        text=text or f"text of {id_}",
        source=source,
        embedding=tuple(float(x) for x in embedding),
    )


def make_result(id_: str, score: float, source: str = "Doc", text: str = "Some text") -> RetrievalResult:
    return RetrievalResult(id=id_, text=text, source=source, score=score)


def retriever_with(chunks) -> VectorRetriever:
    retriever = VectorRetriever(snapshot_path="does-not-exist.json")
    retriever.use_snapshot(IndexSnapshot.from_chunks(chunks))
    return retriever


def write_records(path, records) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(records), encoding="utf-8")


@pytest.fixture
def unsafe_intents() -> list[UnsafeIntent]:
    return [
        UnsafeIntent(text="Which poses are safe while pregnant?", embedding=(1.0, 0.0, 0.0)),
        UnsafeIntent(text="Can yoga fix my herniated disc?", embedding=(0.0, 1.0, 0.0)),
    ]
