"""Tests for the FastAPI backend."""

import pytest
from fastapi.testclient import TestClient

from backend.main import app, get_interaction_log
from conftest import FakeCompletion, FakeEmbedder, StubRetriever, make_result
from yogarag.errors import CompletionTimeoutError, EmbeddingError
from yogarag.interactions import JsonlInteractionLog
from yogarag.safety import SafetyClassifier
from yogarag.service import FALLBACK_ANSWER, AnsweringPolicy, get_policy


def build_client(tmp_path, results=None, completion=None, embedder=None):
    policy = AnsweringPolicy(
        embedder=embedder or FakeEmbedder(),
        classifier=SafetyClassifier(snapshot_path=tmp_path / "safety_index.json"),
        retriever=StubRetriever(results or []),
        completion=completion,
    )
    policy.retriever.snapshot_path = tmp_path / "index.json"
    log = JsonlInteractionLog(tmp_path / "interactions.jsonl")

    app.dependency_overrides[get_policy] = lambda: policy
    app.dependency_overrides[get_interaction_log] = lambda: log
    return TestClient(app), log


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def test_ask_augmented(tmp_path):
    client, log = build_client(
        tmp_path,
        results=[make_result("c1", 0.8, source="Breathing Practices")],
        completion=FakeCompletion(response="Breathe slowly."),
    )

    response = client.post("/ask", json={"query": "How do I calm my breath?"})

    assert response.status_code == 200
    body = response.json()
    assert body["answer"] == "Breathe slowly."
    assert body["sources"] == ["Breathing Practices"]
    assert body["isUnsafe"] is False
    assert body["unsafeReasons"] == []
    stored = log.get(body["queryId"])
    assert stored.query == "How do I calm my breath?"
    assert stored.answer == "Breathe slowly."


def test_ask_unsafe_hides_sources(tmp_path):
    client, log = build_client(
        tmp_path,
        results=[make_result("c1", 0.9, source="Prenatal")],
        completion=FakeCompletion(response="Please see a doctor."),
    )

    body = client.post("/ask", json={"query": "Poses for my third trimester?"}).json()

    assert body["isUnsafe"] is True
    assert body["sources"] == []
    assert body["unsafeReasons"] == ["Matched safety rule: pregnancy"]
    assert log.get(body["queryId"]).is_unsafe is True


def test_ask_fallback(tmp_path):
    client, _ = build_client(tmp_path, results=[make_result("c1", 0.1)], completion=FakeCompletion())

    body = client.post("/ask", json={"query": "What is the capital of France?"}).json()

    assert body["answer"] == FALLBACK_ANSWER


def test_ask_blank_query(tmp_path):
    client, _ = build_client(tmp_path)

    assert client.post("/ask", json={"query": "  "}).status_code == 400


def test_ask_missing_query(tmp_path):
    client, _ = build_client(tmp_path)

    assert client.post("/ask", json={}).status_code == 422


def test_ask_embedding_failure(tmp_path):
    class Broken(FakeEmbedder):
        def embed(self, text):
            raise EmbeddingError("model down")

    client, _ = build_client(tmp_path, embedder=Broken())

    assert client.post("/ask", json={"query": "What is yoga?"}).status_code == 502


def test_ask_completion_timeout(tmp_path):
    client, _ = build_client(
        tmp_path,
        results=[make_result("c1", 0.9)],
        completion=FakeCompletion(error=CompletionTimeoutError("slow")),
    )

    assert client.post("/ask", json={"query": "What is yoga?"}).status_code == 504


def test_feedback(tmp_path):
    client, log = build_client(tmp_path, results=[make_result("c1", 0.9)], completion=FakeCompletion())
    query_id = client.post("/ask", json={"query": "What is yoga?"}).json()["queryId"]

    response = client.post("/feedback", json={"queryId": query_id, "feedback": "up"})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert log.get(query_id).feedback == "up"


def test_feedback_unknown_id(tmp_path):
    client, _ = build_client(tmp_path)

    response = client.post("/feedback", json={"queryId": "missing", "feedback": "down"})

    assert response.status_code == 404


def test_feedback_invalid_value(tmp_path):
    client, _ = build_client(tmp_path)

    response = client.post("/feedback", json={"queryId": "x", "feedback": "sideways"})

    assert response.status_code == 422


def test_health_degraded_without_index(tmp_path):
    client, _ = build_client(tmp_path)

    body = client.get("/health").json()

    assert body == {
        "status": "degraded",
        "chunks_loaded": 0,
        "unsafe_intents_loaded": 0,
        "llm_configured": False,
    }


def test_reload(tmp_path):
    client, _ = build_client(tmp_path)
    (tmp_path / "index.json").write_text(
        '[{"id": "a", "text": "t", "source": "s", "embedding": [1.0, 0.0]}]', encoding="utf-8"
    )

    response = client.post("/admin/reload")

    assert response.status_code == 200
    assert response.json() == {"chunks_loaded": 1, "unsafe_intents_loaded": 0}
    assert client.get("/health").json()["status"] == "healthy"
