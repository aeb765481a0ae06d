"""Tests for the interaction log."""

import pytest

from yogarag.interactions import InteractionRecord, JsonlInteractionLog


def make_record(query: str = "What is yoga?") -> InteractionRecord:
    return InteractionRecord(query=query, answer="An answer", sources=["Intro to Yoga"])


def test_append_and_get(tmp_path):
    log = JsonlInteractionLog(tmp_path / "logs" / "interactions.jsonl")
    record = log.append(make_record())

    stored = log.get(record.id)

    assert stored == record
    assert stored.feedback is None
    assert log.get("unknown") is None


def test_records_in_append_order(tmp_path):
    log = JsonlInteractionLog(tmp_path / "interactions.jsonl")
    for query in ("one", "two", "three"):
        log.append(make_record(query))

    assert [r.query for r in log.records()] == ["one", "two", "three"]


def test_empty_log(tmp_path):
    assert list(JsonlInteractionLog(tmp_path / "none.jsonl").records()) == []


def test_set_feedback(tmp_path):
    log = JsonlInteractionLog(tmp_path / "interactions.jsonl")
    first = log.append(make_record("first"))
    second = log.append(make_record("second"))

    assert log.set_feedback(second.id, "down") is True

    assert log.get(second.id).feedback == "down"
    assert log.get(first.id).feedback is None
    assert [r.query for r in log.records()] == ["first", "second"]


def test_feedback_unknown_id(tmp_path):
    log = JsonlInteractionLog(tmp_path / "interactions.jsonl")
    log.append(make_record())

    assert log.set_feedback("nope", "up") is False


def test_feedback_rejects_other_values(tmp_path):
    log = JsonlInteractionLog(tmp_path / "interactions.jsonl")
    record = log.append(make_record())

    with pytest.raises(ValueError):
        log.set_feedback(record.id, "meh")


def test_record_round_trip():
    record = InteractionRecord(
        query="Is yoga safe during pregnancy?",
        answer="Please consult your doctor.",
        is_unsafe=True,
        unsafe_reasons=["Matched safety rule: pregnancy"],
    )

    assert InteractionRecord.from_dict(record.to_dict()) == record
