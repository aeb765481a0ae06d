"""
yogarag/interactions.py - Interaction log
=========================================

Every answered query produces an InteractionRecord
{query, answer, sources, is_unsafe, unsafe_reasons}. Users can later attach
feedback ("up" / "down") to a record by id.

JsonlInteractionLog stores records one per line. Feedback updates rewrite
the file atomically.
"""

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from yogarag.config import INTERACTION_LOG_PATH

logger = logging.getLogger(__name__)

FEEDBACK_VALUES = ("up", "down", None)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class InteractionRecord:
    query: str
    answer: str
    sources: list[str] = field(default_factory=list)
    is_unsafe: bool = False
    unsafe_reasons: list[str] = field(default_factory=list)
    feedback: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "InteractionRecord":
        return cls(
            query=data["query"],
            answer=data["answer"],
            sources=list(data.get("sources", [])),
            is_unsafe=bool(data.get("is_unsafe", False)),
            unsafe_reasons=list(data.get("unsafe_reasons", [])),
            feedback=data.get("feedback"),
            id=data["id"],
            timestamp=data.get("timestamp", ""),
        )


class JsonlInteractionLog:
    """Append-only JSONL store of interaction records."""

    def __init__(self, path: Path = INTERACTION_LOG_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: InteractionRecord) -> InteractionRecord:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        logger.debug("Logged interaction %s", record.id)
        return record

    def records(self) -> Iterator[InteractionRecord]:
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield InteractionRecord.from_dict(json.loads(line))

    def get(self, record_id: str) -> Optional[InteractionRecord]:
        for record in self.records():
            if record.id == record_id:
                return record
        return None

    def set_feedback(self, record_id: str, feedback: Optional[str]) -> bool:
        """
        Attach feedback to a stored record.

        Returns:
            False if no record has this id

        Raises:
            ValueError: If feedback is not "up", "down" or None
        """
        if feedback not in FEEDBACK_VALUES:
            raise ValueError(f"feedback must be 'up', 'down' or None, got {feedback!r}")

        with self._lock:
            records = list(self.records())
            found = False
            for record in records:
                if record.id == record_id:
                    record.feedback = feedback
                    found = True
            if not found:
                return False
            self._rewrite(records)

        logger.info("Feedback %r recorded for interaction %s", feedback, record_id)
        return True

    def _rewrite(self, records: list[InteractionRecord]) -> None:
        # Write beside the log, then rename over it
        tmp_path = self.path.with_name(self.path.name + ".rewrite")
        with open(tmp_path, "w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        tmp_path.replace(self.path)
